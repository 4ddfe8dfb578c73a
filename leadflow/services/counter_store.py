"""Per-campaign usage counters (branch1 / branch2 / expiration).

Counters are advisory: a failed increment is logged and never undoes or
fails the move that triggered it. Read-modify-write without locking, so two
concurrent sweeps of the same campaign can lose increments.
"""

import json
from abc import ABC, abstractmethod
from typing import Any, Optional

from sqlalchemy.orm import Session

from leadflow.logging_config import get_logger
from leadflow.models import CampaignRecord, LegacyKvItem
from leadflow.models.legacy_kv_item import legacy_campaign_key

logger = get_logger("counter_store")

# counter -> (flat field on the primary record, key inside the nested "counters" object)
COUNTER_FIELDS = {
    "branch1": ("v1_count", "v1"),
    "branch2": ("v2_count", "v2"),
    "expiration": ("exp_count", "exp"),
}


def _as_int(value: Any, default: int = 0) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return int(value)


class CounterBackend(ABC):
    name: str

    def __init__(self, db: Session):
        self.db = db

    @abstractmethod
    def increment(self, campaign_id: str, counter: str) -> bool:
        """Increment and persist; False when this backend has no record for the campaign."""


class PrimaryCounterBackend(CounterBackend):
    name = "primary"

    def increment(self, campaign_id: str, counter: str) -> bool:
        record = self.db.get(CampaignRecord, campaign_id)
        if record is None:
            return False

        flat_key, nested_key = COUNTER_FIELDS[counter]
        payload = dict(record.payload or {})
        current = _as_int(payload.get(flat_key))
        payload[flat_key] = current + 1

        # Records edited by the newer UI also carry counters.{v1,v2,exp}; keep both in step.
        counters = payload.get("counters")
        if isinstance(counters, dict):
            counters = dict(counters)
            counters[nested_key] = _as_int(counters.get(nested_key), default=current) + 1
            payload["counters"] = counters

        record.payload = payload
        self.db.commit()
        return True


class LegacyCounterBackend(CounterBackend):
    """Pre-migration records (cmp:item:<id>); remove once every campaign lives in the primary table."""

    name = "legacy"

    def increment(self, campaign_id: str, counter: str) -> bool:
        item = self.db.get(LegacyKvItem, legacy_campaign_key(campaign_id))
        if item is None:
            return False

        value = json.loads(item.value) if isinstance(item.value, str) else item.value
        if not isinstance(value, dict):
            return False

        _, nested_key = COUNTER_FIELDS[counter]
        value = dict(value)
        counters = dict(value.get("counters") or {})
        counters[nested_key] = _as_int(counters.get(nested_key)) + 1
        value["counters"] = counters

        item.value = value
        self.db.commit()
        return True


class CounterStore:
    def __init__(self, backends: list[CounterBackend]):
        self.backends = backends

    @classmethod
    def for_session(cls, db: Session) -> "CounterStore":
        return cls([PrimaryCounterBackend(db), LegacyCounterBackend(db)])

    def increment(self, campaign_id: Optional[str], counter: str) -> Optional[str]:
        """Increment a counter in the first backend holding the campaign; returns that backend's name."""
        if counter not in COUNTER_FIELDS:
            raise ValueError(f"Unknown counter: {counter}")
        if not campaign_id:
            return None

        for backend in self.backends:
            try:
                if backend.increment(campaign_id, counter):
                    return backend.name
            except Exception as e:
                backend.db.rollback()
                logger.warning(
                    "Counter increment failed",
                    extra={
                        "context": {
                            "campaign_id": campaign_id,
                            "counter": counter,
                            "backend": backend.name,
                            "error": str(e),
                        }
                    },
                )
                return None

        logger.warning(
            "Counter record not found",
            extra={"context": {"campaign_id": campaign_id, "counter": counter}},
        )
        return None
