"""Read side of the campaign store: primary table first, then legacy key/value rows."""

import json
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.orm import Session

from leadflow.logging_config import get_logger
from leadflow.models import CampaignRecord, LegacyKvItem
from leadflow.models.legacy_kv_item import LEGACY_CAMPAIGN_PREFIX
from leadflow.services.campaign_config import resolve_campaign

logger = get_logger("campaign_store")

SHAPE_KEYS = ("id", "name", "base", "rules", "v1", "v2", "texp")
WRAPPER_KEYS = ("value", "result", "data", "payload", "item", "campaign")


@dataclass
class StoredCampaign:
    id: str
    source: str  # "primary" | "legacy"
    raw: Any


def unwrap_campaign_shape(raw: Any) -> Optional[dict]:
    """Return the first object that looks like a campaign.

    Old writers stored campaigns as JSON strings, inside {value: ...} or
    {result: ...} envelopes, or as one-element arrays; all of those are
    peeled here.
    """
    stack: list[Any] = [raw]
    visited: set[int] = set()

    while stack:
        value = stack.pop()
        if value is None:
            continue

        if isinstance(value, str):
            text = value.strip()
            if not text:
                continue
            try:
                stack.append(json.loads(text))
            except ValueError:
                continue
            continue

        if isinstance(value, (list, dict)):
            if id(value) in visited:
                continue
            visited.add(id(value))

        if isinstance(value, list):
            stack.extend(value)
            continue

        if isinstance(value, dict):
            if any(key in value for key in SHAPE_KEYS):
                return value
            for key in WRAPPER_KEYS:
                if value.get(key) is not None:
                    stack.append(value[key])

    return None


def list_campaigns(db: Session) -> list[StoredCampaign]:
    """All stored campaigns, primary rows first; legacy rows only for ids the primary table lacks."""
    campaigns: list[StoredCampaign] = []
    seen: set[str] = set()

    for record in db.query(CampaignRecord).order_by(CampaignRecord.created_at).all():
        payload = unwrap_campaign_shape(record.payload)
        if payload is None:
            logger.warning("Unreadable campaign record", extra={"context": {"campaign_id": record.id}})
            payload = record.payload
        elif "id" not in payload:
            payload = {**payload, "id": record.id}
        campaigns.append(StoredCampaign(id=record.id, source="primary", raw=payload))
        seen.add(record.id)

    legacy_rows = (
        db.query(LegacyKvItem)
        .filter(LegacyKvItem.key.like(f"{LEGACY_CAMPAIGN_PREFIX}%"))
        .order_by(LegacyKvItem.key)
        .all()
    )
    for item in legacy_rows:
        campaign_id = item.key[len(LEGACY_CAMPAIGN_PREFIX):]
        if not campaign_id or campaign_id in seen:
            continue
        payload = unwrap_campaign_shape(item.value)
        if payload is None:
            logger.warning("Unreadable legacy campaign record", extra={"context": {"key": item.key}})
            payload = item.value
        elif "id" not in payload:
            payload = {**payload, "id": campaign_id}
        campaigns.append(StoredCampaign(id=campaign_id, source="legacy", raw=payload))
        seen.add(campaign_id)

    return campaigns


def describe_eligibility(stored: list[StoredCampaign]) -> list[dict[str, Any]]:
    """Routing and sweep eligibility of every stored campaign, resolution only."""
    report = []
    for item in stored:
        config, reason = resolve_campaign(item.raw)
        sweep_config, sweep_reason = resolve_campaign(item.raw, require_expiration=True)
        report.append(
            {
                "id": item.id,
                "source": item.source,
                "name": config.name if config else None,
                "routing_eligible": config is not None,
                "routing_reason": reason,
                "sweep_eligible": sweep_config is not None,
                "sweep_reason": sweep_reason,
                "branch1_rule": config.branch1.rule.to_dict() if config and config.branch1.rule else None,
                "branch2_rule": config.branch2.rule.to_dict() if config and config.branch2.rule else None,
                "expiration_days": sweep_config.expiration.days if sweep_config else None,
            }
        )
    return report
