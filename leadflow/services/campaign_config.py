"""Normalization of stored campaign records into one canonical configuration.

Campaign records have been written by several generations of the admin UI,
so every field has an ordered list of accepted source keys: current keys
first, then nested object variants, then legacy flat keys. All lookups go
through the tables below; nothing else reads raw campaign fields.
"""

import math
from dataclasses import asdict, dataclass, field
from typing import Any, NamedTuple, Optional

from leadflow.services.rule_matcher import BRANCH1, BRANCH2, Rule, pick_rule_candidate, resolve_rule

REASON_CODES = (
    "deleted",
    "disabled",
    "exp_disabled",
    "missing_base_pipeline",
    "missing_base_status",
    "missing_exp_pipeline",
    "missing_exp_status",
    "missing_exp_days",
    "invalid_exp_days",
)

TRUE_TOKENS = {"true", "1", "yes", "on"}
FALSE_TOKENS = {"false", "0", "no", "off"}


class TargetKeys(NamedTuple):
    pipeline: tuple[str, ...]
    status: tuple[str, ...]
    pipeline_name: tuple[str, ...]
    status_name: tuple[str, ...]


ID_KEYS = ("id", "__index_id", "campaign_id", "campaignId")
NAME_KEYS = ("name", "title")
DELETED_KEYS = ("deleted", "is_deleted", "archived")
ENABLED_KEYS = ("active", "enabled", "is_active")
EXP_ENABLED_KEYS = ("exp_enabled", "expEnabled", "texp.enabled", "exp.enabled")
EXP_DAYS_KEYS = (
    "expDays",
    "exp_days",
    "expireDays",
    "expire_days",
    "texp.days",
    "exp.days",
    "exp",
    "expire",
    "vexp",
)

BASE_KEYS = TargetKeys(
    pipeline=("base.pipelineId", "basePipelineId", "base.pipeline", "base.pipeline_id", "base.id",
              "base_pipeline_id", "base_pipelineId"),
    status=("base.statusId", "baseStatusId", "base.status", "base.status_id",
            "base_status_id", "base_statusId"),
    pipeline_name=("base.pipelineName", "base.pipeline_name", "base_pipeline_name"),
    status_name=("base.statusName", "base.status_name", "base_status_name"),
)


def _branch_keys(obj: str, slot: str) -> TargetKeys:
    return TargetKeys(
        pipeline=(f"{obj}.pipelineId", f"{obj}.pipeline", f"{obj}.pipeline_id", f"{obj}.id",
                  f"{slot}_to_pipeline_id", f"{slot}ToPipelineId"),
        status=(f"{obj}.statusId", f"{obj}.status", f"{obj}.status_id",
                f"{slot}_to_status_id", f"{slot}ToStatusId"),
        pipeline_name=(f"{obj}.pipelineName", f"{obj}.pipeline_name", f"{slot}_to_pipeline_name"),
        status_name=(f"{obj}.statusName", f"{obj}.status_name", f"{slot}_to_status_name"),
    )


BRANCH_TARGET_KEYS = {
    BRANCH1: _branch_keys("t1", "v1"),
    BRANCH2: _branch_keys("t2", "v2"),
}

EXPIRATION_TARGET_KEYS = TargetKeys(
    pipeline=("texp.pipelineId", "texp.pipeline", "texp.pipeline_id", "texp.id",
              "exp.pipelineId", "exp.pipeline", "exp.pipeline_id",
              "exp_pipeline_id", "exp_to_pipeline_id"),
    status=("texp.statusId", "texp.status", "texp.status_id",
            "exp.statusId", "exp.status", "exp.status_id",
            "exp_status_id", "exp_to_status_id"),
    pipeline_name=("texp.pipelineName", "texp.pipeline_name", "exp.pipeline_name", "exp_pipeline_name"),
    status_name=("texp.statusName", "texp.status_name", "exp.status_name", "exp_status_name"),
)

COUNTER_KEYS = {
    BRANCH1: ("counters.v1", "v1_count", "movedV1"),
    BRANCH2: ("counters.v2", "v2_count", "movedV2"),
    "expiration": ("counters.exp", "exp_count", "movedExp"),
}


@dataclass
class TargetRef:
    pipeline_id: Optional[str] = None
    status_id: Optional[str] = None
    pipeline_name: Optional[str] = None
    status_name: Optional[str] = None

    def has_pipeline(self) -> bool:
        return bool(self.pipeline_id or self.pipeline_name)

    def has_status(self) -> bool:
        return bool(self.status_id or self.status_name)

    def is_empty(self) -> bool:
        return not self.has_pipeline() and not self.has_status()

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Branch:
    rule: Optional[Rule] = None
    target: TargetRef = field(default_factory=TargetRef)


@dataclass
class Expiration:
    days: Optional[int] = None
    target: TargetRef = field(default_factory=TargetRef)


@dataclass
class Counters:
    branch1: int = 0
    branch2: int = 0
    expiration: int = 0


@dataclass
class CampaignConfig:
    id: Optional[str]
    name: Optional[str]
    enabled: bool
    base: TargetRef
    branch1: Branch
    branch2: Branch
    expiration: Expiration
    counters: Counters

    def branch(self, name: str) -> Branch:
        return self.branch1 if name == BRANCH1 else self.branch2

    def to_dict(self) -> dict:
        return asdict(self)


def lookup(raw: dict, path: str) -> Any:
    """Read a dotted path ("base.pipeline_id") from nested dicts; None when any hop is missing."""
    current: Any = raw
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return None
        current = current[part]
    return current


def _to_id(value: Any) -> Optional[str]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        return str(int(value)) if value.is_integer() else str(value)
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, dict):
        return _to_id(value.get("id"))
    return None


def _to_name(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, dict):
        return _to_name(value.get("title") or value.get("name"))
    return None


def _first(raw: dict, keys: tuple[str, ...], coerce) -> Optional[Any]:
    for key in keys:
        value = coerce(lookup(raw, key))
        if value is not None:
            return value
    return None


def _flag(raw: dict, keys: tuple[str, ...], tokens: set[str], literal: bool) -> bool:
    for key in keys:
        value = lookup(raw, key)
        if value is literal:
            return True
        if isinstance(value, str) and value.strip().lower() in tokens:
            return True
    return False


def read_target(raw: dict, keys: TargetKeys) -> TargetRef:
    return TargetRef(
        pipeline_id=_first(raw, keys.pipeline, _to_id),
        status_id=_first(raw, keys.status, _to_id),
        pipeline_name=_first(raw, keys.pipeline_name, _to_name),
        status_name=_first(raw, keys.status_name, _to_name),
    )


def _days_candidate(raw: dict) -> Any:
    for key in EXP_DAYS_KEYS:
        value = lookup(raw, key)
        if value is None or isinstance(value, (dict, list)):
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return None


def parse_days(value: Any) -> Optional[int]:
    """floor() of a numeric days value; None when non-numeric or not positive."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    days = math.floor(number)
    return days if days > 0 else None


def _counter(raw: dict, keys: tuple[str, ...]) -> int:
    for key in keys:
        value = lookup(raw, key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return int(value)
    return 0


def resolve_campaign(raw: Any, require_expiration: bool = False) -> tuple[Optional[CampaignConfig], Optional[str]]:
    """Resolve a stored record into a CampaignConfig, or (None, reason_code).

    With require_expiration the expiration block must also be usable; branch
    rules are never required.
    """
    if not isinstance(raw, dict):
        return None, "invalid_record"

    if _flag(raw, DELETED_KEYS, TRUE_TOKENS, True):
        return None, "deleted"
    if _flag(raw, ENABLED_KEYS, FALSE_TOKENS, False):
        return None, "disabled"
    if require_expiration and _flag(raw, EXP_ENABLED_KEYS, FALSE_TOKENS, False):
        return None, "exp_disabled"

    base = read_target(raw, BASE_KEYS)
    if not base.pipeline_id:
        return None, "missing_base_pipeline"
    if not base.status_id:
        return None, "missing_base_status"

    exp_target = read_target(raw, EXPIRATION_TARGET_KEYS)
    days_raw = _days_candidate(raw)
    days = parse_days(days_raw)

    if require_expiration:
        if exp_target.is_empty():
            return None, "missing_exp_pipeline"
        if not exp_target.has_status():
            return None, "missing_exp_status"
        if days_raw is None:
            return None, "missing_exp_days"
        if days is None:
            return None, "invalid_exp_days"

    config = CampaignConfig(
        id=_first(raw, ID_KEYS, _to_id),
        name=_first(raw, NAME_KEYS, _to_name),
        enabled=True,
        base=base,
        branch1=Branch(
            rule=resolve_rule(pick_rule_candidate(raw, BRANCH1)),
            target=read_target(raw, BRANCH_TARGET_KEYS[BRANCH1]),
        ),
        branch2=Branch(
            rule=resolve_rule(pick_rule_candidate(raw, BRANCH2)),
            target=read_target(raw, BRANCH_TARGET_KEYS[BRANCH2]),
        ),
        expiration=Expiration(days=days, target=exp_target),
        counters=Counters(
            branch1=_counter(raw, COUNTER_KEYS[BRANCH1]),
            branch2=_counter(raw, COUNTER_KEYS[BRANCH2]),
            expiration=_counter(raw, COUNTER_KEYS["expiration"]),
        ),
    )
    return config, None


def is_sweep_eligible(config: CampaignConfig) -> bool:
    return bool(config.expiration.days and config.expiration.days > 0 and config.expiration.target.has_status())
