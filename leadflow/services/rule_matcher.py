"""Branch rule coercion and matching against inbound message text."""

import json
from dataclasses import dataclass
from typing import Any, Iterable, Literal, Optional, Union

DEFAULT_MAX_DEPTH = 12

VALUE_KEYS = ("value", "label", "text", "title", "name", "id", "key", "code")
OP_KEYS = ("op", "operator", "mode", "match", "type")
EQUALS_TOKENS = {"equals", "equal", "eq", "is", "match"}
RULE_VALUE_KEYS = (
    "value",
    "val",
    "pattern",
    "needle",
    "text",
    "target",
    "content",
    "rule",
    "match",
    "data",
    "v",
    "value1",
    "value2",
    "payload",
    "body",
    "src",
    "source",
    "0",
)

BRANCH1 = "branch1"
BRANCH2 = "branch2"
NO_ROUTE = "none"

RULE_SLOTS = {BRANCH1: "v1", BRANCH2: "v2"}


@dataclass(frozen=True)
class Rule:
    op: Literal["contains", "equals"]
    value: str

    def to_dict(self) -> dict:
        return {"op": self.op, "value": self.value}


def normalize_candidate(value: Any, max_depth: int = DEFAULT_MAX_DEPTH) -> str:
    """Coerce a value of unknown shape to a trimmed scalar string ("" when nothing usable)."""
    if max_depth <= 0 or value is None:
        return ""

    if isinstance(value, str):
        s = value.strip()
        if not s:
            return ""

        if (s.startswith("{") and s.endswith("}")) or (s.startswith("[") and s.endswith("]")):
            try:
                parsed = json.loads(s)
            except ValueError:
                parsed = None
            if parsed is not None:
                candidate = normalize_candidate(parsed, max_depth - 1)
                if candidate:
                    return candidate

        if len(s) >= 2 and s[0] == s[-1] and s[0] in "\"'":
            candidate = normalize_candidate(s[1:-1], max_depth - 1)
            if candidate:
                return candidate

        return s

    if isinstance(value, bool):
        return "true" if value else "false"

    if isinstance(value, float) and value.is_integer():
        return str(int(value))

    if isinstance(value, (int, float)):
        return str(value)

    if isinstance(value, (list, tuple)):
        for item in value:
            candidate = normalize_candidate(item, max_depth - 1)
            if candidate:
                return candidate
        return ""

    if isinstance(value, dict):
        for key in VALUE_KEYS:
            if key in value:
                candidate = normalize_candidate(value[key], max_depth - 1)
                if candidate:
                    return candidate
        for item in value.values():
            candidate = normalize_candidate(item, max_depth - 1)
            if candidate:
                return candidate
        return ""

    return str(value).strip()


def _resolve_op(raw: Any) -> Literal["contains", "equals"]:
    if isinstance(raw, str) and raw.strip().lower() in EQUALS_TOKENS:
        return "equals"
    return "contains"


def resolve_rule(raw: Any) -> Optional[Rule]:
    """Resolve a stored rule of any historical shape into a Rule, or None if it has no value."""
    if raw is None:
        return None

    if isinstance(raw, Rule):
        return raw if raw.value else None

    if isinstance(raw, (str, int, float, bool)):
        value = normalize_candidate(raw)
        return Rule(op="contains", value=value) if value else None

    if isinstance(raw, (list, tuple)):
        for item in raw:
            resolved = resolve_rule(item)
            if resolved:
                return resolved
        return None

    if isinstance(raw, dict):
        op_source = next((raw[key] for key in OP_KEYS if raw.get(key) is not None), None)
        value_source = next((raw[key] for key in RULE_VALUE_KEYS if raw.get(key) is not None), None)
        value = normalize_candidate(value_source if value_source is not None else raw)
        if not value:
            return None
        return Rule(op=_resolve_op(op_source), value=value)

    value = normalize_candidate(raw)
    return Rule(op="contains", value=value) if value else None


def match_rule_against_inputs(inputs: Union[str, Iterable[Any]], rule: Any) -> bool:
    resolved = resolve_rule(rule)
    if not resolved:
        return False

    needle = resolved.value.lower()
    if not needle:
        return False

    if isinstance(inputs, str):
        inputs = [inputs]

    for item in inputs:
        hay = normalize_candidate(item).lower()
        if not hay:
            continue
        if resolved.op == "equals":
            if hay == needle:
                return True
        elif needle in hay:
            return True
    return False


def _rule_fallback_keys(slot: str) -> list[str]:
    upper = slot.upper()
    return [
        slot,
        f"{slot}_value",
        f"{slot}Value",
        f"{upper}Value",
        f"{upper}_VALUE",
        f"{slot}_val",
        f"{slot}Val",
        f"{slot}_text",
        f"{slot}Text",
        f"{slot}_rule",
        f"{slot}Rule",
        f"{slot}_pattern",
        f"{slot}Pattern",
    ]


def pick_rule_candidate(campaign: dict, branch: str) -> Any:
    """Raw rule value for a branch from a stored campaign record (unresolved)."""
    slot = RULE_SLOTS[branch]

    rules = campaign.get("rules")
    if isinstance(rules, dict):
        for key in (slot, branch):
            if rules.get(key) is not None:
                return rules[key]

    for key in _rule_fallback_keys(slot):
        candidate = campaign.get(key)
        if candidate is None:
            continue
        op = campaign.get(f"{slot}_op", campaign.get(f"{slot}Op"))
        if op is not None and isinstance(candidate, (str, int, float)):
            return {"op": op, "value": candidate}
        return candidate

    return None


def choose_campaign_route(inputs: Union[str, Iterable[Any]], campaign: Any) -> str:
    """Pick the branch for a message; branch1 wins when both branches match."""
    if isinstance(campaign, dict):
        rule1 = pick_rule_candidate(campaign, BRANCH1)
        rule2 = pick_rule_candidate(campaign, BRANCH2)
    else:
        rule1 = campaign.branch1.rule
        rule2 = campaign.branch2.rule

    if isinstance(inputs, str):
        inputs = [inputs]
    inputs = list(inputs)

    matched1 = match_rule_against_inputs(inputs, rule1)
    matched2 = match_rule_against_inputs(inputs, rule2)

    if matched1:
        return BRANCH1
    if matched2:
        return BRANCH2
    return NO_ROUTE
