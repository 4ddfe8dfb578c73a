from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from leadflow.services.campaign_config import TargetRef


@dataclass
class PipelineStatus:
    id: str
    title: Optional[str] = None
    pipeline_id: Optional[str] = None


@dataclass
class Pipeline:
    id: str
    title: Optional[str] = None
    statuses: list[PipelineStatus] = field(default_factory=list)


def _clean_id(value: Any) -> Optional[str]:
    if value is None or isinstance(value, bool):
        return None
    text = str(value).strip()
    return text or None


def _as_rows(value: Any) -> list:
    if isinstance(value, list):
        return value
    if isinstance(value, dict):
        for key in ("data", "items", "list"):
            if isinstance(value.get(key), list):
                return value[key]
    return []


def normalize_pipeline(raw: dict) -> Optional[Pipeline]:
    pipeline_id = _clean_id(raw.get("id"))
    if pipeline_id is None:
        return None

    statuses: list[PipelineStatus] = []
    for row in _as_rows(raw.get("statuses")) + _as_rows(raw.get("pipeline_statuses")):
        if not isinstance(row, dict):
            continue
        status_id = _clean_id(row.get("id"))
        if status_id is None:
            continue
        statuses.append(
            PipelineStatus(
                id=status_id,
                title=row.get("title") or row.get("name"),
                pipeline_id=_clean_id(row.get("pipeline_id")) or pipeline_id,
            )
        )

    return Pipeline(id=pipeline_id, title=raw.get("title") or raw.get("name"), statuses=statuses)


def _same_name(title: Optional[str], candidates: Iterable[Optional[str]]) -> bool:
    if not title:
        return False
    folded = title.strip().casefold()
    return any(candidate and candidate.strip().casefold() == folded for candidate in candidates)


def _find(items, id_value: Optional[str], name_value: Optional[str]):
    if id_value:
        for item in items:
            if item.id == id_value:
                return item
    # Historical records sometimes carry the name in the id field.
    for item in items:
        if _same_name(item.title, (name_value, id_value)):
            return item
    return None


def resolve_target(target: TargetRef, pipelines: list[Pipeline]) -> TargetRef:
    """Fill the missing ids/names of a target from the pipeline directory; unresolved fields pass through."""
    pipeline = _find(pipelines, target.pipeline_id, target.pipeline_name) if target.has_pipeline() else None
    status = None

    if pipeline is not None:
        if target.has_status():
            status = _find(pipeline.statuses, target.status_id, target.status_name)
    elif target.has_status():
        for candidate in pipelines:
            status = _find(candidate.statuses, target.status_id, target.status_name)
            if status is not None:
                pipeline = candidate
                break

    return TargetRef(
        pipeline_id=pipeline.id if pipeline else target.pipeline_id,
        status_id=status.id if status else target.status_id,
        pipeline_name=(pipeline.title if pipeline and pipeline.title else target.pipeline_name),
        status_name=(status.title if status and status.title else target.status_name),
    )


def needs_directory(target: TargetRef) -> bool:
    """True when a target cannot be moved to without consulting the directory."""

    def numeric(value: Optional[str]) -> bool:
        return bool(value) and value.isdigit()

    return not numeric(target.pipeline_id) or (target.has_status() and not numeric(target.status_id))
