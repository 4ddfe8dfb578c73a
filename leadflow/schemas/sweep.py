from typing import Any, Optional

from pydantic import BaseModel


class CampaignSweepReport(BaseModel):
    campaign_id: str
    name: Optional[str] = None
    days: int
    target: dict[str, Any]
    total_cards: int
    timestamped: int
    without_timestamp: int
    stale: int
    moved: int
    skipped_by_limit: int
    pages: int
    max_pages_reached: bool
    moves: list[dict[str, Any]]
    errors: list[dict[str, Any]]


class SkippedCampaignReport(BaseModel):
    campaign_id: str
    reason: str


class SweepResponse(BaseModel):
    ok: bool
    started_at: str
    finished_at: str
    params: dict[str, int]
    totals: dict[str, int]
    campaigns: list[CampaignSweepReport]
    skipped: list[SkippedCampaignReport]
    errors: list[dict[str, Any]]
