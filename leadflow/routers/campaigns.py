"""Operator view of stored campaigns."""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from leadflow.database import get_db
from leadflow.dependencies import require_cron_token
from leadflow.services.campaign_store import describe_eligibility, list_campaigns

router = APIRouter(prefix="/campaigns", tags=["campaigns"])


class EligibilityEntry(BaseModel):
    id: str
    source: str
    name: Optional[str] = None
    routing_eligible: bool
    routing_reason: Optional[str] = None
    sweep_eligible: bool
    sweep_reason: Optional[str] = None
    branch1_rule: Optional[dict] = None
    branch2_rule: Optional[dict] = None
    expiration_days: Optional[int] = None


class EligibilityResponse(BaseModel):
    count: int
    campaigns: list[EligibilityEntry]


@router.get("/eligibility", response_model=EligibilityResponse, dependencies=[Depends(require_cron_token)])
def campaign_eligibility(db: Session = Depends(get_db)):
    report = describe_eligibility(list_campaigns(db))
    return EligibilityResponse(count=len(report), campaigns=report)
