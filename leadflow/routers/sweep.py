from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from leadflow.config import settings
from leadflow.database import get_db
from leadflow.dependencies import get_crm_service, require_cron_token
from leadflow.schemas.sweep import SweepResponse
from leadflow.services.alert_service import alert_sweep_errors
from leadflow.services.campaign_store import list_campaigns
from leadflow.services.counter_store import CounterStore
from leadflow.services.crm_service import CrmService
from leadflow.services.expiration_sweeper import ExpirationSweeper, sweep_run_recorder

router = APIRouter(tags=["sweep"])


def _or_default(value: Optional[int], default: int) -> int:
    return value if value is not None else default


@router.api_route(
    "/cron/expire",
    methods=["GET", "POST"],
    response_model=SweepResponse,
    dependencies=[Depends(require_cron_token)],
)
def run_expiration_sweep(
    per_page: Optional[int] = Query(default=None),
    max_pages: Optional[int] = Query(default=None),
    max_moves_per_run: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
    crm: CrmService = Depends(get_crm_service),
):
    """Run one expiration sweep over every stored campaign."""
    sweeper = ExpirationSweeper(crm, CounterStore.for_session(db), audit=sweep_run_recorder(db))
    summary = sweeper.run(
        list_campaigns(db),
        per_page=_or_default(per_page, settings.sweep_per_page),
        max_pages=_or_default(max_pages, settings.sweep_max_pages),
        max_moves_per_run=_or_default(max_moves_per_run, settings.sweep_max_moves_per_run),
    )
    if not summary.ok:
        alert_sweep_errors(summary.totals, summary.errors)
    return SweepResponse(**summary.to_dict())
