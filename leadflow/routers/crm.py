"""Card directory diagnostics for operators."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse

from leadflow.config import settings
from leadflow.dependencies import get_crm_service, require_cron_token
from leadflow.services.crm_service import CrmService
from leadflow.services.identity_search import IdentitySearchEngine

router = APIRouter(prefix="/crm", tags=["crm"], dependencies=[Depends(require_cron_token)])


@router.get("/cards/search")
def search_cards(
    needle: str = Query(default=""),
    pipeline_id: Optional[str] = Query(default=None),
    status_id: Optional[str] = Query(default=None),
    per_page: Optional[int] = Query(default=None),
    max_pages: Optional[int] = Query(default=None),
    crm: CrmService = Depends(get_crm_service),
):
    result = IdentitySearchEngine(crm).search(
        needle,
        pipeline_id=pipeline_id,
        status_id=status_id,
        per_page=per_page if per_page is not None else settings.search_per_page,
        max_pages=max_pages if max_pages is not None else settings.search_max_pages,
    )
    if result.ok:
        return result.to_dict()

    if result.error_code == "needle_required":
        raise HTTPException(status_code=400, detail="needle is required")

    if result.error_code == "rate_limited":
        retry_after = (result.details or {}).get("retry_after")
        headers = {"Retry-After": str(int(retry_after))} if retry_after is not None else None
        return JSONResponse(status_code=429, content=result.to_dict(), headers=headers)

    return JSONResponse(status_code=502, content=result.to_dict())
