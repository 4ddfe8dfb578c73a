"""Shared FastAPI dependencies: CRM client and the shared-secret check."""

from typing import Optional

from fastapi import Header, HTTPException, Query, status

from leadflow.config import settings
from leadflow.services.crm_service import CrmService


def get_crm_service() -> CrmService:
    return CrmService(settings.crm_client_config())


def _bearer(value: Optional[str]) -> str:
    if not value:
        return ""
    value = value.strip()
    if value.lower().startswith("bearer "):
        return value[7:].strip()
    return value


def require_cron_token(
    authorization: Optional[str] = Header(default=None),
    x_cron_token: Optional[str] = Header(default=None, alias="X-Cron-Token"),
    token: Optional[str] = Query(default=None),
) -> None:
    """Accept the shared secret as a bearer token, X-Cron-Token header or ?token=; open when unset."""
    expected = settings.cron_secret
    if not expected:
        return
    provided = [_bearer(authorization), (x_cron_token or "").strip(), (token or "").strip()]
    if expected not in provided:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid cron token")
