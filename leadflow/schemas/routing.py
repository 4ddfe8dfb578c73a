from typing import Any, Optional

from pydantic import BaseModel


class InboundMessage(BaseModel):
    text: str = ""
    handle: Optional[str] = None
    full_name: Optional[str] = None
    handle_raw: Optional[str] = None


class RoutingResponse(BaseModel):
    ok: bool
    value: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    details: Optional[dict[str, Any]] = None
