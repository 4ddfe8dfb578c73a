from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from leadflow.config import settings
from leadflow.database import get_db
from leadflow.dependencies import get_crm_service
from leadflow.schemas.routing import InboundMessage, RoutingResponse
from leadflow.services.campaign_store import list_campaigns
from leadflow.services.counter_store import CounterStore
from leadflow.services.crm_service import CrmService
from leadflow.services.routing_service import RoutingService

router = APIRouter(tags=["routing"])


@router.post("/routing/message", response_model=RoutingResponse)
def route_message(
    message: InboundMessage,
    db: Session = Depends(get_db),
    crm: CrmService = Depends(get_crm_service),
):
    """Match an inbound message against campaign rules and move the sender's card."""
    service = RoutingService(
        crm,
        CounterStore.for_session(db),
        search_per_page=settings.search_per_page,
        search_max_pages=settings.search_max_pages,
    )
    result = service.route_message(
        text=message.text,
        handle=message.handle,
        full_name=message.full_name,
        handle_raw=message.handle_raw,
        stored=list_campaigns(db),
    )
    return RoutingResponse(**result.to_dict())
