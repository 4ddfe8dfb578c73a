from leadflow.schemas.routing import InboundMessage, RoutingResponse
from leadflow.schemas.sweep import SweepResponse

__all__ = ["InboundMessage", "RoutingResponse", "SweepResponse"]
