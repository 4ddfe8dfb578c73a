from dataclasses import asdict, dataclass
from typing import Any, Optional

from leadflow.logging_config import get_logger
from leadflow.services.campaign_config import TargetRef
from leadflow.services.crm_service import CrmRequestError, CrmService

logger = get_logger("move_executor")

ALREADY_IN_TARGET = "already_in_target"


@dataclass
class MoveResult:
    attempted: bool
    ok: bool
    skipped_reason: Optional[str] = None
    status: Optional[int] = None
    response: Any = None
    error: Optional[str] = None
    sent: Optional[dict] = None

    def to_dict(self) -> dict:
        return asdict(self)


def is_in_target(pipeline_id: Optional[str], status_id: Optional[str], target: TargetRef) -> bool:
    if not target.pipeline_id or str(pipeline_id or "") != target.pipeline_id:
        return False
    return not target.status_id or str(status_id or "") == target.status_id


class MoveExecutor:
    def __init__(self, crm: CrmService):
        self.crm = crm

    def execute(
        self,
        card_id: Any,
        current_pipeline_id: Optional[str],
        current_status_id: Optional[str],
        target: TargetRef,
    ) -> MoveResult:
        """Move a card to the resolved target unless it is already there."""
        if is_in_target(current_pipeline_id, current_status_id, target):
            return MoveResult(attempted=False, ok=True, skipped_reason=ALREADY_IN_TARGET)

        sent = {
            "card_id": str(card_id),
            "to_pipeline_id": target.pipeline_id,
            "to_status_id": target.status_id,
        }

        try:
            response = self.crm.move_card(card_id, target.pipeline_id, target.status_id)
        except CrmRequestError as e:
            logger.warning(
                "Card move transport failure",
                extra={"context": {"card_id": str(card_id), "error": str(e)}},
            )
            return MoveResult(attempted=True, ok=False, error=e.code, response=str(e), sent=sent)

        try:
            body = response.json()
        except ValueError:
            body = response.text

        body_ok = not isinstance(body, dict) or body.get("ok") is None or body.get("ok") is True
        ok = response.is_success and body_ok

        if ok:
            logger.info(
                "Card moved",
                extra={"context": {**sent, "status": response.status_code}},
            )
            return MoveResult(attempted=True, ok=True, status=response.status_code, response=body, sent=sent)

        error = "rate_limited" if response.status_code == 429 else "move_failed"
        logger.warning(
            "Card move rejected",
            extra={"context": {**sent, "status": response.status_code, "error": error}},
        )
        return MoveResult(
            attempted=True,
            ok=False,
            status=response.status_code,
            response=body,
            error=error,
            sent=sent,
        )
