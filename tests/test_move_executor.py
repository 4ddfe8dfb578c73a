import json

import httpx

from leadflow.services.campaign_config import TargetRef
from leadflow.services.move_executor import ALREADY_IN_TARGET, MoveExecutor, is_in_target

TARGET = TargetRef(pipeline_id="20", status_id="200")


class TestIsInTarget:
    def test_pipeline_and_status_match(self):
        assert is_in_target("20", "200", TARGET) is True

    def test_status_differs(self):
        assert is_in_target("20", "100", TARGET) is False

    def test_target_without_status(self):
        assert is_in_target("20", "999", TargetRef(pipeline_id="20")) is True

    def test_target_without_pipeline_never_matches(self):
        assert is_in_target("20", "200", TargetRef(status_id="200")) is False


class TestMoveExecutor:
    def test_skip_without_http_call(self, crm, fake_crm):
        result = MoveExecutor(crm).execute("5", "20", "200", TARGET)

        assert result.attempted is False
        assert result.ok is True
        assert result.skipped_reason == ALREADY_IN_TARGET
        assert fake_crm.requests == []

    def test_successful_move(self, crm, fake_crm):
        fake_crm.add_card(5, 10, 100)

        result = MoveExecutor(crm).execute(5, "10", "100", TARGET)

        assert result.attempted is True
        assert result.ok is True
        assert result.status == 200
        assert fake_crm.moves == [{"card_id": "5", "to_pipeline_id": "20", "to_status_id": "200"}]
        assert json.loads(fake_crm.move_calls()[0].content)["to_status_id"] == "200"
        assert fake_crm.move_calls()[0].headers["Authorization"] == "Bearer test-token"

    def test_body_ok_false_is_failure(self, crm, fake_crm):
        fake_crm.move_body = {"ok": False, "error": "locked"}

        result = MoveExecutor(crm).execute(5, "10", "100", TARGET)

        assert result.attempted is True
        assert result.ok is False
        assert result.error == "move_failed"
        assert result.response == {"ok": False, "error": "locked"}

    def test_non_2xx_is_failure(self, crm, fake_crm):
        fake_crm.move_status = 422
        fake_crm.move_body = {"message": "invalid status"}

        result = MoveExecutor(crm).execute(5, "10", "100", TARGET)

        assert result.ok is False
        assert result.status == 422
        assert result.error == "move_failed"

    def test_rate_limited(self, crm, fake_crm):
        fake_crm.move_status = 429
        fake_crm.move_body = {}

        result = MoveExecutor(crm).execute(5, "10", "100", TARGET)

        assert result.error == "rate_limited"

    def test_transport_failure(self, crm):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        crm.transport = httpx.MockTransport(handler)
        result = MoveExecutor(crm).execute(5, "10", "100", TARGET)

        assert result.attempted is True
        assert result.ok is False
        assert result.error == "network_error"
