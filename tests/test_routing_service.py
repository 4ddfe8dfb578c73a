from unittest.mock import Mock

import httpx
import pytest

from leadflow.services.campaign_store import StoredCampaign
from leadflow.services.routing_service import RoutingService, collect_needles


def stored(campaign_id="cmp-1", **overrides):
    raw = {
        "id": campaign_id,
        "name": "Spring",
        "base": {"pipelineId": 10, "statusId": 100},
        "rules": {"v1": {"op": "contains", "value": "consult"}, "v2": {"op": "equals", "value": "book now"}},
        "t1": {"pipelineId": 20, "statusId": 200},
        "t2": {"pipelineId": 30, "statusId": 300},
    }
    raw.update(overrides)
    return StoredCampaign(id=campaign_id, source="primary", raw=raw)


def add_lead(fake_crm, card_id=5, pipeline_id=10, status_id=100, social_id="@jane"):
    return fake_crm.add_card(card_id, pipeline_id, status_id, contact={"full_name": "Jane Doe", "social_id": social_id})


@pytest.fixture
def counters():
    store = Mock()
    store.increment.return_value = "primary"
    return store


@pytest.fixture
def service(crm, counters):
    return RoutingService(crm, counters)


class TestCollectNeedles:
    def test_order_and_dedup(self):
        assert collect_needles("jane", "JANE", "Jane Doe") == [("handle", "jane"), ("full_name", "Jane Doe")]

    def test_blank(self):
        assert collect_needles(" ", None, "") == []


class TestRouteMessage:
    def test_branch1_moves_card_and_counts(self, service, fake_crm, counters):
        add_lead(fake_crm)

        result = service.route_message("need a consult, book now please", "jane", "Jane Doe", [stored()])

        assert result.ok is True
        decision = result.value
        assert decision.route == "branch1"
        assert decision.rule == {"op": "contains", "value": "consult"}
        assert decision.used_needle == "jane"
        assert decision.selected["card_id"] == "5"
        assert decision.move["ok"] is True
        assert fake_crm.moves == [{"card_id": "5", "to_pipeline_id": "20", "to_status_id": "200"}]
        counters.increment.assert_called_once_with("cmp-1", "branch1")
        assert decision.counter_backend == "primary"

    def test_branch2_exact_match(self, service, fake_crm, counters):
        add_lead(fake_crm)

        result = service.route_message("Book now", "jane", None, [stored()])

        assert result.value.route == "branch2"
        assert fake_crm.moves[0]["to_pipeline_id"] == "30"
        counters.increment.assert_called_once_with("cmp-1", "branch2")

    def test_counter_keyed_by_store_id(self, service, fake_crm, counters):
        add_lead(fake_crm)
        campaign = stored("record-id")
        campaign.id = "cmp-9"

        result = service.route_message("consult", "jane", None, [campaign])

        assert result.value.campaign["id"] == "cmp-9"
        assert result.value.diagnostics[0]["id"] == "cmp-9"
        counters.increment.assert_called_once_with("cmp-9", "branch1")

    def test_first_matching_campaign_wins(self, service, fake_crm):
        add_lead(fake_crm)
        campaigns = [stored("a"), stored("b")]

        result = service.route_message("consult", "jane", None, campaigns)

        assert result.value.campaign["id"] == "a"
        assert [d["id"] for d in result.value.diagnostics] == ["a", "b"]

    def test_ineligible_campaigns_are_ignored(self, service, fake_crm):
        add_lead(fake_crm)
        campaigns = [stored("off", active=False), stored("on")]

        result = service.route_message("consult", "jane", None, campaigns)

        assert result.value.campaign["id"] == "on"

    def test_campaign_not_found(self, service, fake_crm):
        result = service.route_message("hello there", "jane", None, [stored()])

        assert result.ok is False
        assert result.error_code == "campaign_not_found"
        assert result.details["matches"] == [{"id": "cmp-1", "name": "Spring", "branch1": False, "branch2": False}]
        assert fake_crm.requests == []

    def test_campaign_target_missing(self, service):
        result = service.route_message("consult", "jane", None, [stored(t1=None)])
        assert result.error_code == "campaign_target_missing"

    def test_identity_missing(self, service):
        result = service.route_message("consult", " ", None, [stored()])
        assert result.error_code == "identity_missing"

    def test_card_not_found(self, service, fake_crm):
        add_lead(fake_crm, social_id="@someone_else")

        result = service.route_message("consult", "jane", "Nobody Here", [stored()])

        assert result.error_code == "card_not_found"
        assert [a["kind"] for a in result.details["attempts"]] == ["handle", "full_name"]

    def test_falls_back_to_full_name(self, service, fake_crm):
        add_lead(fake_crm, social_id=None)

        result = service.route_message("consult", "jane", "jane doe", [stored()])

        assert result.value.used_needle == "jane doe"
        assert len(result.value.attempts) == 2

    def test_search_failed(self, service, fake_crm):
        fake_crm.list_failure = httpx.Response(429, json={"message": "slow down"})

        result = service.route_message("consult", "jane", None, [stored()])

        assert result.error_code == "search_failed"
        assert result.details["error_code"] == "rate_limited"

    def test_already_in_target_does_not_move_or_count(self, service, fake_crm, counters):
        add_lead(fake_crm, pipeline_id=20, status_id=200)
        campaign = stored(base={"pipelineId": 20, "statusId": 200})

        result = service.route_message("consult", "jane", None, [campaign])

        assert result.ok is True
        assert result.value.move["attempted"] is False
        assert result.value.move["skipped_reason"] == "already_in_target"
        assert fake_crm.moves == []
        counters.increment.assert_not_called()

    def test_failed_move_is_reported_without_counting(self, service, fake_crm, counters):
        add_lead(fake_crm)
        fake_crm.move_status = 500

        result = service.route_message("consult", "jane", None, [stored()])

        assert result.ok is True
        assert result.value.move["ok"] is False
        assert result.value.move["error"] == "move_failed"
        counters.increment.assert_not_called()

    def test_target_by_name_uses_directory(self, service, fake_crm):
        add_lead(fake_crm)
        fake_crm.pipelines = [{"id": 40, "title": "Booked", "statuses": [{"id": 400, "title": "Confirmed"}]}]

        result = service.route_message(
            "consult", "jane", None, [stored(t1={"pipelineName": "Booked", "statusName": "confirmed"})]
        )

        assert result.value.campaign["target"]["pipeline_id"] == "40"
        assert fake_crm.moves[0] == {"card_id": "5", "to_pipeline_id": "40", "to_status_id": "400"}

    def test_unresolved_target(self, service, fake_crm):
        add_lead(fake_crm)

        result = service.route_message("consult", "jane", None, [stored(t1={"statusName": "Ghost"})])

        assert result.error_code == "target_unresolved"
        assert fake_crm.moves == []
