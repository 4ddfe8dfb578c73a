import json
from types import SimpleNamespace
from unittest.mock import MagicMock

from leadflow.models import CampaignRecord, LegacyKvItem
from leadflow.services.campaign_store import describe_eligibility, list_campaigns, unwrap_campaign_shape


def session_with(primary, legacy):
    db = MagicMock()

    def query(model):
        q = MagicMock()
        rows = primary if model is CampaignRecord else legacy
        q.order_by.return_value.all.return_value = rows
        q.filter.return_value.order_by.return_value.all.return_value = rows
        return q

    db.query.side_effect = query
    return db


class TestUnwrapCampaignShape:
    def test_plain_record(self):
        record = {"id": "a", "base": {}}
        assert unwrap_campaign_shape(record) is record

    def test_json_string(self):
        assert unwrap_campaign_shape('{"id": "a"}') == {"id": "a"}

    def test_nested_wrappers(self):
        raw = {"result": json.dumps({"value": {"campaign": {"name": "Deep"}}})}
        assert unwrap_campaign_shape(raw) == {"name": "Deep"}

    def test_array_wrapper(self):
        assert unwrap_campaign_shape([{"junk": 1}, {"id": "b"}]) == {"id": "b"}

    def test_unrecognized(self):
        assert unwrap_campaign_shape({"foo": "bar"}) is None
        assert unwrap_campaign_shape("not json") is None
        assert unwrap_campaign_shape(None) is None


class TestListCampaigns:
    def test_primary_first_and_legacy_deduplicated(self):
        primary = [SimpleNamespace(id="a", payload={"name": "A"})]
        legacy = [
            SimpleNamespace(key="cmp:item:a", value={"id": "a", "name": "stale copy"}),
            SimpleNamespace(key="cmp:item:b", value=json.dumps({"value": {"name": "B"}})),
        ]

        campaigns = list_campaigns(session_with(primary, legacy))

        assert [(c.id, c.source) for c in campaigns] == [("a", "primary"), ("b", "legacy")]
        assert campaigns[0].raw == {"name": "A", "id": "a"}
        assert campaigns[1].raw == {"name": "B", "id": "b"}

    def test_unreadable_record_kept_raw(self):
        primary = [SimpleNamespace(id="x", payload={"foo": 1})]
        campaigns = list_campaigns(session_with(primary, []))
        assert campaigns[0].raw == {"foo": 1}


class TestDescribeEligibility:
    def test_reports_both_paths(self):
        primary = [
            SimpleNamespace(
                id="ok",
                payload={
                    "name": "Full",
                    "base": {"pipelineId": 1, "statusId": 2},
                    "rules": {"v1": "hi"},
                    "texp": {"pipelineId": 3, "statusId": 4},
                    "expDays": 5,
                },
            ),
            SimpleNamespace(id="no-exp", payload={"name": "Partial", "base": {"pipelineId": 1, "statusId": 2}}),
            SimpleNamespace(id="off", payload={"name": "Off", "active": False}),
        ]
        report = {row["id"]: row for row in describe_eligibility(list_campaigns(session_with(primary, [])))}

        assert report["ok"]["sweep_eligible"] is True
        assert report["ok"]["expiration_days"] == 5
        assert report["ok"]["branch1_rule"] == {"op": "contains", "value": "hi"}
        assert report["no-exp"]["routing_eligible"] is True
        assert report["no-exp"]["sweep_reason"] == "missing_exp_pipeline"
        assert report["off"]["routing_reason"] == "disabled"
