import json
import math
from typing import Optional
from unittest.mock import Mock

import httpx
import pytest

from leadflow.services.crm_service import CrmClientConfig, CrmService


class FakeCrmApi:
    """In-memory card directory served through httpx.MockTransport."""

    def __init__(self):
        self.cards: dict[str, dict] = {}
        self.details: dict[str, dict] = {}
        self.pipelines: list[dict] = []
        self.requests: list[httpx.Request] = []
        self.moves: list[dict] = []
        self.move_status = 200
        self.move_body: dict = {"ok": True}
        self.scoped_listing = True
        self.list_failure: Optional[httpx.Response] = None
        self.fail_on_page: Optional[int] = None

    def add_card(self, card_id, pipeline_id, status_id, **fields) -> dict:
        card = {"id": card_id, "pipeline_id": pipeline_id, "status_id": status_id, **fields}
        self.cards[str(card_id)] = card
        return card

    def list_calls(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == "GET" and r.url.path.endswith("/cards")]

    def move_calls(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == "POST"]

    def _listing(self, request: httpx.Request, pipeline_id: Optional[str]) -> httpx.Response:
        params = request.url.params
        page = int(params.get("page", "1"))
        if self.list_failure is not None and (self.fail_on_page is None or self.fail_on_page == page):
            return self.list_failure
        per_page = int(params.get("per_page", "50"))
        status_id = params.get("status_id")

        rows = [
            card
            for card in sorted(self.cards.values(), key=lambda c: int(c["id"]))
            if (pipeline_id is None or str(card["pipeline_id"]) == pipeline_id)
            and (status_id is None or str(card["status_id"]) == status_id)
        ]
        last_page = max(1, math.ceil(len(rows) / per_page))
        chunk = rows[(page - 1) * per_page : page * per_page]
        return httpx.Response(200, json={"data": chunk, "meta": {"current_page": page, "last_page": last_page}})

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        parts = request.url.path.strip("/").split("/")

        if request.method == "POST" and parts == ["pipelines", "cards", "move"]:
            body = json.loads(request.content)
            self.moves.append(body)
            card = self.cards.get(str(body["card_id"]))
            if card is not None and 200 <= self.move_status < 300 and self.move_body.get("ok", True):
                card["pipeline_id"] = int(body["to_pipeline_id"])
                card["status_id"] = int(body["to_status_id"])
            return httpx.Response(self.move_status, json=self.move_body)

        if parts == ["pipelines"]:
            return httpx.Response(200, json={"data": self.pipelines, "meta": {"current_page": 1, "last_page": 1}})
        if parts == ["pipelines", "cards"]:
            return self._listing(request, request.url.params.get("pipeline_id"))
        if len(parts) == 3 and parts[:2] == ["pipelines", "cards"]:
            card = self.details.get(parts[2]) or self.cards.get(parts[2])
            if card is None:
                return httpx.Response(404, json={"message": "not found"})
            return httpx.Response(200, json={"data": card})
        if len(parts) == 3 and parts[0] == "pipelines" and parts[2] == "cards":
            if not self.scoped_listing:
                return httpx.Response(404, json={"message": "not found"})
            return self._listing(request, parts[1])
        if len(parts) == 3 and parts[0] == "pipelines" and parts[2] == "statuses":
            for pipeline in self.pipelines:
                if str(pipeline["id"]) == parts[1]:
                    return httpx.Response(200, json={"data": pipeline.get("statuses", [])})
            return httpx.Response(404, json={"message": "not found"})

        return httpx.Response(404, json={"message": "unknown route"})


@pytest.fixture
def db_session():
    """Mock database session."""
    return Mock()


@pytest.fixture
def fake_crm():
    return FakeCrmApi()


@pytest.fixture
def crm(fake_crm):
    config = CrmClientConfig(base_url="https://crm.test", token="test-token", timeout=5.0)
    return CrmService(config, transport=httpx.MockTransport(fake_crm.handler))
