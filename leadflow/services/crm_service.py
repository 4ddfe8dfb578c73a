"""HTTP client for the external card directory (pipelines, cards, moves)."""

from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from leadflow.logging_config import get_logger
from leadflow.services.target_resolver import Pipeline, normalize_pipeline

logger = get_logger("crm_service")

RELATION_HINTS = ("contact", "contact.client", "client", "client.profiles")
PIPELINES_PER_PAGE = 50
PIPELINES_MAX_PAGES = 20


@dataclass(frozen=True)
class CrmClientConfig:
    base_url: str
    token: str = ""
    timeout: float = 15.0
    move_path: str = "/pipelines/cards/move"

    def headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers


class CrmRequestError(Exception):
    """Directory call that did not produce a usable 2xx JSON response."""

    def __init__(
        self,
        code: str,
        message: str,
        status: Optional[int] = None,
        body: Any = None,
        retry_after: Optional[float] = None,
    ):
        self.code = code
        self.status = status
        self.body = body
        self.retry_after = retry_after
        super().__init__(message)

    def to_details(self) -> dict[str, Any]:
        details: dict[str, Any] = {"message": str(self)}
        if self.status is not None:
            details["status"] = self.status
        if self.body is not None:
            details["body"] = self.body
        if self.retry_after is not None:
            details["retry_after"] = self.retry_after
        return details


@dataclass
class CardsPage:
    page: int
    items: list[dict] = field(default_factory=list)
    has_next: bool = False


def extract_list(payload: Any) -> list:
    """Pull the card array out of the shapes the directory has been seen to return."""
    if isinstance(payload, list):
        return payload
    if not isinstance(payload, dict):
        return []
    for key in ("data", "items", "result"):
        value = payload.get(key)
        if isinstance(value, list):
            return value
    nested = payload.get("data")
    if isinstance(nested, dict) and isinstance(nested.get("data"), list):
        return nested["data"]
    return []


def _to_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def has_next_page(payload: Any, page: int, per_page: int, count: int) -> bool:
    if isinstance(payload, dict):
        links = payload.get("links")
        if isinstance(links, dict) and links.get("next"):
            return True
        if payload.get("next_page_url"):
            return True

        meta = payload.get("meta")
        if not isinstance(meta, dict):
            data = payload.get("data")
            meta = data.get("meta") if isinstance(data, dict) else None
        meta = meta if isinstance(meta, dict) else {}
        current = _to_int(meta.get("current_page", payload.get("current_page")))
        last = _to_int(meta.get("last_page", payload.get("last_page")))
        if current is not None and last is not None:
            return current < last

    return count > 0 and count >= per_page


def _parse_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text[:500]


def _retry_after(response: httpx.Response) -> Optional[float]:
    raw = response.headers.get("Retry-After")
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError:
        return None


class CrmService:
    """Service for the card directory API."""

    def __init__(self, config: CrmClientConfig, transport: Optional[httpx.BaseTransport] = None):
        self.config = config
        self.transport = transport
        self._scoped_path_missing: set[str] = set()

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.config.base_url.rstrip("/"),
            headers=self.config.headers(),
            timeout=self.config.timeout,
            transport=self.transport,
        )

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[list[tuple[str, Any]]] = None,
        json: Optional[dict] = None,
    ) -> httpx.Response:
        try:
            with self._client() as client:
                return client.request(method, path, params=params, json=json)
        except httpx.TimeoutException as e:
            raise CrmRequestError("network_error", f"timeout calling {path}: {e}") from e
        except httpx.HTTPError as e:
            raise CrmRequestError("network_error", f"transport error calling {path}: {e}") from e

    def _get_json(self, path: str, params: Optional[list[tuple[str, Any]]] = None) -> Any:
        response = self._request("GET", path, params=params)

        if response.status_code == 429:
            raise CrmRequestError(
                "rate_limited",
                f"rate limited on {path}",
                status=429,
                body=_parse_body(response),
                retry_after=_retry_after(response),
            )
        if not response.is_success:
            raise CrmRequestError(
                "request_failed",
                f"{response.status_code} on {path}",
                status=response.status_code,
                body=_parse_body(response),
            )

        try:
            return response.json()
        except ValueError as e:
            raise CrmRequestError("network_error", f"non-JSON response from {path}") from e

    def fetch_cards_page(
        self,
        page: int,
        per_page: int,
        pipeline_id: Optional[str] = None,
        status_id: Optional[str] = None,
        with_relations: bool = False,
    ) -> CardsPage:
        """Fetch one page of cards, preferring the pipeline-scoped path when a pipeline is given."""
        params: list[tuple[str, Any]] = [("page", page), ("per_page", per_page)]
        if status_id:
            params.append(("status_id", status_id))
        if with_relations:
            params.extend(("with[]", relation) for relation in RELATION_HINTS)

        payload = None
        if pipeline_id and pipeline_id not in self._scoped_path_missing:
            try:
                payload = self._get_json(f"/pipelines/{pipeline_id}/cards", params=params)
            except CrmRequestError as e:
                if e.status != 404:
                    raise
                logger.info(
                    "Pipeline-scoped card listing not available, using global endpoint",
                    extra={"context": {"pipeline_id": pipeline_id}},
                )
                self._scoped_path_missing.add(pipeline_id)

        if payload is None:
            if pipeline_id:
                params.append(("pipeline_id", pipeline_id))
            payload = self._get_json("/pipelines/cards", params=params)

        items = [item for item in extract_list(payload) if isinstance(item, dict)]
        return CardsPage(page=page, items=items, has_next=has_next_page(payload, page, per_page, len(items)))

    def get_card(self, card_id: Any) -> dict:
        payload = self._get_json(f"/pipelines/cards/{card_id}")
        if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
            return payload["data"]
        return payload if isinstance(payload, dict) else {}

    def move_card(self, card_id: Any, pipeline_id: Optional[str], status_id: Optional[str]) -> httpx.Response:
        body = {
            "card_id": str(card_id),
            "to_pipeline_id": pipeline_id,
            "to_status_id": status_id,
        }
        return self._request("POST", self.config.move_path, json=body)

    def _fetch_statuses(self, pipeline_id: str) -> list:
        try:
            payload = self._get_json(f"/pipelines/{pipeline_id}/statuses", params=[("per_page", 100)])
        except CrmRequestError as e:
            if e.status == 404:
                return []
            raise
        return extract_list(payload)

    def list_pipelines(self) -> list[Pipeline]:
        """Pipelines with their statuses; statuses are fetched separately when not inlined."""
        pipelines: list[Pipeline] = []
        for page in range(1, PIPELINES_MAX_PAGES + 1):
            params = [("page", page), ("per_page", PIPELINES_PER_PAGE), ("with[]", "statuses")]
            payload = self._get_json("/pipelines", params=params)
            rows = extract_list(payload)
            for raw in rows:
                if not isinstance(raw, dict):
                    continue
                pipeline = normalize_pipeline(raw)
                if pipeline is None:
                    continue
                if not pipeline.statuses:
                    pipeline = normalize_pipeline({**raw, "statuses": self._fetch_statuses(pipeline.id)}) or pipeline
                pipelines.append(pipeline)
            if not has_next_page(payload, page, PIPELINES_PER_PAGE, len(rows)):
                break
        return pipelines
