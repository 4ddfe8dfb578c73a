"""Paginated search of the card directory by contact identity (handle, full name, profile URL)."""

import re
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

from leadflow.logging_config import get_logger
from leadflow.services.crm_service import CrmRequestError, CrmService
from leadflow.services.result import Result

logger = get_logger("identity_search")

DEFAULT_PER_PAGE = 50
DEFAULT_MAX_PAGES = 20
MAX_PER_PAGE = 100
MAX_PAGES_LIMIT = 100

_SCHEME_RE = re.compile(r"^https?://")
_WWW_RE = re.compile(r"^www\.")


@dataclass
class IdentityCandidate:
    path: str
    value: str


@dataclass
class SearchItem:
    card_id: str
    title: Optional[str]
    pipeline_id: Optional[str]
    status_id: Optional[str]
    pipeline_title: Optional[str]
    status_title: Optional[str]
    matched_field: str
    matched_value: str

    def numeric_id(self) -> int:
        return int(self.card_id) if self.card_id.isdigit() else -1


@dataclass
class SearchOutcome:
    needle: str
    pages_scanned: int = 0
    cards_checked: int = 0
    match: Optional[SearchItem] = None
    items: list[SearchItem] = field(default_factory=list)
    filters: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)


def clamp(value: Optional[int], default: int, low: int, high: int) -> int:
    if value is None:
        return default
    return max(low, min(high, int(value)))


def normalize_plain(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def normalize_social(value: Optional[str]) -> str:
    """Reduce a handle or profile URL to the bare account name ("@user", ".../user/" -> "user")."""
    s = normalize_plain(value).lstrip("@")
    s = _SCHEME_RE.sub("", s)
    s = _WWW_RE.sub("", s)
    s = re.split(r"[#?]", s, maxsplit=1)[0]
    s = s.rstrip("/")
    if "/" in s:
        segments = [segment for segment in s.split("/") if segment]
        s = segments[-1] if segments else ""
    return s.lstrip("@")


def _text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text or None


def _clients(card: dict) -> list[dict]:
    contact = card.get("contact") if isinstance(card.get("contact"), dict) else {}
    clients: list[dict] = []
    if isinstance(card.get("client"), dict):
        clients.append(card["client"])
    if isinstance(contact.get("client"), dict):
        clients.append(contact["client"])
    if isinstance(contact.get("clients"), list):
        clients.extend(client for client in contact["clients"] if isinstance(client, dict))
    return clients


def extract_candidates(card: dict) -> list[IdentityCandidate]:
    """Walk the card's contact graph and collect every identity-looking value."""
    candidates: list[IdentityCandidate] = []

    def add(path: str, value: Any) -> None:
        text = _text(value)
        if text:
            candidates.append(IdentityCandidate(path=path, value=text))

    contact = card.get("contact")
    if isinstance(contact, dict):
        add("contact.full_name", contact.get("full_name"))
        add("contact.social_id", contact.get("social_id"))

    clients = _clients(card)
    for index, client in enumerate(clients):
        suffix = f"#{index}" if len(clients) > 1 else ""
        add(f"client{suffix}.full_name", client.get("full_name"))
        add(f"client{suffix}.social_id", client.get("social_id"))
        profiles = client.get("profiles")
        if isinstance(profiles, list):
            for profile in profiles:
                if not isinstance(profile, dict):
                    continue
                label = profile.get("label") or profile.get("id") or "?"
                add(f"client{suffix}.profiles[{label}].value", profile.get("value"))

    return candidates


def match_candidates(needle: str, candidates: list[IdentityCandidate]) -> Optional[IdentityCandidate]:
    needle_plain = normalize_plain(needle)
    needle_social = normalize_social(needle)
    if not needle_plain and not needle_social:
        return None

    for candidate in candidates:
        if needle_plain and normalize_plain(candidate.value) == needle_plain:
            return candidate
        if needle_social and normalize_social(candidate.value) == needle_social:
            return candidate
    return None


def card_location(card: dict) -> tuple[Optional[str], Optional[str]]:
    status = card.get("status") if isinstance(card.get("status"), dict) else {}
    pipeline_id = _text(card.get("pipeline_id")) or _text(status.get("pipeline_id"))
    status_id = _text(card.get("status_id")) or _text(status.get("id"))
    return pipeline_id, status_id


def _summarize(card: dict, hit: IdentityCandidate) -> SearchItem:
    pipeline_id, status_id = card_location(card)
    pipeline = card.get("pipeline") if isinstance(card.get("pipeline"), dict) else {}
    status = card.get("status") if isinstance(card.get("status"), dict) else {}
    return SearchItem(
        card_id=_text(card.get("id")) or "",
        title=_text(card.get("title")),
        pipeline_id=pipeline_id,
        status_id=status_id,
        pipeline_title=_text(pipeline.get("title")),
        status_title=_text(status.get("title")),
        matched_field=hit.path,
        matched_value=hit.value,
    )


def outside_filter(card: dict, pipeline_id: Optional[str], status_id: Optional[str]) -> bool:
    """True when the card reports a location that contradicts the requested filter."""
    card_pipeline, card_status = card_location(card)
    if pipeline_id and card_pipeline and card_pipeline != pipeline_id:
        return True
    if status_id and card_status and card_status != status_id:
        return True
    return False


class IdentitySearchEngine:
    def __init__(self, crm: CrmService):
        self.crm = crm

    def _detail(self, card_id: str) -> Optional[dict]:
        try:
            return self.crm.get_card(card_id)
        except CrmRequestError as e:
            if e.status == 404:
                return None
            raise

    def search(
        self,
        needle: Optional[str],
        pipeline_id: Optional[str] = None,
        status_id: Optional[str] = None,
        per_page: Optional[int] = None,
        max_pages: Optional[int] = None,
    ) -> Result[SearchOutcome]:
        """Scan every page (up to max_pages) and select the highest-id matching card.

        Scanning does not stop at the first hit: stale duplicates of a lead can
        exist, and the card with the numerically highest id is treated as the
        most recent one.
        """
        needle = (needle or "").strip()
        if not needle:
            return Result.failure("needle is required", "needle_required")

        per_page = clamp(per_page, DEFAULT_PER_PAGE, 1, MAX_PER_PAGE)
        max_pages = clamp(max_pages, DEFAULT_MAX_PAGES, 1, MAX_PAGES_LIMIT)
        outcome = SearchOutcome(
            needle=needle,
            filters={
                "pipeline_id": pipeline_id,
                "status_id": status_id,
                "per_page": per_page,
                "max_pages": max_pages,
            },
        )
        seen: set[str] = set()

        try:
            for page in range(1, max_pages + 1):
                cards_page = self.crm.fetch_cards_page(
                    page, per_page, pipeline_id=pipeline_id, status_id=status_id, with_relations=True
                )
                outcome.pages_scanned = page

                for card in cards_page.items:
                    card_id = _text(card.get("id"))
                    if card_id and card_id in seen:
                        continue
                    if outside_filter(card, pipeline_id, status_id):
                        continue
                    if card_id:
                        seen.add(card_id)
                    outcome.cards_checked += 1

                    source = card
                    candidates = extract_candidates(card)
                    if not candidates and card_id:
                        detail = self._detail(card_id)
                        if detail is None:
                            continue
                        source = {**card, **detail}
                        candidates = extract_candidates(detail)

                    hit = match_candidates(needle, candidates)
                    if hit:
                        outcome.items.append(_summarize(source, hit))

                if not cards_page.has_next:
                    break
        except CrmRequestError as e:
            logger.warning(
                "Card search failed",
                extra={"context": {"needle": needle, "code": e.code, "status": e.status}},
            )
            return Result.failure(str(e), e.code, details=e.to_details())

        if outcome.items:
            outcome.match = max(outcome.items, key=SearchItem.numeric_id)

        logger.info(
            "Card search finished",
            extra={
                "context": {
                    "needle": needle,
                    "pages": outcome.pages_scanned,
                    "checked": outcome.cards_checked,
                    "matches": len(outcome.items),
                    "card_id": outcome.match.card_id if outcome.match else None,
                }
            },
        )
        return Result.success(outcome)
