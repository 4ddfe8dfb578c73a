"""Scheduled expiration sweep: move cards that sat in a campaign's base stage for too long.

Campaigns, pages and moves are processed sequentially; the directory API has
one shared rate limit. A card moved by one run is no longer in the base
stage, so the next run does not see it again.
"""

import math
import re
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from leadflow.logging_config import LoggerAdapter, bind_logger, get_logger
from leadflow.models import SweepRun
from leadflow.services.campaign_config import CampaignConfig, TargetRef, lookup, resolve_campaign
from leadflow.services.campaign_store import StoredCampaign
from leadflow.services.counter_store import CounterStore
from leadflow.services.crm_service import CrmRequestError, CrmService
from leadflow.services.identity_search import card_location, clamp, outside_filter
from leadflow.services.move_executor import MoveExecutor
from leadflow.services.target_resolver import Pipeline, needs_directory, resolve_target

logger = get_logger("expiration_sweeper")

MS_PER_DAY = 86_400_000
SECONDS_THRESHOLD = 1e12
ERROR_SAMPLE_LIMIT = 20

_TIME = r"(T\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?)"
_FRACTION_RE = re.compile(r"(T\d{2}:\d{2}:\d{2})\.(\d+)")
_COMPACT_OFFSET_RE = re.compile(_TIME + r"([+-]\d{2})(\d{2})$")
_HOUR_OFFSET_RE = re.compile(_TIME + r"([+-]\d{2})$")

TIMESTAMP_KEYS = (
    "status_changed_at",
    "pivot.updated_at",
    "status.pivot.updated_at",
    "status_updated_at",
    "updated_at",
    "updatedAt",
)


def now_ms() -> int:
    return int(time.time() * 1000)


def _iso(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat()


def normalize_iso(text: str) -> str:
    """Rewrite an ISO datetime into the subset datetime.fromisoformat accepts on every supported Python.

    Handles a space separator, a trailing Z, fractions of any length and
    offsets written as +HHMM or +HH.
    """
    text = text.replace(" ", "T", 1)
    if text[-1:] in ("Z", "z"):
        text = text[:-1] + "+00:00"
    text = _FRACTION_RE.sub(lambda m: f"{m.group(1)}.{(m.group(2) + '000000')[:6]}", text)
    text = _COMPACT_OFFSET_RE.sub(r"\1\2:\3", text)
    return _HOUR_OFFSET_RE.sub(r"\1\2:00", text)


def to_timestamp_ms(value: Any) -> Optional[int]:
    """Epoch ms from epoch seconds, epoch ms, a numeric string or an ISO datetime string."""
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        if not math.isfinite(value) or value <= 0:
            return None
        return int(value * 1000) if value < SECONDS_THRESHOLD else int(value)

    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None
    try:
        return to_timestamp_ms(float(text))
    except ValueError:
        pass

    try:
        parsed = datetime.fromisoformat(normalize_iso(text))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)


def card_timestamp_ms(card: dict) -> Optional[int]:
    """When the card entered its current status, from the first key that yields a timestamp."""
    for key in TIMESTAMP_KEYS:
        ts = to_timestamp_ms(lookup(card, key))
        if ts is not None:
            return ts
    return None


def age_days(ts_ms: int, now: int) -> float:
    return (now - ts_ms) / MS_PER_DAY


def is_stale(ts_ms: int, now: int, days: int) -> bool:
    return age_days(ts_ms, now) >= days


@dataclass
class SweepParams:
    per_page: int = 50
    max_pages: int = 20
    max_moves_per_run: int = 100

    @classmethod
    def clamped(
        cls,
        per_page: Optional[int] = None,
        max_pages: Optional[int] = None,
        max_moves_per_run: Optional[int] = None,
    ) -> "SweepParams":
        return cls(
            per_page=clamp(per_page, 50, 1, 100),
            max_pages=clamp(max_pages, 20, 1, 100),
            max_moves_per_run=clamp(max_moves_per_run, 100, 1, 1000),
        )


@dataclass
class CampaignSweepSummary:
    campaign_id: str
    name: Optional[str]
    days: int
    target: dict
    total_cards: int = 0
    timestamped: int = 0
    without_timestamp: int = 0
    stale: int = 0
    moved: int = 0
    skipped_by_limit: int = 0
    pages: int = 0
    max_pages_reached: bool = False
    moves: list[dict] = field(default_factory=list)
    errors: list[dict] = field(default_factory=list)


@dataclass
class SkippedCampaign:
    campaign_id: str
    reason: str


@dataclass
class SweepSummary:
    ok: bool
    started_at: str
    finished_at: str
    params: dict
    totals: dict
    campaigns: list[CampaignSweepSummary] = field(default_factory=list)
    skipped: list[SkippedCampaign] = field(default_factory=list)
    errors: list[dict] = field(default_factory=list)

    @property
    def moved(self) -> int:
        return self.totals.get("moved", 0)

    @property
    def error_count(self) -> int:
        return self.totals.get("errors", 0)

    def to_dict(self) -> dict:
        return asdict(self)


class _MoveBudget:
    def __init__(self, limit: int):
        self.limit = limit
        self.used = 0

    def exhausted(self) -> bool:
        return self.used >= self.limit

    def spend(self) -> None:
        self.used += 1


class ExpirationSweeper:
    def __init__(
        self,
        crm: CrmService,
        counters: CounterStore,
        clock: Callable[[], int] = now_ms,
        audit: Optional[Callable[[SweepSummary], None]] = None,
    ):
        self.crm = crm
        self.counters = counters
        self.mover = MoveExecutor(crm)
        self.clock = clock
        self.audit = audit
        self._directory: Optional[list[Pipeline]] = None

    def run(
        self,
        stored: list[StoredCampaign],
        per_page: Optional[int] = None,
        max_pages: Optional[int] = None,
        max_moves_per_run: Optional[int] = None,
    ) -> SweepSummary:
        params = SweepParams.clamped(per_page, max_pages, max_moves_per_run)
        started = self.clock()
        budget = _MoveBudget(params.max_moves_per_run)
        self._directory = None

        campaigns: list[CampaignSweepSummary] = []
        skipped: list[SkippedCampaign] = []

        for item in stored:
            config, reason = resolve_campaign(item.raw, require_expiration=True)
            if config is None:
                skipped.append(SkippedCampaign(campaign_id=item.id, reason=reason or "invalid_record"))
                continue
            campaigns.append(self._sweep_campaign(config, item.id, params, budget))

        errors = [
            {"campaign_id": summary.campaign_id, **error}
            for summary in campaigns
            for error in summary.errors
        ]
        totals = {
            "campaigns": len(campaigns),
            "skipped_campaigns": len(skipped),
            "cards": sum(c.total_cards for c in campaigns),
            "stale": sum(c.stale for c in campaigns),
            "moved": sum(c.moved for c in campaigns),
            "skipped_by_limit": sum(c.skipped_by_limit for c in campaigns),
            "without_timestamp": sum(c.without_timestamp for c in campaigns),
            "errors": len(errors),
        }

        summary = SweepSummary(
            ok=not errors,
            started_at=_iso(started),
            finished_at=_iso(self.clock()),
            params=asdict(params),
            totals=totals,
            campaigns=campaigns,
            skipped=skipped,
            errors=errors[:ERROR_SAMPLE_LIMIT],
        )

        logger.info("Expiration sweep finished", extra={"context": {"ok": summary.ok, **totals}})
        self._record(summary)
        return summary

    def _record(self, summary: SweepSummary) -> None:
        if self.audit is None:
            return
        try:
            self.audit(summary)
        except Exception as e:
            logger.warning("Sweep audit entry not written", extra={"context": {"error": str(e)}})

    def _resolve_target(self, target: TargetRef) -> TargetRef:
        if not needs_directory(target):
            return target
        if self._directory is None:
            self._directory = self.crm.list_pipelines()
        return resolve_target(target, self._directory)

    def _collect_base_cards(
        self,
        base: TargetRef,
        params: SweepParams,
        summary: CampaignSweepSummary,
        log: LoggerAdapter,
    ) -> list[dict]:
        """Every card listed in the base stage, read in full before anything moves."""
        cards: list[dict] = []
        seen: set[str] = set()

        for page in range(1, params.max_pages + 1):
            try:
                cards_page = self.crm.fetch_cards_page(
                    page, params.per_page, pipeline_id=base.pipeline_id, status_id=base.status_id
                )
            except CrmRequestError as e:
                summary.errors.append({"page": page, "error": e.code, "message": str(e), "status": e.status})
                log.warning("Base stage page fetch failed", context={"page": page, "code": e.code})
                break
            summary.pages = page

            for card in cards_page.items:
                card_id = card.get("id")
                if card_id is None or str(card_id) in seen:
                    continue
                if outside_filter(card, base.pipeline_id, base.status_id):
                    continue
                seen.add(str(card_id))
                cards.append(card)

            if not cards_page.has_next:
                break
            if page == params.max_pages:
                summary.max_pages_reached = True

        return cards

    def _sweep_campaign(
        self,
        config: CampaignConfig,
        campaign_id: str,
        params: SweepParams,
        budget: _MoveBudget,
    ) -> CampaignSweepSummary:
        log = bind_logger(logger, campaign_id=campaign_id)
        days = config.expiration.days or 0
        summary = CampaignSweepSummary(
            campaign_id=campaign_id,
            name=config.name,
            days=days,
            target=config.expiration.target.to_dict(),
        )

        try:
            target = self._resolve_target(config.expiration.target)
        except CrmRequestError as e:
            summary.errors.append({"error": "target_unresolved", "code": e.code, "message": str(e)})
            log.warning("Pipeline directory unavailable", context={"code": e.code})
            return summary
        if needs_directory(target):
            summary.errors.append({"error": "target_unresolved", "target": target.to_dict()})
            log.warning("Expiration target unresolved", context={"target": target.to_dict()})
            return summary
        summary.target = target.to_dict()

        cards = self._collect_base_cards(config.base, params, summary, log)
        now = self.clock()
        for card in cards:
            self._evaluate_card(card, config, target, now, days, budget, summary, log)

        log.info(
            "Campaign swept",
            context={
                "pages": summary.pages,
                "cards": summary.total_cards,
                "stale": summary.stale,
                "moved": summary.moved,
                "skipped_by_limit": summary.skipped_by_limit,
                "errors": len(summary.errors),
            },
        )
        return summary

    def _evaluate_card(
        self,
        card: dict,
        config: CampaignConfig,
        target: TargetRef,
        now: int,
        days: int,
        budget: _MoveBudget,
        summary: CampaignSweepSummary,
        log: LoggerAdapter,
    ) -> None:
        summary.total_cards += 1
        card_id = str(card["id"])

        ts = card_timestamp_ms(card)
        if ts is None:
            summary.without_timestamp += 1
            return
        summary.timestamped += 1

        if not is_stale(ts, now, days):
            return
        summary.stale += 1

        if budget.exhausted():
            summary.skipped_by_limit += 1
            return

        pipeline_id, status_id = card_location(card)
        result = self.mover.execute(
            card_id,
            pipeline_id or config.base.pipeline_id,
            status_id or config.base.status_id,
            target,
        )
        if not result.attempted:
            return
        budget.spend()

        if result.ok:
            summary.moved += 1
            self.counters.increment(summary.campaign_id, "expiration")
            entry = {
                "card_id": card_id,
                "status_updated_at": _iso(ts),
                "age_days": round(age_days(ts, now), 2),
                "moved_at": _iso(self.clock()),
            }
            summary.moves.append(entry)
            log.info("Stale card moved", context=entry)
            return

        summary.errors.append(
            {"card_id": card_id, "error": result.error, "status": result.status, "response": result.response}
        )


def sweep_run_recorder(db: Session) -> Callable[[SweepSummary], None]:
    """Audit sink that appends one sweep_runs row per run."""

    def record(summary: SweepSummary) -> None:
        try:
            db.add(
                SweepRun(
                    started_at=datetime.fromisoformat(summary.started_at),
                    finished_at=datetime.fromisoformat(summary.finished_at),
                    ok=summary.ok,
                    moved=summary.moved,
                    error_count=summary.error_count,
                    summary=summary.to_dict(),
                )
            )
            db.commit()
        except Exception:
            db.rollback()
            raise

    return record
