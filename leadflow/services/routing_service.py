"""Live routing of an inbound chat message: campaign rule -> card search -> move -> counter."""

from dataclasses import asdict, dataclass, field
from typing import Optional

from leadflow.logging_config import get_logger
from leadflow.services.campaign_config import CampaignConfig, TargetRef, resolve_campaign
from leadflow.services.campaign_store import StoredCampaign
from leadflow.services.counter_store import CounterStore
from leadflow.services.crm_service import CrmRequestError, CrmService
from leadflow.services.identity_search import IdentitySearchEngine, SearchItem
from leadflow.services.move_executor import MoveExecutor
from leadflow.services.result import Result
from leadflow.services.rule_matcher import NO_ROUTE, choose_campaign_route, match_rule_against_inputs
from leadflow.services.target_resolver import needs_directory, resolve_target

logger = get_logger("routing_service")


@dataclass
class RoutingDecision:
    route: str
    rule: Optional[dict]
    campaign: dict
    used_needle: str
    attempts: list[dict] = field(default_factory=list)
    selected: Optional[dict] = None
    move: Optional[dict] = None
    counter_backend: Optional[str] = None
    diagnostics: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


def collect_needles(handle: Optional[str], handle_raw: Optional[str], full_name: Optional[str]) -> list[tuple[str, str]]:
    """(kind, value) identity needles in search order, blanks and case-insensitive repeats dropped."""
    needles: list[tuple[str, str]] = []
    seen: set[str] = set()
    for kind, value in (("handle", handle), ("handle_raw", handle_raw), ("full_name", full_name)):
        text = (value or "").strip()
        if not text or text.lower() in seen:
            continue
        seen.add(text.lower())
        needles.append((kind, text))
    return needles


def _campaign_ref(campaign_id: str, config: CampaignConfig, target: TargetRef) -> dict:
    return {"id": campaign_id, "name": config.name, "base": config.base.to_dict(), "target": target.to_dict()}


class RoutingService:
    def __init__(
        self,
        crm: CrmService,
        counters: CounterStore,
        search_per_page: Optional[int] = None,
        search_max_pages: Optional[int] = None,
    ):
        self.crm = crm
        self.counters = counters
        self.search = IdentitySearchEngine(crm)
        self.mover = MoveExecutor(crm)
        self.search_per_page = search_per_page
        self.search_max_pages = search_max_pages

    def _choose(
        self, text: str, stored: list[StoredCampaign]
    ) -> tuple[Optional[CampaignConfig], Optional[str], str, list[dict]]:
        """First eligible campaign whose rules match wins; diagnostics cover every eligible campaign.

        Campaigns are identified by their store key, which is also the key
        their counters live under.
        """
        chosen: Optional[CampaignConfig] = None
        chosen_id: Optional[str] = None
        route = NO_ROUTE
        diagnostics: list[dict] = []

        for item in stored:
            config, _ = resolve_campaign(item.raw)
            if config is None:
                continue
            diagnostics.append(
                {
                    "id": item.id,
                    "name": config.name,
                    "branch1": match_rule_against_inputs([text], config.branch1.rule),
                    "branch2": match_rule_against_inputs([text], config.branch2.rule),
                }
            )
            if chosen is None:
                candidate_route = choose_campaign_route([text], config)
                if candidate_route != NO_ROUTE:
                    chosen, chosen_id, route = config, item.id, candidate_route

        return chosen, chosen_id, route, diagnostics

    def _resolve(self, target: TargetRef) -> TargetRef:
        if not needs_directory(target):
            return target
        try:
            return resolve_target(target, self.crm.list_pipelines())
        except CrmRequestError as e:
            logger.warning(
                "Pipeline directory unavailable, using target as stored",
                extra={"context": {"code": e.code, "target": target.to_dict()}},
            )
            return target

    def route_message(
        self,
        text: Optional[str],
        handle: Optional[str],
        full_name: Optional[str],
        stored: list[StoredCampaign],
        handle_raw: Optional[str] = None,
    ) -> Result[RoutingDecision]:
        text = (text or "").strip()
        config, campaign_id, route, diagnostics = self._choose(text, stored)

        if config is None:
            logger.info("No campaign matched message", extra={"context": {"campaigns": len(diagnostics)}})
            return Result.failure("no campaign rule matched", "campaign_not_found", details={"matches": diagnostics})

        branch = config.branch(route)
        if branch.target.is_empty():
            return Result.failure(
                "matched branch has no target",
                "campaign_target_missing",
                details={"campaign": {"id": campaign_id, "name": config.name}, "route": route},
            )

        needles = collect_needles(handle, handle_raw, full_name)
        if not needles:
            return Result.failure("message carries no identity", "identity_missing")

        attempts: list[dict] = []
        match: Optional[SearchItem] = None
        used_needle: Optional[str] = None
        search_error: Optional[Result] = None

        for kind, value in needles:
            result = self.search.search(
                value,
                pipeline_id=config.base.pipeline_id,
                status_id=config.base.status_id,
                per_page=self.search_per_page,
                max_pages=self.search_max_pages,
            )
            attempts.append({"kind": kind, "value": value, "result": result.to_dict()})
            if not result.ok:
                search_error = result
                continue
            if result.value.match:
                match, used_needle = result.value.match, value
                break

        if match is None:
            if search_error is not None:
                return Result.failure(
                    search_error.error or "card search failed",
                    "search_failed",
                    details={"attempts": attempts, "error_code": search_error.error_code},
                )
            return Result.failure(
                "no card matches the message identity",
                "card_not_found",
                details={"attempts": attempts, "campaign": {"id": campaign_id, "name": config.name}},
            )

        target = self._resolve(branch.target)
        if needs_directory(target):
            return Result.failure(
                "target could not be resolved to ids",
                "target_unresolved",
                details={"target": target.to_dict(), "campaign": {"id": campaign_id, "name": config.name}},
            )

        move = self.mover.execute(match.card_id, match.pipeline_id, match.status_id, target)
        counter_backend = None
        if move.attempted and move.ok:
            counter_backend = self.counters.increment(campaign_id, route)

        logger.info(
            "Message routed",
            extra={
                "context": {
                    "campaign_id": campaign_id,
                    "route": route,
                    "card_id": match.card_id,
                    "move_ok": move.ok,
                    "skipped_reason": move.skipped_reason,
                }
            },
        )

        return Result.success(
            RoutingDecision(
                route=route,
                rule=branch.rule.to_dict() if branch.rule else None,
                campaign=_campaign_ref(campaign_id, config, target),
                used_needle=used_needle,
                attempts=attempts,
                selected=asdict(match),
                move=move.to_dict(),
                counter_backend=counter_backend,
                diagnostics=diagnostics,
            )
        )
