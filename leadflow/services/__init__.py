from leadflow.services.campaign_config import CampaignConfig, TargetRef, resolve_campaign
from leadflow.services.result import Result
from leadflow.services.rule_matcher import Rule, choose_campaign_route, resolve_rule

__all__ = [
    "CampaignConfig",
    "TargetRef",
    "resolve_campaign",
    "Result",
    "Rule",
    "choose_campaign_route",
    "resolve_rule",
]
