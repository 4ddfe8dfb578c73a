from leadflow.models.campaign import CampaignRecord
from leadflow.models.legacy_kv_item import LegacyKvItem
from leadflow.models.sweep_run import SweepRun

__all__ = [
    "CampaignRecord",
    "LegacyKvItem",
    "SweepRun",
]
