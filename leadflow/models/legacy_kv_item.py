from sqlalchemy import Column, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP
from sqlalchemy.sql import func

from leadflow.database import Base, JSONType

LEGACY_CAMPAIGN_PREFIX = "cmp:item:"


def legacy_campaign_key(campaign_id: str) -> str:
    return f"{LEGACY_CAMPAIGN_PREFIX}{campaign_id}"


class LegacyKvItem(Base):
    """Key-value rows migrated from the old campaign store (cmp:item:<id> -> JSON)."""

    __tablename__ = "kv_items"

    key = Column(Text, primary_key=True)
    value = Column(JSONType)
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
