from sqlalchemy import Column, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP
from sqlalchemy.sql import func

from leadflow.database import Base, JSONType


class CampaignRecord(Base):
    """Primary campaign store: one row per campaign, the record body kept as written by the admin UI."""

    __tablename__ = "campaigns"

    id = Column(Text, primary_key=True)
    payload = Column(JSONType, nullable=False, default=dict)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
