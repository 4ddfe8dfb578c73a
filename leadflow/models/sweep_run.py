import uuid

from sqlalchemy import Boolean, Column, Integer
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.sql import func

from leadflow.database import Base, JSONType


class SweepRun(Base):
    __tablename__ = "sweep_runs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    started_at = Column(TIMESTAMP(timezone=True), nullable=False)
    finished_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
    ok = Column(Boolean, nullable=False, default=True)
    moved = Column(Integer, nullable=False, default=0)
    error_count = Column(Integer, nullable=False, default=0)
    summary = Column(JSONType, nullable=False)
