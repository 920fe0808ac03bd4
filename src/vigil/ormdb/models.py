"""SQLAlchemy ORM models for the Vigil alert store."""

import datetime

from sqlalchemy import Boolean, Column, DateTime, Index, String, Text
from sqlalchemy.types import JSON

from .database import Base


def _utcnow() -> datetime.datetime:
    # Stored naive, always UTC
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


class AlertRecord(Base):
    """Persisted alert, one row per alert id."""

    __tablename__ = "alerts"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    symbol = Column(String, nullable=False)
    variant = Column(String, nullable=False)
    status = Column(String, default="active", nullable=False)
    enabled = Column(Boolean, default=True, nullable=False)

    # Variant payloads; exactly one of params/indicator is set
    params = Column(JSON, nullable=True)
    indicator = Column(JSON, nullable=True)
    policy = Column(JSON, nullable=False, default=dict)
    targets = Column(JSON, nullable=False, default=list)
    trigger_history = Column(JSON, nullable=False, default=list)

    note = Column(Text, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=_utcnow, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (Index("ix_alerts_symbol_status_enabled", "symbol", "status", "enabled"),)

    def __repr__(self):
        return f"<AlertRecord(id='{self.id}', symbol='{self.symbol}', variant='{self.variant}')>"
