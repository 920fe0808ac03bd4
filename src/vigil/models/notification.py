"""Data models for notification delivery."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class NotificationChannel(str, Enum):
    """Available notification channels."""

    LINE = "line"
    TELEGRAM = "telegram"
    WEBHOOK = "webhook"


class NotificationTarget(BaseModel):
    """Where a satisfied alert should be delivered.

    The destination is opaque to the monitoring core; only the channel
    implementation knows how to interpret it.
    """

    channel: NotificationChannel
    destination: str = Field(..., min_length=1)

    model_config = {"frozen": True}


@dataclass
class NotificationResult:
    """Result of notification delivery attempt."""

    channel: NotificationChannel
    success: bool
    message_id: Optional[str]
    error: Optional[str]
    delivery_time_ms: float


@dataclass(frozen=True)
class AlertContext:
    """Structured description of a fired alert handed to the dispatcher."""

    alert_id: str
    user_id: str
    symbol: str
    variant: str
    triggered_at: datetime
    price: float
    price_change_percent: Optional[float] = None
    observed: Dict[str, float] = field(default_factory=dict)
    thresholds: Dict[str, Any] = field(default_factory=dict)
    trigger_count: int = 1
    max_triggers: int = 1
    note: Optional[str] = None

    @property
    def is_final(self) -> bool:
        """Whether this trigger exhausted the alert."""
        return self.trigger_count >= self.max_triggers

    def to_dict(self) -> Dict[str, Any]:
        """Convert context to a JSON-friendly dictionary."""
        return {
            "alert_id": self.alert_id,
            "user_id": self.user_id,
            "symbol": self.symbol,
            "variant": self.variant,
            "triggered_at": self.triggered_at.isoformat(),
            "price": self.price,
            "price_change_percent": self.price_change_percent,
            "observed": dict(self.observed),
            "thresholds": dict(self.thresholds),
            "trigger_count": self.trigger_count,
            "max_triggers": self.max_triggers,
            "note": self.note,
        }
