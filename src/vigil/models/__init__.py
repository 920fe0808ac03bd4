"""Data models for the monitoring core."""

from .alert import (
    Alert,
    AlertStatus,
    AlertVariant,
    BasicParams,
    BollingerConfig,
    ChangeDirection,
    IndicatorConfig,
    MACDConfig,
    MovingAverageConfig,
    NotificationOutcome,
    RSIConfig,
    TriggerPolicy,
    TriggerRecord,
    VariantFamily,
    WilliamsRConfig,
)
from .market import Candle, MarketData, Ticker
from .notification import (
    AlertContext,
    NotificationChannel,
    NotificationResult,
    NotificationTarget,
)

__all__ = [
    "Alert",
    "AlertContext",
    "AlertStatus",
    "AlertVariant",
    "BasicParams",
    "BollingerConfig",
    "Candle",
    "ChangeDirection",
    "IndicatorConfig",
    "MACDConfig",
    "MarketData",
    "MovingAverageConfig",
    "NotificationChannel",
    "NotificationOutcome",
    "NotificationResult",
    "NotificationTarget",
    "RSIConfig",
    "Ticker",
    "TriggerPolicy",
    "TriggerRecord",
    "VariantFamily",
    "WilliamsRConfig",
]
