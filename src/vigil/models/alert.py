"""Alert data model.

An alert couples an instrument with one condition variant and the payload
that variant needs. Basic variants carry :class:`BasicParams`, indicator
variants carry :class:`IndicatorConfig`; exactly one of the two is populated
and the pairing is checked when the model is built, so an alert with an
unsupported tag or a mismatched payload cannot be constructed.
"""

import re
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from ..indicators.engine import IndicatorParams
from ..utils.clock import as_utc, utc_now
from .notification import NotificationChannel, NotificationTarget

SYMBOL_PATTERN = re.compile(r"^[A-Z0-9]{2,12}USDT?$")


class VariantFamily(str, Enum):
    """Condition families; indicator families need an indicator snapshot."""

    PRICE = "price"
    PERCENT = "percent"
    VOLUME = "volume"
    RSI = "rsi"
    MACD = "macd"
    MOVING_AVERAGE = "moving_average"
    BOLLINGER = "bollinger"
    WILLIAMS_R = "williams_r"


class AlertVariant(str, Enum):
    """Closed set of supported alert conditions."""

    # Basic
    PRICE_ABOVE = "price_above"
    PRICE_BELOW = "price_below"
    PERCENT_CHANGE = "percent_change"
    VOLUME_SPIKE = "volume_spike"

    # RSI
    RSI_ABOVE = "rsi_above"
    RSI_BELOW = "rsi_below"
    RSI_OVERBOUGHT = "rsi_overbought"
    RSI_OVERSOLD = "rsi_oversold"

    # MACD
    MACD_BULLISH_CROSSOVER = "macd_bullish_crossover"
    MACD_BEARISH_CROSSOVER = "macd_bearish_crossover"
    MACD_ABOVE_ZERO = "macd_above_zero"
    MACD_BELOW_ZERO = "macd_below_zero"

    # Moving averages
    MA_CROSS_ABOVE = "ma_cross_above"
    MA_CROSS_BELOW = "ma_cross_below"
    MA_GOLDEN_CROSS = "ma_golden_cross"
    MA_DEATH_CROSS = "ma_death_cross"
    MA_SUPPORT_BOUNCE = "ma_support_bounce"
    MA_RESISTANCE_REJECT = "ma_resistance_reject"

    # Bollinger Bands
    BB_UPPER_TOUCH = "bb_upper_touch"
    BB_LOWER_TOUCH = "bb_lower_touch"
    BB_SQUEEZE = "bb_squeeze"
    BB_EXPANSION = "bb_expansion"
    BB_MIDDLE_CROSS = "bb_middle_cross"
    BB_BANDWIDTH_ALERT = "bb_bandwidth_alert"

    # Williams %R
    WILLIAMS_OVERBOUGHT = "williams_overbought"
    WILLIAMS_OVERSOLD = "williams_oversold"
    WILLIAMS_ABOVE = "williams_above"
    WILLIAMS_BELOW = "williams_below"

    @property
    def family(self) -> VariantFamily:
        return _FAMILY_BY_PREFIX[self.value.split("_", 1)[0]]

    @property
    def is_indicator(self) -> bool:
        return self.family not in (
            VariantFamily.PRICE,
            VariantFamily.PERCENT,
            VariantFamily.VOLUME,
        )


_FAMILY_BY_PREFIX = {
    "price": VariantFamily.PRICE,
    "percent": VariantFamily.PERCENT,
    "volume": VariantFamily.VOLUME,
    "rsi": VariantFamily.RSI,
    "macd": VariantFamily.MACD,
    "ma": VariantFamily.MOVING_AVERAGE,
    "bb": VariantFamily.BOLLINGER,
    "williams": VariantFamily.WILLIAMS_R,
}

# Basic variant -> BasicParams field it requires
_REQUIRED_BASIC_FIELD = {
    AlertVariant.PRICE_ABOVE: "target_price",
    AlertVariant.PRICE_BELOW: "target_price",
    AlertVariant.PERCENT_CHANGE: "percent_change",
    AlertVariant.VOLUME_SPIKE: "volume_multiplier",
}


class AlertStatus(str, Enum):
    """Alert lifecycle states."""

    ACTIVE = "active"
    PAUSED = "paused"
    TRIGGERED = "triggered"
    EXPIRED = "expired"


class ChangeDirection(str, Enum):
    """Direction a percent-change alert watches."""

    UP = "up"
    DOWN = "down"
    EITHER = "either"


class BasicParams(BaseModel):
    """Plain numeric targets for price, percent and volume alerts."""

    target_price: Optional[float] = Field(default=None, gt=0)
    percent_change: Optional[float] = Field(default=None, ge=-100, le=1000)
    direction: ChangeDirection = ChangeDirection.EITHER
    volume_multiplier: Optional[float] = Field(default=None, ge=1)


class RSIConfig(BaseModel):
    period: int = Field(default=14, ge=2)
    threshold: Optional[float] = Field(default=None, ge=0, le=100)
    overbought_level: float = Field(default=70, ge=0, le=100)
    oversold_level: float = Field(default=30, ge=0, le=100)


class MACDConfig(BaseModel):
    fast_period: int = Field(default=12, ge=1)
    slow_period: int = Field(default=26, ge=2)
    signal_period: int = Field(default=9, ge=1)

    @model_validator(mode="after")
    def check_periods(self):
        if self.fast_period >= self.slow_period:
            raise ValueError("MACD fast_period must be shorter than slow_period")
        return self


class MovingAverageConfig(BaseModel):
    fast_period: int = Field(default=20, ge=1)
    slow_period: int = Field(default=50, ge=2)
    kind: Literal["sma", "ema"] = "sma"
    # Fractional distance from the MA that still counts as touching it
    tolerance: float = Field(default=0.005, ge=0, le=0.5)

    @model_validator(mode="after")
    def check_periods(self):
        if self.fast_period >= self.slow_period:
            raise ValueError("Moving average fast_period must be shorter than slow_period")
        return self


class BollingerConfig(BaseModel):
    period: int = Field(default=20, ge=2)
    std_dev_multiplier: float = Field(default=2.0, gt=0)
    squeeze_threshold: float = Field(default=0.05, gt=0)
    expansion_threshold: float = Field(default=0.15, gt=0)
    bandwidth_threshold: Optional[float] = Field(default=None, gt=0)


class WilliamsRConfig(BaseModel):
    period: int = Field(default=14, ge=2)
    threshold: Optional[float] = Field(default=None, ge=-100, le=0)
    overbought_level: float = Field(default=-20, ge=-100, le=0)
    oversold_level: float = Field(default=-80, ge=-100, le=0)


class IndicatorConfig(BaseModel):
    """Indicator settings for indicator-based alerts."""

    rsi: RSIConfig = Field(default_factory=RSIConfig)
    macd: MACDConfig = Field(default_factory=MACDConfig)
    ma: MovingAverageConfig = Field(default_factory=MovingAverageConfig)
    bollinger: BollingerConfig = Field(default_factory=BollingerConfig)
    williams_r: WilliamsRConfig = Field(default_factory=WilliamsRConfig)

    def to_params(self) -> IndicatorParams:
        """Hashable parameter set used to compute (and share) snapshots."""
        return IndicatorParams(
            rsi_period=self.rsi.period,
            macd_fast=self.macd.fast_period,
            macd_slow=self.macd.slow_period,
            macd_signal=self.macd.signal_period,
            ma_fast=self.ma.fast_period,
            ma_slow=self.ma.slow_period,
            ma_kind=self.ma.kind,
            bb_period=self.bollinger.period,
            bb_multiplier=self.bollinger.std_dev_multiplier,
            bb_squeeze_threshold=self.bollinger.squeeze_threshold,
            williams_period=self.williams_r.period,
        )


class TriggerPolicy(BaseModel):
    """Re-trigger spacing and lifetime limits."""

    min_interval_seconds: int = Field(default=300, ge=0)
    max_triggers: int = Field(default=1, ge=1)
    only_trading_hours: bool = False
    confirmation_seconds: int = Field(default=0, ge=0)


class NotificationOutcome(BaseModel):
    """Delivery outcome for one channel of one trigger."""

    channel: NotificationChannel
    success: bool
    sent_at: datetime
    error: Optional[str] = None

    @field_validator("sent_at")
    @classmethod
    def sent_at_utc(cls, v: datetime) -> datetime:
        return as_utc(v)


class TriggerRecord(BaseModel):
    """One entry of an alert's append-only trigger history."""

    triggered_at: datetime
    price: float
    price_change_percent: Optional[float] = None
    volume: Optional[float] = None
    observed: Dict[str, float] = Field(default_factory=dict)
    notifications: List[NotificationOutcome] = Field(default_factory=list)

    @field_validator("triggered_at")
    @classmethod
    def triggered_at_utc(cls, v: datetime) -> datetime:
        return as_utc(v)


class Alert(BaseModel):
    """Represents a price/indicator alert."""

    id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    symbol: str
    variant: AlertVariant
    params: Optional[BasicParams] = None
    indicator: Optional[IndicatorConfig] = None
    policy: TriggerPolicy = Field(default_factory=TriggerPolicy)
    status: AlertStatus = AlertStatus.ACTIVE
    enabled: bool = True
    targets: List[NotificationTarget] = Field(default_factory=list)
    trigger_history: List[TriggerRecord] = Field(default_factory=list)
    expires_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)
    note: Optional[str] = Field(default=None, max_length=500)

    @field_validator("symbol", mode="before")
    @classmethod
    def normalize_symbol(cls, v):
        """Normalize symbol to an uppercase base+quote pair."""
        if not isinstance(v, str):
            raise ValueError("symbol must be a string")
        symbol = v.strip().upper()
        if not SYMBOL_PATTERN.match(symbol):
            raise ValueError(f"Invalid trading pair symbol: {v!r}")
        return symbol

    @field_validator("expires_at", "created_at")
    @classmethod
    def datetimes_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Naive timestamps are taken to be UTC."""
        return as_utc(v)

    @model_validator(mode="after")
    def check_payload(self):
        """Enforce the variant/payload pairing and the history bound."""
        if self.variant.is_indicator:
            if self.params is not None:
                raise ValueError(
                    f"{self.variant.value} takes an indicator config, not basic params"
                )
            if self.indicator is None:
                self.indicator = IndicatorConfig()
        else:
            if self.indicator is not None:
                raise ValueError(
                    f"{self.variant.value} takes basic params, not an indicator config"
                )
            required = _REQUIRED_BASIC_FIELD[self.variant]
            if self.params is None or getattr(self.params, required) is None:
                raise ValueError(f"{self.variant.value} requires params.{required}")

        if len(self.trigger_history) > self.policy.max_triggers:
            raise ValueError("trigger_history is longer than policy.max_triggers")
        return self

    @property
    def trigger_count(self) -> int:
        return len(self.trigger_history)

    @property
    def last_triggered_at(self) -> Optional[datetime]:
        if self.trigger_history:
            return self.trigger_history[-1].triggered_at
        return None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def is_active(self, now: datetime) -> bool:
        """Active, enabled and not past its expiry."""
        return (
            self.status == AlertStatus.ACTIVE
            and self.enabled
            and not self.is_expired(now)
        )

    def pause(self) -> None:
        self.status = AlertStatus.PAUSED

    def resume(self) -> None:
        if self.status == AlertStatus.PAUSED:
            self.status = AlertStatus.ACTIVE

    def thresholds(self) -> Dict[str, Any]:
        """Configured thresholds relevant to this alert's variant."""
        if self.params is not None:
            return self.params.model_dump(exclude_none=True, mode="json")

        family = self.variant.family
        config = self.indicator
        if family == VariantFamily.RSI:
            return config.rsi.model_dump(exclude_none=True)
        if family == VariantFamily.MACD:
            return config.macd.model_dump()
        if family == VariantFamily.MOVING_AVERAGE:
            return config.ma.model_dump()
        if family == VariantFamily.BOLLINGER:
            return config.bollinger.model_dump(exclude_none=True)
        return config.williams_r.model_dump(exclude_none=True)
