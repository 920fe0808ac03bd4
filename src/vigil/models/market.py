"""Market data containers."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple


@dataclass(frozen=True)
class Candle:
    """One OHLCV sample."""

    open_time: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass(frozen=True)
class Ticker:
    """Latest price and rolling 24h statistics for an instrument."""

    symbol: str
    price: float
    price_change_percent: float = 0.0
    volume: float = 0.0


@dataclass(frozen=True)
class MarketData:
    """Current market view of one instrument as served by the cache.

    The window is oldest-first and is replaced wholesale on refresh.
    """

    symbol: str
    price: float
    price_change_percent: float
    volume: float
    window: Tuple[Candle, ...]
    fetched_at: datetime
    stale: bool = False

    @property
    def closes(self) -> list[float]:
        return [c.close for c in self.window]

    @property
    def highs(self) -> list[float]:
        return [c.high for c in self.window]

    @property
    def lows(self) -> list[float]:
        return [c.low for c in self.window]

    @property
    def volumes(self) -> list[float]:
        return [c.volume for c in self.window]

    @property
    def last_candle_volume(self) -> Optional[float]:
        return self.window[-1].volume if self.window else None
