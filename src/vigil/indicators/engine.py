"""Indicator snapshots computed from an OHLCV window.

The engine never raises on short windows. When the window is shorter than a
requested period it computes over the longest available sub-window and marks
the result ``ready=False``; when nothing can be computed it falls back to a
neutral value (RSI 50, Williams %R -50, MACD 0, bands collapsed on the last
close). Condition evaluation only acts on ``ready`` results.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Optional, Sequence

from ..utils.clock import utc_now
from .technical import (
    calculate_bollinger_bands,
    calculate_ema,
    calculate_macd,
    calculate_rate_of_change,
    calculate_rsi,
    calculate_sma,
    calculate_volatility,
    calculate_williams_r,
    last_valid,
)

if TYPE_CHECKING:
    from ..models.market import MarketData


@dataclass(frozen=True)
class IndicatorParams:
    """Periods and levels an indicator snapshot is computed with."""

    rsi_period: int = 14
    macd_fast: int = 12
    macd_slow: int = 26
    macd_signal: int = 9
    ma_fast: int = 20
    ma_slow: int = 50
    ma_kind: str = "sma"
    bb_period: int = 20
    bb_multiplier: float = 2.0
    bb_squeeze_threshold: float = 0.05
    williams_period: int = 14


@dataclass(frozen=True)
class RSIResult:
    value: float = 50.0
    previous: Optional[float] = None
    period: int = 14
    ready: bool = False


@dataclass(frozen=True)
class MACDResult:
    macd: float = 0.0
    signal: float = 0.0
    histogram: float = 0.0
    previous_macd: Optional[float] = None
    previous_histogram: Optional[float] = None
    ready: bool = False


@dataclass(frozen=True)
class MovingAverageResult:
    fast: float = 0.0
    slow: float = 0.0
    previous_fast: Optional[float] = None
    previous_slow: Optional[float] = None
    kind: str = "sma"
    ready: bool = False


@dataclass(frozen=True)
class BollingerResult:
    upper: float = 0.0
    middle: float = 0.0
    lower: float = 0.0
    bandwidth: float = 0.0
    percent_b: float = 0.5
    squeeze: bool = False
    previous_middle: Optional[float] = None
    previous_bandwidth: Optional[float] = None
    ready: bool = False


@dataclass(frozen=True)
class WilliamsRResult:
    value: float = -50.0
    previous: Optional[float] = None
    period: int = 14
    ready: bool = False


@dataclass(frozen=True)
class IndicatorSnapshot:
    """Indicator values for one instrument in one evaluation cycle."""

    symbol: str
    params: IndicatorParams
    samples: int
    close: Optional[float] = None
    previous_close: Optional[float] = None
    previous_high: Optional[float] = None
    previous_low: Optional[float] = None
    rsi: RSIResult = field(default_factory=RSIResult)
    macd: MACDResult = field(default_factory=MACDResult)
    ma: MovingAverageResult = field(default_factory=MovingAverageResult)
    bollinger: BollingerResult = field(default_factory=BollingerResult)
    williams_r: WilliamsRResult = field(default_factory=WilliamsRResult)
    trend: str = "neutral"
    volatility: Optional[float] = None
    momentum: Optional[float] = None
    computed_at: datetime = field(default_factory=utc_now)


def _effective_period(period: int, available: int) -> tuple[int, bool]:
    """Clamp a period to the data available; report whether it was clamped."""
    if available >= period:
        return period, True
    return max(available, 1), False


def compute_rsi(closes: Sequence[float], period: int) -> RSIResult:
    closes = list(closes)
    if len(closes) < 2:
        return RSIResult(period=period)

    effective, full = _effective_period(period, len(closes) - 1)
    series = calculate_rsi(closes, effective)
    value = last_valid(series)
    if value is None:
        return RSIResult(period=period)

    return RSIResult(
        value=value,
        previous=last_valid(series, 1),
        period=period,
        ready=full,
    )


def compute_macd(closes: Sequence[float], fast: int, slow: int, signal: int) -> MACDResult:
    macd_line, signal_line, histogram = calculate_macd(list(closes), fast, slow, signal)
    current_hist = last_valid(histogram)
    if current_hist is None:
        return MACDResult()

    return MACDResult(
        macd=last_valid(macd_line),
        signal=last_valid(signal_line),
        histogram=current_hist,
        previous_macd=last_valid(macd_line, 1),
        previous_histogram=last_valid(histogram, 1),
        ready=True,
    )


def compute_moving_averages(
    closes: Sequence[float], fast: int, slow: int, kind: str = "sma"
) -> MovingAverageResult:
    closes = list(closes)
    if not closes:
        return MovingAverageResult(kind=kind)

    average = calculate_ema if kind == "ema" else calculate_sma
    fast_period, fast_full = _effective_period(fast, len(closes))
    slow_period, slow_full = _effective_period(slow, len(closes))

    fast_series = average(closes, fast_period)
    slow_series = average(closes, slow_period)

    return MovingAverageResult(
        fast=last_valid(fast_series),
        slow=last_valid(slow_series),
        previous_fast=last_valid(fast_series, 1),
        previous_slow=last_valid(slow_series, 1),
        kind=kind,
        ready=fast_full and slow_full,
    )


def _bandwidth(upper: float, middle: float, lower: float) -> float:
    return (upper - lower) / middle if middle else 0.0


def compute_bollinger(
    closes: Sequence[float],
    period: int,
    multiplier: float,
    squeeze_threshold: float,
) -> BollingerResult:
    closes = list(closes)
    if len(closes) < 2:
        last = closes[-1] if closes else 0.0
        return BollingerResult(upper=last, middle=last, lower=last)

    effective, full = _effective_period(period, len(closes))
    upper_band, middle_band, lower_band = calculate_bollinger_bands(
        closes, effective, multiplier
    )

    upper, middle, lower = upper_band[-1], middle_band[-1], lower_band[-1]
    bandwidth = _bandwidth(upper, middle, lower)
    width = upper - lower
    percent_b = (closes[-1] - lower) / width if width else 0.5

    previous_middle = last_valid(middle_band, 1)
    previous_bandwidth = None
    if previous_middle is not None:
        previous_bandwidth = _bandwidth(
            upper_band[-2], previous_middle, lower_band[-2]
        )

    return BollingerResult(
        upper=upper,
        middle=middle,
        lower=lower,
        bandwidth=bandwidth,
        percent_b=percent_b,
        squeeze=bandwidth < squeeze_threshold,
        previous_middle=previous_middle,
        previous_bandwidth=previous_bandwidth,
        ready=full,
    )


def compute_williams_r(
    highs: Sequence[float],
    lows: Sequence[float],
    closes: Sequence[float],
    period: int,
) -> WilliamsRResult:
    closes = list(closes)
    if not closes:
        return WilliamsRResult(period=period)

    effective, full = _effective_period(period, len(closes))
    series = calculate_williams_r(list(highs), list(lows), closes, effective)
    value = last_valid(series)
    if value is None:
        return WilliamsRResult(period=period)

    return WilliamsRResult(
        value=value,
        previous=last_valid(series, 1),
        period=period,
        ready=full,
    )


class IndicatorEngine:
    """Builds :class:`IndicatorSnapshot` objects from market data windows."""

    def compute(
        self,
        market: "MarketData",
        params: IndicatorParams = IndicatorParams(),
    ) -> IndicatorSnapshot:
        """
        Compute every indicator for one instrument's current window.

        Args:
            market: Market data holding the oldest-first OHLCV window
            params: Indicator periods and levels

        Returns:
            IndicatorSnapshot for this evaluation cycle
        """
        closes = market.closes
        highs = market.highs
        lows = market.lows

        ma = compute_moving_averages(closes, params.ma_fast, params.ma_slow, params.ma_kind)
        if not ma.ready or ma.fast == ma.slow:
            trend = "neutral"
        else:
            trend = "bullish" if ma.fast > ma.slow else "bearish"

        momentum = None
        if len(closes) > params.rsi_period:
            momentum = last_valid(calculate_rate_of_change(closes, params.rsi_period))

        return IndicatorSnapshot(
            symbol=market.symbol,
            params=params,
            samples=len(closes),
            close=closes[-1] if closes else None,
            previous_close=closes[-2] if len(closes) > 1 else None,
            previous_high=highs[-2] if len(highs) > 1 else None,
            previous_low=lows[-2] if len(lows) > 1 else None,
            rsi=compute_rsi(closes, params.rsi_period),
            macd=compute_macd(
                closes, params.macd_fast, params.macd_slow, params.macd_signal
            ),
            ma=ma,
            bollinger=compute_bollinger(
                closes, params.bb_period, params.bb_multiplier, params.bb_squeeze_threshold
            ),
            williams_r=compute_williams_r(highs, lows, closes, params.williams_period),
            trend=trend,
            volatility=calculate_volatility(closes, params.bb_period),
            momentum=momentum,
            computed_at=market.fetched_at,
        )
