"""Technical indicator calculations for alert evaluation.

Every function takes plain oldest-first price lists and returns a list of
the same length. Positions that cannot be computed yet (the warm-up part of
the window) hold NaN, so callers can tell computed values from missing ones
with :func:`is_valid`.
"""

import math
from typing import Optional

NAN = float("nan")


def is_valid(value: Optional[float]) -> bool:
    """True for a real, finite number."""
    return value is not None and not math.isnan(value)


def last_valid(series: list[float], offset: int = 0) -> Optional[float]:
    """Return ``series[-1 - offset]`` if it is a computed value, else None."""
    index = len(series) - 1 - offset
    if index < 0:
        return None
    value = series[index]
    return value if is_valid(value) else None


def calculate_sma(prices: list[float], period: int) -> list[float]:
    """Calculate Simple Moving Average.

    Args:
        prices: List of price values (typically close prices)
        period: Number of periods for the moving average

    Returns:
        List of SMA values. First (period-1) values will be NaN.
    """
    if len(prices) < period or period < 1:
        return [NAN] * len(prices)

    result = [NAN] * (period - 1)
    window_sum = sum(prices[:period])
    result.append(window_sum / period)

    for i in range(period, len(prices)):
        window_sum += prices[i] - prices[i - period]
        result.append(window_sum / period)

    return result


def calculate_ema(prices: list[float], period: int) -> list[float]:
    """Calculate Exponential Moving Average.

    Seeded with the simple average of the first ``period`` values, then
    ``ema[i] = price[i] * k + ema[i-1] * (1 - k)`` with ``k = 2 / (period + 1)``.

    Args:
        prices: List of price values
        period: Number of periods for the EMA

    Returns:
        List of EMA values. First (period-1) values will be NaN.
    """
    if len(prices) < period or period < 1:
        return [NAN] * len(prices)

    result = [NAN] * (period - 1)
    k = 2 / (period + 1)

    result.append(sum(prices[:period]) / period)

    for i in range(period, len(prices)):
        result.append(prices[i] * k + result[-1] * (1 - k))

    return result


def _rsi_from_averages(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return min(100.0, max(0.0, 100 - (100 / (1 + rs))))


def calculate_rsi(prices: list[float], period: int = 14) -> list[float]:
    """Calculate Relative Strength Index with Wilder's smoothing.

    The first average gain/loss is the simple mean over the first ``period``
    changes; later averages are smoothed with weight ``1/period``.

    Args:
        prices: List of price values (typically close prices)
        period: RSI period (default 14)

    Returns:
        List of RSI values in [0, 100]. First `period` values will be NaN.
    """
    if period < 1 or len(prices) < period + 1:
        return [NAN] * len(prices)

    changes = [prices[i] - prices[i - 1] for i in range(1, len(prices))]
    gains = [max(c, 0.0) for c in changes]
    losses = [max(-c, 0.0) for c in changes]

    avg_gain = sum(gains[:period]) / period
    avg_loss = sum(losses[:period]) / period

    result = [NAN] * period
    result.append(_rsi_from_averages(avg_gain, avg_loss))

    for i in range(period, len(changes)):
        avg_gain = (avg_gain * (period - 1) + gains[i]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i]) / period
        result.append(_rsi_from_averages(avg_gain, avg_loss))

    return result


def calculate_macd(
    prices: list[float],
    fast: int = 12,
    slow: int = 26,
    signal: int = 9,
) -> tuple[list[float], list[float], list[float]]:
    """Calculate MACD (Moving Average Convergence Divergence).

    Args:
        prices: List of price values
        fast: Fast EMA period (default 12)
        slow: Slow EMA period (default 26)
        signal: Signal line period (default 9)

    Returns:
        Tuple of (macd_line, signal_line, histogram)
    """
    if len(prices) < slow or fast < 1 or slow < 1 or signal < 1:
        nan_list = [NAN] * len(prices)
        return nan_list, nan_list.copy(), nan_list.copy()

    fast_ema = calculate_ema(prices, fast)
    slow_ema = calculate_ema(prices, slow)

    macd_line = [
        f - s if is_valid(f) and is_valid(s) else NAN
        for f, s in zip(fast_ema, slow_ema)
    ]

    # Signal line only runs over the computed part of the MACD line
    valid_start = slow - 1
    valid_macd = macd_line[valid_start:]

    if len(valid_macd) < signal:
        nan_list = [NAN] * len(prices)
        return macd_line, nan_list, nan_list.copy()

    signal_line = [NAN] * valid_start + calculate_ema(valid_macd, signal)

    histogram = [
        m - s if is_valid(m) and is_valid(s) else NAN
        for m, s in zip(macd_line, signal_line)
    ]

    return macd_line, signal_line, histogram


def calculate_bollinger_bands(
    prices: list[float],
    period: int = 20,
    std_dev: float = 2.0,
) -> tuple[list[float], list[float], list[float]]:
    """Calculate Bollinger Bands.

    Args:
        prices: List of price values
        period: SMA period (default 20)
        std_dev: Standard deviation multiplier (default 2.0)

    Returns:
        Tuple of (upper_band, middle_band, lower_band)
    """
    if len(prices) < period or period < 1:
        nan_list = [NAN] * len(prices)
        return nan_list, nan_list.copy(), nan_list.copy()

    middle_band = calculate_sma(prices, period)
    upper_band = [NAN] * len(prices)
    lower_band = [NAN] * len(prices)

    for i in range(period - 1, len(prices)):
        window = prices[i - period + 1 : i + 1]
        mean = middle_band[i]

        # Population standard deviation over the trailing window
        variance = sum((x - mean) ** 2 for x in window) / period
        band = math.sqrt(variance) * std_dev

        upper_band[i] = mean + band
        lower_band[i] = mean - band

    return upper_band, middle_band, lower_band


def calculate_williams_r(
    highs: list[float],
    lows: list[float],
    closes: list[float],
    period: int = 14,
) -> list[float]:
    """Calculate Williams %R.

    A flat window (highest high equal to lowest low) yields the -50 midpoint.

    Args:
        highs: List of high prices
        lows: List of low prices
        closes: List of close prices
        period: Lookback period (default 14)

    Returns:
        List of values in [-100, 0]. First (period-1) values will be NaN.
    """
    n = min(len(highs), len(lows), len(closes))
    if n < period or period < 1:
        return [NAN] * len(closes)

    result = [NAN] * (period - 1)

    for i in range(period - 1, n):
        highest_high = max(highs[i - period + 1 : i + 1])
        lowest_low = min(lows[i - period + 1 : i + 1])

        if highest_high == lowest_low:
            result.append(-50.0)
            continue

        value = ((highest_high - closes[i]) / (highest_high - lowest_low)) * -100
        result.append(min(0.0, max(-100.0, value)))

    return result


def calculate_rate_of_change(prices: list[float], period: int = 14) -> list[float]:
    """Percent change of each price against the price ``period`` samples back."""
    result = [NAN] * len(prices)
    for i in range(period, len(prices)):
        base = prices[i - period]
        if base:
            result[i] = (prices[i] / base - 1) * 100
    return result


def calculate_volatility(prices: list[float], period: int = 20) -> Optional[float]:
    """Standard deviation of simple returns over the trailing window, in percent."""
    window = prices[-(period + 1) :]
    returns = [
        (window[i] / window[i - 1] - 1) * 100
        for i in range(1, len(window))
        if window[i - 1]
    ]
    if len(returns) < 2:
        return None

    mean = sum(returns) / len(returns)
    variance = sum((r - mean) ** 2 for r in returns) / len(returns)
    return math.sqrt(variance)
