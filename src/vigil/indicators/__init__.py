"""Technical indicators used by alert evaluation."""

from .engine import (
    BollingerResult,
    IndicatorEngine,
    IndicatorParams,
    IndicatorSnapshot,
    MACDResult,
    MovingAverageResult,
    RSIResult,
    WilliamsRResult,
)
from .technical import (
    calculate_bollinger_bands,
    calculate_ema,
    calculate_macd,
    calculate_rsi,
    calculate_sma,
    calculate_williams_r,
)

__all__ = [
    "BollingerResult",
    "IndicatorEngine",
    "IndicatorParams",
    "IndicatorSnapshot",
    "MACDResult",
    "MovingAverageResult",
    "RSIResult",
    "WilliamsRResult",
    "calculate_bollinger_bands",
    "calculate_ema",
    "calculate_macd",
    "calculate_rsi",
    "calculate_sma",
    "calculate_williams_r",
]
