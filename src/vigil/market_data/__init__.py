"""Market data access: provider interface and shared cache."""

from .cache import MarketDataCache
from .provider import BinanceMarketDataProvider, MarketDataProvider

__all__ = ["BinanceMarketDataProvider", "MarketDataCache", "MarketDataProvider"]
