"""Short-TTL market data cache shared by all instrument timers."""

import asyncio
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Dict, Optional

from ..config.logging import get_logger
from ..exceptions import MarketDataUnavailableError
from ..models.market import MarketData
from ..utils.clock import Clock, utc_now
from .provider import MarketDataProvider

logger = get_logger(__name__)


@dataclass
class _CacheEntry:
    data: MarketData
    stored_at: datetime


class MarketDataCache:
    """
    Per-symbol cache of current price and the rolling OHLCV window.

    Reads of fresh entries take no lock. Refreshes are serialized per symbol so
    concurrent ticks for one instrument trigger a single provider call, while
    different instruments refresh independently.
    """

    def __init__(
        self,
        provider: MarketDataProvider,
        ttl_seconds: float = 20.0,
        timeout_seconds: float = 10.0,
        ohlcv_interval: str = "1m",
        window_length: int = 200,
        clock: Clock = utc_now,
    ):
        self.provider = provider
        self.ttl_seconds = ttl_seconds
        self.timeout_seconds = timeout_seconds
        self.ohlcv_interval = ohlcv_interval
        self.window_length = window_length
        self._clock = clock
        self._entries: Dict[str, _CacheEntry] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self.logger = logger.bind(component="market_data_cache")

    def __len__(self) -> int:
        return len(self._entries)

    def _is_fresh(self, entry: Optional[_CacheEntry], now: datetime) -> bool:
        return (
            entry is not None
            and (now - entry.stored_at).total_seconds() < self.ttl_seconds
        )

    def _lock_for(self, symbol: str) -> asyncio.Lock:
        lock = self._locks.get(symbol)
        if lock is None:
            lock = self._locks[symbol] = asyncio.Lock()
        return lock

    def peek(self, symbol: str) -> Optional[MarketData]:
        """Return whatever is cached for a symbol, fresh or not."""
        entry = self._entries.get(symbol)
        return entry.data if entry else None

    async def get(self, symbol: str) -> MarketData:
        """
        Get market data for a symbol, refreshing it when expired.

        Args:
            symbol: Normalized trading pair

        Returns:
            MarketData; ``stale`` is set when the provider failed and an older
            cached copy was served instead

        Raises:
            MarketDataUnavailableError: provider failed and nothing is cached
        """
        entry = self._entries.get(symbol)
        if self._is_fresh(entry, self._clock()):
            self.logger.debug("Market data cache hit", symbol=symbol)
            return entry.data

        async with self._lock_for(symbol):
            # Another tick may have refreshed while we waited for the lock
            entry = self._entries.get(symbol)
            if self._is_fresh(entry, self._clock()):
                return entry.data

            try:
                data = await asyncio.wait_for(
                    self._fetch(symbol), timeout=self.timeout_seconds
                )
            except asyncio.TimeoutError:
                return self._fallback(symbol, entry, "timeout")
            except MarketDataUnavailableError as e:
                return self._fallback(symbol, entry, e.reason)
            except Exception as e:
                self.logger.error(
                    "Unexpected market data provider error",
                    symbol=symbol,
                    error=str(e),
                    exc_info=True,
                )
                return self._fallback(symbol, entry, str(e))

            self._entries[symbol] = _CacheEntry(data=data, stored_at=self._clock())
            return data

    async def _fetch(self, symbol: str) -> MarketData:
        ticker, window = await asyncio.gather(
            self.provider.current_price(symbol),
            self.provider.ohlcv_window(symbol, self.ohlcv_interval, self.window_length),
        )
        return MarketData(
            symbol=symbol,
            price=ticker.price,
            price_change_percent=ticker.price_change_percent,
            volume=ticker.volume,
            window=tuple(window),
            fetched_at=self._clock(),
        )

    def _fallback(
        self, symbol: str, entry: Optional[_CacheEntry], reason: str
    ) -> MarketData:
        if entry is None:
            raise MarketDataUnavailableError(symbol, reason)

        self.logger.warning(
            "Serving stale market data",
            symbol=symbol,
            reason=reason,
            age_seconds=(self._clock() - entry.stored_at).total_seconds(),
        )
        return replace(entry.data, stale=True)

    def invalidate(self, symbol: str) -> None:
        self._entries.pop(symbol, None)

    def clear(self) -> None:
        self._entries.clear()
        self._locks.clear()
