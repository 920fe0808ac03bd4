"""Market data provider interface and the Binance REST implementation."""

from datetime import datetime, timezone
from typing import List, Optional, Protocol

import httpx

from ..config.logging import get_logger
from ..exceptions import MarketDataUnavailableError
from ..models.market import Candle, Ticker

logger = get_logger(__name__)


class MarketDataProvider(Protocol):
    """Protocol for market data sources consumed by the cache."""

    async def current_price(self, symbol: str) -> Ticker:
        """Latest price and 24h statistics for a symbol."""
        ...

    async def ohlcv_window(self, symbol: str, interval: str, length: int) -> List[Candle]:
        """Oldest-first OHLCV samples for a symbol."""
        ...


class BinanceMarketDataProvider:
    """Market data from the Binance public REST API."""

    def __init__(
        self,
        base_url: str = "https://api.binance.com",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._owns_client = client is None
        self.logger = logger.bind(provider="binance")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _get(self, symbol: str, path: str, params: dict):
        try:
            response = await self._client.get(path, params=params)
        except httpx.HTTPError as e:
            raise MarketDataUnavailableError(symbol, f"request failed: {e}") from e

        if response.status_code in (418, 429):
            # Rate limited; the caller retries on its next tick
            self.logger.warning(
                "Market data rate limited",
                symbol=symbol,
                status_code=response.status_code,
                retry_after=response.headers.get("Retry-After"),
            )
            raise MarketDataUnavailableError(symbol, "rate limited")

        if response.status_code != 200:
            raise MarketDataUnavailableError(
                symbol, f"HTTP {response.status_code}: {response.text[:200]}"
            )

        return response.json()

    async def current_price(self, symbol: str) -> Ticker:
        """
        Get latest price and 24h statistics.

        Args:
            symbol: Trading pair, e.g. BTCUSDT

        Returns:
            Ticker with price, 24h percent change and 24h volume
        """
        data = await self._get(symbol, "/api/v3/ticker/24hr", {"symbol": symbol})
        try:
            return Ticker(
                symbol=symbol,
                price=float(data["lastPrice"]),
                price_change_percent=float(data.get("priceChangePercent", 0.0)),
                volume=float(data.get("volume", 0.0)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise MarketDataUnavailableError(symbol, f"malformed ticker: {e}") from e

    async def ohlcv_window(self, symbol: str, interval: str, length: int) -> List[Candle]:
        """
        Get kline history.

        Args:
            symbol: Trading pair
            interval: Kline interval, e.g. 1m, 5m, 1h
            length: Number of samples (max 1000)

        Returns:
            Oldest-first list of candles
        """
        rows = await self._get(
            symbol,
            "/api/v3/klines",
            {"symbol": symbol, "interval": interval, "limit": min(length, 1000)},
        )
        try:
            return [
                Candle(
                    open_time=datetime.fromtimestamp(row[0] / 1000, tz=timezone.utc),
                    open=float(row[1]),
                    high=float(row[2]),
                    low=float(row[3]),
                    close=float(row[4]),
                    volume=float(row[5]),
                )
                for row in rows
            ]
        except (IndexError, TypeError, ValueError) as e:
            raise MarketDataUnavailableError(symbol, f"malformed klines: {e}") from e
