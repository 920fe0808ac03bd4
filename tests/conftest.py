"""Shared test configuration and fixtures."""

from collections import defaultdict, deque
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest

from vigil.config.settings import Settings
from vigil.exceptions import MarketDataUnavailableError
from vigil.models.alert import Alert
from vigil.models.market import Candle, Ticker
from vigil.models.notification import (
    AlertContext,
    NotificationChannel,
    NotificationResult,
    NotificationTarget,
)
from vigil.services.notification.service import NotificationDispatcher
from vigil.storage.memory import InMemoryAlertStore

START = datetime(2024, 3, 4, 12, 0, tzinfo=timezone.utc)  # a Monday


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


def make_candles(
    closes: List[float],
    start: datetime = START,
    spread: float = 0.0,
    volumes: Optional[List[float]] = None,
) -> List[Candle]:
    """Oldest-first one-minute candles around the given closes."""
    candles = []
    for i, close in enumerate(closes):
        candles.append(
            Candle(
                open_time=start + timedelta(minutes=i),
                open=close,
                high=close + spread,
                low=close - spread,
                close=close,
                volume=volumes[i] if volumes else 100.0,
            )
        )
    return candles


class FakeMarketDataProvider:
    """Scripted market data provider.

    Prices queued with ``queue_prices`` are served one per call; the last
    value repeats once the queue is drained.
    """

    def __init__(self):
        self.prices: Dict[str, deque] = defaultdict(deque)
        self.last_price: Dict[str, float] = {}
        self.change: Dict[str, float] = defaultdict(float)
        self.windows: Dict[str, List[Candle]] = {}
        self.failures: Dict[str, Exception] = {}
        self.price_calls: Dict[str, int] = defaultdict(int)
        self.window_calls: Dict[str, int] = defaultdict(int)

    def set_price(self, symbol: str, price: float, change: float = 0.0) -> None:
        self.prices[symbol].clear()
        self.last_price[symbol] = price
        self.change[symbol] = change

    def queue_prices(self, symbol: str, prices: List[float]) -> None:
        self.prices[symbol].extend(prices)

    def set_window(self, symbol: str, candles: List[Candle]) -> None:
        self.windows[symbol] = list(candles)

    def fail(self, symbol: str, error: Optional[Exception] = None) -> None:
        self.failures[symbol] = error or MarketDataUnavailableError(symbol, "scripted failure")

    def recover(self, symbol: str) -> None:
        self.failures.pop(symbol, None)

    @property
    def total_calls(self) -> int:
        return sum(self.price_calls.values())

    async def current_price(self, symbol: str) -> Ticker:
        self.price_calls[symbol] += 1
        if symbol in self.failures:
            raise self.failures[symbol]
        if self.prices[symbol]:
            self.last_price[symbol] = self.prices[symbol].popleft()
        return Ticker(
            symbol=symbol,
            price=self.last_price.get(symbol, 100.0),
            price_change_percent=self.change[symbol],
            volume=1000.0,
        )

    async def ohlcv_window(self, symbol: str, interval: str, length: int) -> List[Candle]:
        self.window_calls[symbol] += 1
        if symbol in self.failures:
            raise self.failures[symbol]
        return self.windows.get(symbol, make_candles([100.0] * 5))[-length:]


class RecordingChannel:
    """Notification channel that records what it was asked to send."""

    def __init__(self, channel: NotificationChannel = NotificationChannel.WEBHOOK, succeed: bool = True):
        self.channel = channel
        self.succeed = succeed
        self.sent: List[AlertContext] = []

    async def send_notification(self, context: AlertContext, recipient: str) -> NotificationResult:
        self.sent.append(context)
        return NotificationResult(
            channel=self.channel,
            success=self.succeed,
            message_id="msg-1" if self.succeed else None,
            error=None if self.succeed else "delivery refused",
            delivery_time_ms=1.0,
        )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings(tmp_path):
    """Settings isolated from the environment and .env files."""
    return Settings(
        _env_file=None,
        environment="testing",
        active_interval_seconds=30,
        idle_interval_seconds=300,
        market_data_ttl_seconds=0.0,
        market_data_timeout_seconds=1.0,
        notification_timeout_seconds=1.0,
        persistence_retry_attempts=3,
        persistence_retry_wait_seconds=0.0,
        shutdown_grace_seconds=1.0,
        data_directory=str(tmp_path),
        log_file_enabled=False,
    )


@pytest.fixture
def provider():
    return FakeMarketDataProvider()


@pytest.fixture
def store():
    return InMemoryAlertStore()


@pytest.fixture
def channel():
    return RecordingChannel()


@pytest.fixture
def dispatcher(channel):
    return NotificationDispatcher({channel.channel: channel}, timeout_seconds=1.0)


@pytest.fixture
def webhook_target():
    return NotificationTarget(
        channel=NotificationChannel.WEBHOOK, destination="https://hooks.example.com/alerts"
    )


@pytest.fixture
def make_alert(clock, webhook_target):
    """Factory for valid alerts with sensible defaults."""
    counter = {"n": 0}

    def _make(variant="price_above", symbol="BTCUSDT", **overrides) -> Alert:
        counter["n"] += 1
        data = {
            "id": f"alert-{counter['n']}",
            "user_id": "user-1",
            "symbol": symbol,
            "variant": variant,
            "targets": [webhook_target],
            "created_at": clock(),
        }
        if variant in ("price_above", "price_below") and "params" not in overrides:
            data["params"] = {"target_price": 50000}
        data.update(overrides)
        return Alert(**data)

    return _make
