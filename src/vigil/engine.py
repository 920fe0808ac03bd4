"""Monitoring engine: adaptive per-instrument timers around the tick body."""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Set

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from .config.logging import get_logger, log_integrity_issue, log_performance
from .config.settings import Settings, get_settings
from .exceptions import MarketDataUnavailableError
from .indicators.engine import IndicatorEngine, IndicatorParams, IndicatorSnapshot
from .market_data.cache import MarketDataCache
from .market_data.provider import MarketDataProvider
from .models.alert import Alert, AlertStatus
from .scheduler import (
    ACTIVITY_SWEEP_JOB_ID,
    RESYNC_JOB_ID,
    create_scheduler,
    list_scheduled_jobs,
    monitor_job_id,
)
from .services.activity import ActivityTracker
from .services.evaluator import ConditionEvaluator
from .services.lifecycle import LifecycleManager
from .services.notification.service import NotificationDispatcher
from .storage.base import AlertStore
from .utils.clock import Clock, utc_now

logger = get_logger(__name__)


@dataclass
class TickResult:
    """What one monitoring tick did for one instrument."""

    symbol: str
    started_at: datetime
    alerts_loaded: int = 0
    evaluated: int = 0
    triggered: List[str] = field(default_factory=list)
    skipped_reason: Optional[str] = None
    stale: bool = False
    retired: bool = False


class MonitorEngine:
    """
    Owns the per-instrument timers and everything a tick needs.

    One interval job per monitored symbol runs :meth:`run_tick`. Its period is
    ``active_interval_seconds`` while any user has recent activity on the
    symbol and ``idle_interval_seconds`` otherwise. Timers are created when a
    symbol gains its first active alert and retired by the first tick that
    finds none.
    """

    def __init__(
        self,
        store: AlertStore,
        provider: MarketDataProvider,
        dispatcher: NotificationDispatcher,
        settings: Optional[Settings] = None,
        scheduler: Optional[AsyncIOScheduler] = None,
        indicator_engine: Optional[IndicatorEngine] = None,
        evaluator: Optional[ConditionEvaluator] = None,
        clock: Clock = utc_now,
    ):
        self.settings = settings or get_settings()
        self.store = store
        self._clock = clock

        self.cache = MarketDataCache(
            provider,
            ttl_seconds=self.settings.market_data_ttl_seconds,
            timeout_seconds=self.settings.market_data_timeout_seconds,
            ohlcv_interval=self.settings.ohlcv_interval,
            window_length=self.settings.ohlcv_window_length,
            clock=clock,
        )
        self.indicator_engine = indicator_engine or IndicatorEngine()
        self.evaluator = evaluator or ConditionEvaluator(self.settings.volume_lookback)
        self.activity = ActivityTracker(self.settings.activity_timeout_seconds, clock)
        self.lifecycle = LifecycleManager(store, dispatcher, self.settings, clock)
        self.scheduler = scheduler or create_scheduler()

        self._intervals: Dict[str, int] = {}
        self._tick_locks: Dict[str, asyncio.Lock] = {}
        self._inflight_ticks: Set[asyncio.Task] = set()
        # alert id -> first time its condition held, for confirmation delays
        self._confirmations: Dict[str, datetime] = {}
        self._activity_queue: Optional[asyncio.Queue] = None
        self._activity_worker: Optional[asyncio.Task] = None
        self._running = False
        self._started_at: Optional[datetime] = None
        self.counters = {
            "ticks": 0,
            "ticks_skipped": 0,
            "evaluations": 0,
            "triggers": 0,
            "tick_errors": 0,
            "activity_dropped": 0,
        }
        self.logger = logger.bind(component="monitor_engine")

    @property
    def running(self) -> bool:
        return self._running

    @property
    def monitored_symbols(self) -> Dict[str, int]:
        """Monitored symbols and their current polling period in seconds."""
        return dict(self._intervals)

    # Lifecycle

    async def start(self, paused: bool = False) -> None:
        """
        Start the scheduler, load active alerts and create timers.

        Args:
            paused: Start the scheduler without running any job
        """
        if self._running:
            return

        self._activity_queue = asyncio.Queue(maxsize=self.settings.activity_queue_size)
        self.scheduler.start(paused=paused)
        self._activity_worker = asyncio.create_task(
            self._consume_activity(), name="activity-worker"
        )
        self._running = True
        self._started_at = self._clock()

        await self.sync_alerts()

        self.scheduler.add_job(
            self.sweep_activity,
            trigger="interval",
            seconds=self.settings.activity_sweep_interval_seconds,
            id=ACTIVITY_SWEEP_JOB_ID,
            name="Activity sweep",
            replace_existing=True,
        )

        self.logger.info(
            "Monitor engine started",
            monitored_symbols=len(self._intervals),
            active_interval_seconds=self.settings.active_interval_seconds,
            idle_interval_seconds=self.settings.idle_interval_seconds,
        )

    async def stop(self) -> None:
        """
        Stop all timers and wait for in-flight work.

        In-flight ticks get ``shutdown_grace_seconds`` to finish. Any trigger
        already recorded still gets its dispatch attempt before this returns.
        """
        if not self._running:
            return
        self._running = False
        grace = self.settings.shutdown_grace_seconds

        if self._activity_worker is not None:
            self._activity_worker.cancel()
            try:
                await self._activity_worker
            except asyncio.CancelledError:
                pass
            self._activity_worker = None

        # No new ticks after this point
        self.scheduler.remove_all_jobs()
        self._intervals.clear()

        pending = list(self._inflight_ticks)
        if pending:
            self.logger.info("Waiting for in-flight ticks", count=len(pending))
            _, not_done = await asyncio.wait(pending, timeout=grace)
            if not_done:
                self.logger.warning("Abandoning in-flight ticks", count=len(not_done))

        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)

        await self.lifecycle.drain(timeout=grace)
        self.logger.info("Monitor engine stopped", counters=dict(self.counters))

    # Timer management

    def desired_interval(self, symbol: str) -> int:
        """Polling period the symbol should have given current activity."""
        if self.activity.has_active_users(symbol):
            return self.settings.active_interval_seconds
        return self.settings.idle_interval_seconds

    def ensure_timer(self, symbol: str) -> int:
        """
        Make sure a symbol has a monitoring timer with the right period.

        Returns:
            The timer's period in seconds
        """
        if symbol in self._intervals:
            return self.recheck_interval(symbol)

        period = self.desired_interval(symbol)
        self.scheduler.add_job(
            self._scheduled_tick,
            trigger="interval",
            seconds=period,
            args=[symbol],
            id=monitor_job_id(symbol),
            name=f"Monitor {symbol}",
            replace_existing=True,
            next_run_time=datetime.now(timezone.utc),
        )
        self._intervals[symbol] = period
        self._schedule_resync()

        self.logger.info("Monitoring timer created", symbol=symbol, interval_seconds=period)
        return period

    def recheck_interval(self, symbol: str) -> Optional[int]:
        """
        Switch a symbol's timer between active and idle cadence if needed.

        Calling this again with unchanged activity is a no-op.

        Returns:
            The timer's period, or None if the symbol is not monitored
        """
        current = self._intervals.get(symbol)
        if current is None:
            return None

        period = self.desired_interval(symbol)
        if period == current:
            return current

        self.scheduler.reschedule_job(monitor_job_id(symbol), trigger="interval", seconds=period)
        self._intervals[symbol] = period

        self.logger.info(
            "Monitoring interval changed",
            symbol=symbol,
            from_seconds=current,
            to_seconds=period,
        )
        return period

    def retire_timer(self, symbol: str) -> bool:
        """
        Stop monitoring a symbol.

        Safe to call from inside the symbol's own tick: the running tick
        finishes and no further tick is scheduled.

        Returns:
            True if the symbol was monitored
        """
        period = self._intervals.pop(symbol, None)
        try:
            self.scheduler.remove_job(monitor_job_id(symbol))
        except JobLookupError:
            pass
        self.cache.invalidate(symbol)
        if not self._intervals:
            self._cancel_resync()

        if period is not None:
            self.logger.info("Monitoring timer retired", symbol=symbol)
        return period is not None

    def _schedule_resync(self) -> None:
        """Poll the store for alert changes only while some symbol is monitored."""
        if self.scheduler.get_job(RESYNC_JOB_ID) is not None:
            return
        self.scheduler.add_job(
            self.sync_alerts,
            trigger="interval",
            seconds=self.settings.alert_refresh_interval_seconds,
            id=RESYNC_JOB_ID,
            name="Active alert resync",
            replace_existing=True,
        )

    def _cancel_resync(self) -> None:
        try:
            self.scheduler.remove_job(RESYNC_JOB_ID)
        except JobLookupError:
            return
        self.logger.debug("Alert resync paused, nothing monitored")

    def _select_symbols(self, recency: Dict[str, datetime]) -> List[str]:
        """
        Apply the monitored-symbol cap.

        Symbols with an active user come first, then those with the most
        recently created alert.
        """
        active = self.activity.active_symbols()
        ordered = sorted(recency, key=lambda s: (s in active, recency[s]), reverse=True)

        cap = self.settings.max_monitored_symbols
        if len(ordered) > cap:
            self.logger.warning(
                "Monitored symbol cap reached",
                cap=cap,
                candidates=len(ordered),
                dropped=ordered[cap:],
            )
        return ordered[:cap]

    async def sync_alerts(self) -> List[str]:
        """
        Reconcile timers with the full set of active alerts.

        Returns:
            Symbols monitored after the sync
        """
        try:
            alerts = await self.store.load_active()
        except Exception as e:
            self.logger.error("Failed to load active alerts", error=str(e), exc_info=True)
            return sorted(self._intervals)

        active_ids = {alert.id for alert in alerts}
        self.lifecycle.prune(active_ids)
        for alert_id in list(self._confirmations):
            if alert_id not in active_ids:
                del self._confirmations[alert_id]

        recency: Dict[str, datetime] = {}
        for alert in alerts:
            latest = recency.get(alert.symbol)
            if latest is None or alert.created_at > latest:
                recency[alert.symbol] = alert.created_at

        selected = self._select_symbols(recency)
        for symbol in selected:
            self.ensure_timer(symbol)
        for symbol in list(self._intervals):
            if symbol not in selected:
                self.retire_timer(symbol)

        self.logger.debug(
            "Active alerts synced", alerts=len(alerts), monitored_symbols=len(selected)
        )
        return selected

    async def sync_symbol(self, symbol: str) -> Optional[int]:
        """
        Start or stop monitoring one symbol based on its active alerts.

        Call this after alerts for a symbol are created or changed.

        Returns:
            The symbol's polling period, or None if it is not monitored
        """
        symbol = symbol.strip().upper()
        try:
            alerts = await self.store.load_active(symbol)
        except Exception as e:
            self.logger.error(
                "Failed to load alerts for symbol", symbol=symbol, error=str(e), exc_info=True
            )
            return self._intervals.get(symbol)

        if not alerts:
            self.retire_timer(symbol)
            return None
        if symbol in self._intervals or len(self._intervals) < self.settings.max_monitored_symbols:
            return self.ensure_timer(symbol)

        # At the cap: let the full sync decide who gets a slot
        await self.sync_alerts()
        return self._intervals.get(symbol)

    # Activity

    def notify_activity(self, user_id: str, symbol: str) -> bool:
        """
        Record that a user is looking at a symbol.

        The activity record is updated immediately; the cadence recheck is
        queued for the activity worker.

        Returns:
            False if the recheck could not be queued
        """
        symbol = symbol.strip().upper()
        self.activity.record(user_id, symbol)

        if self._activity_queue is None:
            return False
        try:
            self._activity_queue.put_nowait(symbol)
        except asyncio.QueueFull:
            self.counters["activity_dropped"] += 1
            self.logger.warning("Activity queue full, recheck dropped", symbol=symbol)
            return False
        return True

    async def _consume_activity(self) -> None:
        while True:
            symbol = await self._activity_queue.get()
            try:
                if symbol in self._intervals:
                    self.recheck_interval(symbol)
                else:
                    await self.sync_symbol(symbol)
            except Exception as e:
                self.logger.error(
                    "Activity recheck failed", symbol=symbol, error=str(e), exc_info=True
                )
            finally:
                self._activity_queue.task_done()

    async def sweep_activity(self) -> None:
        """Evict stale activity and move quiet symbols back to idle cadence."""
        self.activity.evict_stale()
        for symbol in list(self._intervals):
            self.recheck_interval(symbol)

    # Tick

    def _tick_lock(self, symbol: str) -> asyncio.Lock:
        lock = self._tick_locks.get(symbol)
        if lock is None:
            lock = self._tick_locks[symbol] = asyncio.Lock()
        return lock

    async def _scheduled_tick(self, symbol: str) -> None:
        task = asyncio.current_task()
        self._inflight_ticks.add(task)
        try:
            await self.run_tick(symbol)
        except Exception as e:
            self.counters["tick_errors"] += 1
            self.logger.error("Monitoring tick failed", symbol=symbol, error=str(e), exc_info=True)
        finally:
            self._inflight_ticks.discard(task)

    def _confirmed(self, alert: Alert, now: datetime) -> bool:
        """Whether the condition has held long enough to fire."""
        delay = alert.policy.confirmation_seconds
        if delay <= 0:
            return True

        first_seen = self._confirmations.setdefault(alert.id, now)
        if now - first_seen >= timedelta(seconds=delay):
            return True

        self.logger.debug(
            "Awaiting confirmation",
            alert_id=alert.id,
            symbol=alert.symbol,
            held_seconds=(now - first_seen).total_seconds(),
            required_seconds=delay,
        )
        return False

    async def run_tick(self, symbol: str) -> TickResult:
        """
        Run one monitoring cycle for a symbol.

        Reloads the symbol's active alerts, fetches market data, computes
        indicator snapshots, evaluates every eligible alert and hands
        satisfied ones to the lifecycle manager. Ticks for the same symbol
        never overlap.

        Args:
            symbol: Monitored symbol

        Returns:
            TickResult describing what happened
        """
        async with self._tick_lock(symbol):
            started_at = self._clock()
            result = TickResult(symbol=symbol, started_at=started_at)
            self.counters["ticks"] += 1

            try:
                alerts = await self.store.load_active(symbol)
            except Exception as e:
                self.logger.warning(
                    "Failed to load alerts, tick skipped", symbol=symbol, error=str(e)
                )
                result.skipped_reason = "store_unavailable"
                self.counters["ticks_skipped"] += 1
                return result

            alerts = [self.lifecycle.reconcile(alert) for alert in alerts]
            alerts = [a for a in alerts if a.status == AlertStatus.ACTIVE and a.enabled]
            result.alerts_loaded = len(alerts)
            if not alerts:
                result.retired = self.retire_timer(symbol)
                return result

            eligible = []
            for alert in alerts:
                try:
                    reason = self.lifecycle.cannot_trigger_reason(alert, started_at)
                except Exception as e:
                    log_integrity_issue(
                        self.logger,
                        "Alert eligibility check failed, alert skipped",
                        alert_id=alert.id,
                        symbol=symbol,
                        error=str(e),
                    )
                    continue
                if reason is None:
                    eligible.append(alert)
                else:
                    self._confirmations.pop(alert.id, None)
                    self.logger.debug(
                        "Alert cannot trigger", alert_id=alert.id, symbol=symbol, reason=reason
                    )
            if not eligible:
                result.skipped_reason = "no_eligible_alerts"
                return result

            try:
                market = await self.cache.get(symbol)
            except MarketDataUnavailableError as e:
                self.logger.warning(
                    "Market data unavailable, tick skipped", symbol=symbol, reason=e.reason
                )
                result.skipped_reason = "market_data_unavailable"
                self.counters["ticks_skipped"] += 1
                return result
            result.stale = market.stale

            snapshots: Dict[IndicatorParams, IndicatorSnapshot] = {}
            for alert in eligible:
                snapshot = None
                if alert.variant.is_indicator:
                    params = alert.indicator.to_params()
                    snapshot = snapshots.get(params)
                    if snapshot is None:
                        snapshot = snapshots[params] = self.indicator_engine.compute(
                            market, params
                        )

                decision = self.evaluator.evaluate(alert, market, snapshot)
                result.evaluated += 1
                self.counters["evaluations"] += 1

                if not decision.triggered:
                    self._confirmations.pop(alert.id, None)
                    continue
                if not self._confirmed(alert, started_at):
                    continue

                self._confirmations.pop(alert.id, None)
                try:
                    record = await self.lifecycle.trigger(
                        alert, market, decision.observed, started_at
                    )
                except Exception as e:
                    self.counters["tick_errors"] += 1
                    self.logger.error(
                        "Trigger failed", alert_id=alert.id, symbol=symbol, error=str(e), exc_info=True
                    )
                    continue
                if record is not None:
                    result.triggered.append(alert.id)
                    self.counters["triggers"] += 1

            duration_ms = (self._clock() - started_at).total_seconds() * 1000
            log_performance(
                "monitor_tick",
                duration_ms,
                symbol=symbol,
                evaluated=result.evaluated,
                triggered=len(result.triggered),
                stale=result.stale,
            )
            return result

    # Reporting

    def status(self) -> Dict[str, Any]:
        """Snapshot of the engine's monitoring state."""
        now = self._clock()
        active_interval = self.settings.active_interval_seconds
        monitored = {
            symbol: {
                "interval_seconds": period,
                "mode": "active" if period == active_interval else "idle",
            }
            for symbol, period in sorted(self._intervals.items())
        }
        return {
            "running": self._running,
            "uptime_seconds": (
                (now - self._started_at).total_seconds() if self._started_at else 0.0
            ),
            "monitored_symbols": monitored,
            "monitored_count": len(monitored),
            "max_monitored_symbols": self.settings.max_monitored_symbols,
            "cache_entries": len(self.cache),
            "activity": self.activity.stats(),
            "activity_queue_depth": (
                self._activity_queue.qsize() if self._activity_queue is not None else 0
            ),
            "inflight_ticks": len(self._inflight_ticks),
            "inflight_triggers": self.lifecycle.inflight_count,
            "pending_confirmations": len(self._confirmations),
            "counters": dict(self.counters),
            "jobs": list_scheduled_jobs(self.scheduler),
        }
