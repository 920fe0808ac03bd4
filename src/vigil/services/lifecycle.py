"""Alert trigger bookkeeping: eligibility, trigger records and delivery outcomes."""

import asyncio
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Set

from tenacity import AsyncRetrying, RetryCallState, stop_after_attempt, wait_exponential

from ..config.logging import get_logger
from ..config.settings import Settings, get_settings
from ..models.alert import Alert, AlertStatus, NotificationOutcome, TriggerRecord
from ..models.market import MarketData
from ..models.notification import AlertContext, NotificationResult
from ..storage.base import AlertStore
from ..utils.clock import Clock, utc_now
from .notification.service import NotificationDispatcher

logger = get_logger(__name__)

# Reasons reported by cannot_trigger_reason()
NOT_ACTIVE = "not_active"
DISABLED = "disabled"
EXPIRED = "expired"
MAX_TRIGGERS_REACHED = "max_triggers_reached"
MIN_INTERVAL_NOT_MET = "min_interval_not_met"
OUTSIDE_TRADING_HOURS = "outside_trading_hours"
ALREADY_TRIGGERED = "already_triggered_this_tick"


class LifecycleManager:
    """
    Applies triggers to alerts and records what happened to their notifications.

    Every read-modify-write of an alert's trigger state happens under that
    alert's lock. The manager also remembers the latest state it produced for
    each alert, so a copy reloaded from a store that missed a write (retries
    exhausted) cannot fire the same alert again.
    """

    def __init__(
        self,
        store: AlertStore,
        dispatcher: NotificationDispatcher,
        settings: Optional[Settings] = None,
        clock: Clock = utc_now,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.settings = settings or get_settings()
        self._clock = clock
        self._locks: Dict[str, asyncio.Lock] = {}
        self._known: Dict[str, Alert] = {}
        self._inflight: Set[asyncio.Task] = set()
        self.logger = logger.bind(component="lifecycle_manager")

    # Eligibility

    def within_trading_hours(self, now: datetime) -> bool:
        settings = self.settings
        if settings.trading_weekdays_only and now.weekday() >= 5:
            return False
        return settings.trading_hours_start <= now.hour < settings.trading_hours_end

    def cannot_trigger_reason(self, alert: Alert, now: Optional[datetime] = None) -> Optional[str]:
        """Why an alert may not trigger right now, or None if it may."""
        now = now or self._clock()
        policy = alert.policy

        if alert.status != AlertStatus.ACTIVE:
            return NOT_ACTIVE
        if not alert.enabled:
            return DISABLED
        if alert.is_expired(now):
            return EXPIRED
        if alert.trigger_count >= policy.max_triggers:
            return MAX_TRIGGERS_REACHED

        last = alert.last_triggered_at
        if last is not None and now - last < timedelta(seconds=policy.min_interval_seconds):
            return MIN_INTERVAL_NOT_MET

        if policy.only_trading_hours and not self.within_trading_hours(now):
            return OUTSIDE_TRADING_HOURS
        return None

    def can_trigger(self, alert: Alert, now: Optional[datetime] = None) -> bool:
        return self.cannot_trigger_reason(alert, now) is None

    def reconcile(self, alert: Alert) -> Alert:
        """
        Merge trigger state the store may have missed into a loaded alert.

        The loaded copy's definition (params, targets, policy, expiry) always
        wins. Only when a write failed, so that the remembered history is
        longer than the stored one, is the remembered history carried over,
        together with a retirement the store never recorded.
        """
        known = self._known.get(alert.id)
        if known is None or known.trigger_count <= alert.trigger_count:
            return alert

        merged = alert.model_copy(deep=True)
        merged.trigger_history = [record.model_copy(deep=True) for record in known.trigger_history]
        if known.status != AlertStatus.ACTIVE:
            merged.status = known.status
            merged.enabled = known.enabled
        return merged

    def prune(self, active_ids: Iterable[str]) -> None:
        """Forget remembered alerts the store no longer reports as active."""
        keep = set(active_ids)
        keep.update(alert_id for alert_id, lock in self._locks.items() if lock.locked())
        for alert_id in list(self._known):
            if alert_id not in keep:
                del self._known[alert_id]
                self._locks.pop(alert_id, None)

    def _lock_for(self, alert_id: str) -> asyncio.Lock:
        lock = self._locks.get(alert_id)
        if lock is None:
            lock = self._locks[alert_id] = asyncio.Lock()
        return lock

    # Triggering

    async def trigger(
        self,
        alert: Alert,
        market: MarketData,
        observed: Dict[str, float],
        evaluated_at: Optional[datetime] = None,
    ) -> Optional[TriggerRecord]:
        """
        Fire an alert whose condition held, shielded from tick cancellation.

        The work runs as its own task: if the calling tick is cancelled the
        trigger still completes, including its dispatch attempt, and
        :meth:`drain` waits for it.
        """
        task = asyncio.create_task(
            self.on_trigger(alert, market, observed, evaluated_at),
            name=f"trigger:{alert.id}",
        )
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return await asyncio.shield(task)

    async def on_trigger(
        self,
        alert: Alert,
        market: MarketData,
        observed: Dict[str, float],
        evaluated_at: Optional[datetime] = None,
    ) -> Optional[TriggerRecord]:
        """
        Append a trigger record, update status and dispatch notifications.

        Args:
            alert: Alert whose condition held
            market: Market data the condition was evaluated on
            observed: Values the evaluator used
            evaluated_at: Time of the evaluation; a second trigger for the
                same evaluation time is refused

        Returns:
            The new trigger record, or None if the alert could not trigger
        """
        async with self._lock_for(alert.id):
            current = self.reconcile(alert).model_copy(deep=True)
            now = evaluated_at or self._clock()

            last = current.last_triggered_at
            reason = ALREADY_TRIGGERED if last is not None and last >= now else None
            reason = reason or self.cannot_trigger_reason(current, now)
            if reason is not None:
                self.logger.debug(
                    "Trigger refused",
                    alert_id=alert.id,
                    symbol=alert.symbol,
                    reason=reason,
                )
                return None

            record = TriggerRecord(
                triggered_at=now,
                price=market.price,
                price_change_percent=market.price_change_percent,
                volume=market.volume,
                observed=dict(observed),
            )
            current.trigger_history.append(record)

            final = current.trigger_count >= current.policy.max_triggers
            if final:
                current.status = AlertStatus.TRIGGERED
                current.enabled = False
            self._known[current.id] = current

            self.logger.info(
                "Alert triggered",
                alert_id=current.id,
                user_id=current.user_id,
                symbol=current.symbol,
                variant=current.variant.value,
                price=market.price,
                trigger_count=current.trigger_count,
                max_triggers=current.policy.max_triggers,
                final=final,
            )

            await self._persist(
                "persist_trigger", current.id, self.store.persist_trigger, current.id, record
            )
            if final:
                await self._persist(
                    "persist_status",
                    current.id,
                    self.store.persist_status,
                    current.id,
                    current.status,
                    current.enabled,
                )

            results = await self.dispatcher.send_all(
                current.targets, self._build_context(current, record)
            )
            outcomes = self.record_outcomes(current, results)
            if outcomes:
                await self._persist(
                    "persist_notifications",
                    current.id,
                    self.store.persist_notifications,
                    current.id,
                    outcomes,
                )
            return record

    def _build_context(self, alert: Alert, record: TriggerRecord) -> AlertContext:
        return AlertContext(
            alert_id=alert.id,
            user_id=alert.user_id,
            symbol=alert.symbol,
            variant=alert.variant.value,
            triggered_at=record.triggered_at,
            price=record.price,
            price_change_percent=record.price_change_percent,
            observed=dict(record.observed),
            thresholds=alert.thresholds(),
            trigger_count=alert.trigger_count,
            max_triggers=alert.policy.max_triggers,
            note=alert.note,
        )

    def record_outcomes(
        self, alert: Alert, results: List[NotificationResult]
    ) -> List[NotificationOutcome]:
        """Attach per-channel delivery outcomes to the alert's latest trigger."""
        if not alert.trigger_history:
            return []

        sent_at = self._clock()
        outcomes = [
            NotificationOutcome(
                channel=result.channel,
                success=result.success,
                sent_at=sent_at,
                error=result.error,
            )
            for result in results
        ]
        alert.trigger_history[-1].notifications = outcomes

        failed = [o.channel.value for o in outcomes if not o.success]
        if failed:
            self.logger.warning(
                "Notification delivery failed",
                alert_id=alert.id,
                symbol=alert.symbol,
                failed_channels=failed,
            )
        return outcomes

    async def _persist(self, operation: str, alert_id: str, call, *args) -> bool:
        """Run a store write with bounded retries; log and give up when exhausted."""

        def log_retry(retry_state: RetryCallState) -> None:
            self.logger.warning(
                "Retrying alert store write",
                operation=operation,
                alert_id=alert_id,
                attempt=retry_state.attempt_number,
                error=str(retry_state.outcome.exception()),
            )

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.settings.persistence_retry_attempts),
                wait=wait_exponential(
                    multiplier=self.settings.persistence_retry_wait_seconds,
                    max=self.settings.persistence_retry_wait_seconds * 8,
                ),
                before_sleep=log_retry,
                reraise=True,
            ):
                with attempt:
                    await call(*args)
        except Exception as e:
            self.logger.error(
                "Alert store write failed after retries",
                operation=operation,
                alert_id=alert_id,
                attempts=self.settings.persistence_retry_attempts,
                error=str(e),
                exc_info=True,
            )
            return False
        return True

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight triggers, including their dispatch attempts."""
        if not self._inflight:
            return

        pending = list(self._inflight)
        self.logger.info("Waiting for in-flight triggers", count=len(pending))
        done, not_done = await asyncio.wait(pending, timeout=timeout)
        if not_done:
            self.logger.warning(
                "In-flight triggers still running at shutdown", count=len(not_done)
            )

    @property
    def inflight_count(self) -> int:
        return len(self._inflight)
