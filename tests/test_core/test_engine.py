"""Tests for the monitoring engine."""

import asyncio
from datetime import datetime, timedelta
from unittest.mock import patch

import pytest

from vigil.engine import MonitorEngine
from vigil.indicators.engine import IndicatorSnapshot, RSIResult
from vigil.models.alert import AlertStatus
from vigil.scheduler import ACTIVITY_SWEEP_JOB_ID, MONITOR_JOB_PREFIX, RESYNC_JOB_ID, monitor_job_id
from vigil.storage.memory import InMemoryAlertStore


class CountingStore(InMemoryAlertStore):
    def __init__(self):
        super().__init__()
        self.load_calls = []

    async def load_active(self, symbol=None):
        self.load_calls.append(symbol)
        return await super().load_active(symbol)


class ScriptedIndicatorEngine:
    """Returns snapshots with a scripted RSI sequence."""

    def __init__(self, rsi_values):
        self.rsi_values = list(rsi_values)
        self.calls = 0

    def compute(self, market, params):
        value = self.rsi_values[min(self.calls, len(self.rsi_values) - 1)]
        self.calls += 1
        return IndicatorSnapshot(
            symbol=market.symbol,
            params=params,
            samples=100,
            close=market.price,
            rsi=RSIResult(value=value, period=params.rsi_period, ready=True),
        )


def monitor_jobs(engine):
    return [job for job in engine.scheduler.get_jobs() if job.id.startswith(MONITOR_JOB_PREFIX)]


@pytest.fixture
def engine(store, provider, dispatcher, settings, clock):
    return MonitorEngine(store, provider, dispatcher, settings=settings, clock=clock)


class TestStartup:
    @pytest.mark.asyncio
    async def test_no_alerts_means_no_timers(self, provider, dispatcher, settings, clock):
        store = CountingStore()
        engine = MonitorEngine(store, provider, dispatcher, settings=settings, clock=clock)

        await engine.start(paused=True)
        try:
            assert store.load_calls == [None]
            assert engine.monitored_symbols == {}
            assert {job.id for job in engine.scheduler.get_jobs()} == {ACTIVITY_SWEEP_JOB_ID}
            assert provider.total_calls == 0
        finally:
            await engine.stop()

        assert not engine.running

    @pytest.mark.asyncio
    async def test_start_creates_idle_timers(self, engine, store, make_alert):
        store.add(make_alert(symbol="BTCUSDT"))
        store.add(make_alert(symbol="BTCUSDT"))
        store.add(make_alert(symbol="ETHUSDT"))

        await engine.start(paused=True)
        try:
            assert engine.monitored_symbols == {"BTCUSDT": 300, "ETHUSDT": 300}
            assert len(monitor_jobs(engine)) == 2
        finally:
            await engine.stop()

        assert engine.scheduler.get_jobs() == []


class TestTick:
    @pytest.mark.asyncio
    async def test_price_alert_fires_when_target_reached(self, engine, store, provider, channel, make_alert, clock):
        alert = store.add(make_alert("price_above", params={"target_price": 50000}))
        provider.queue_prices("BTCUSDT", [49000, 49500, 50050])

        results = []
        for _ in range(3):
            results.append(await engine.run_tick("BTCUSDT"))
            clock.advance(30)

        assert [r.triggered for r in results] == [[], [], [alert.id]]
        assert all(r.evaluated == 1 for r in results)

        stored = store.get(alert.id)
        assert stored.trigger_count == 1
        assert stored.trigger_history[0].price == 50050
        assert stored.trigger_history[0].observed["price"] == 50050
        assert stored.status == AlertStatus.TRIGGERED
        assert len(channel.sent) == 1

    @pytest.mark.asyncio
    async def test_indicator_alert_fires_then_timer_retires(self, store, provider, dispatcher, settings, clock, make_alert):
        indicators = ScriptedIndicatorEngine([65, 72, 75])
        engine = MonitorEngine(
            store, provider, dispatcher, settings=settings, indicator_engine=indicators, clock=clock
        )
        alert = store.add(make_alert("rsi_overbought", indicator={"rsi": {"overbought_level": 70}}))

        await engine.start(paused=True)
        try:
            first = await engine.run_tick("BTCUSDT")
            clock.advance(300)
            second = await engine.run_tick("BTCUSDT")
            clock.advance(300)
            third = await engine.run_tick("BTCUSDT")

            assert first.triggered == []
            assert second.triggered == [alert.id]
            assert third.retired
            assert third.evaluated == 0
            assert indicators.calls == 2
            assert engine.scheduler.get_job(monitor_job_id("BTCUSDT")) is None
            assert "BTCUSDT" not in engine.monitored_symbols

            stored = store.get(alert.id)
            assert stored.status == AlertStatus.TRIGGERED
            assert stored.trigger_history[0].observed["rsi"] == 72
        finally:
            await engine.stop()

    @pytest.mark.asyncio
    async def test_snapshot_shared_by_alerts_with_same_params(self, store, provider, dispatcher, settings, clock, make_alert):
        indicators = ScriptedIndicatorEngine([50])
        engine = MonitorEngine(
            store, provider, dispatcher, settings=settings, indicator_engine=indicators, clock=clock
        )
        store.add(make_alert("rsi_overbought"))
        store.add(make_alert("rsi_oversold"))
        store.add(make_alert("rsi_above", indicator={"rsi": {"period": 7, "threshold": 60}}))

        result = await engine.run_tick("BTCUSDT")

        assert result.evaluated == 3
        assert indicators.calls == 2

    @pytest.mark.asyncio
    async def test_market_data_failure_skips_tick(self, engine, store, provider, make_alert, clock):
        alert = store.add(make_alert())
        provider.fail("BTCUSDT")

        result = await engine.run_tick("BTCUSDT")
        assert result.skipped_reason == "market_data_unavailable"
        assert result.triggered == []
        assert engine.counters["ticks_skipped"] == 1

        provider.recover("BTCUSDT")
        provider.set_price("BTCUSDT", 51000)
        clock.advance(30)
        assert (await engine.run_tick("BTCUSDT")).triggered == [alert.id]

    @pytest.mark.asyncio
    async def test_ineligible_alerts_are_not_evaluated(self, engine, store, provider, make_alert, clock):
        store.add(make_alert(expires_at=clock() - timedelta(minutes=1)))

        result = await engine.run_tick("BTCUSDT")

        assert result.skipped_reason == "no_eligible_alerts"
        assert provider.total_calls == 0

    @pytest.mark.asyncio
    async def test_overlapping_ticks_trigger_once(self, engine, store, provider, make_alert):
        alert = store.add(make_alert())
        provider.set_price("BTCUSDT", 52000)

        results = await asyncio.gather(engine.run_tick("BTCUSDT"), engine.run_tick("BTCUSDT"))

        assert sum(len(r.triggered) for r in results) == 1
        assert store.get(alert.id).trigger_count == 1

    @pytest.mark.asyncio
    async def test_confirmation_delay(self, engine, store, provider, make_alert, clock):
        alert = store.add(make_alert(policy={"confirmation_seconds": 60, "min_interval_seconds": 0}))
        provider.set_price("BTCUSDT", 51000)

        assert (await engine.run_tick("BTCUSDT")).triggered == []
        assert engine.status()["pending_confirmations"] == 1

        # Condition lapses; the delay starts over
        clock.advance(30)
        provider.set_price("BTCUSDT", 49000)
        await engine.run_tick("BTCUSDT")
        assert engine.status()["pending_confirmations"] == 0

        clock.advance(30)
        provider.set_price("BTCUSDT", 51000)
        assert (await engine.run_tick("BTCUSDT")).triggered == []
        clock.advance(59)
        assert (await engine.run_tick("BTCUSDT")).triggered == []
        clock.advance(1)
        assert (await engine.run_tick("BTCUSDT")).triggered == [alert.id]


class TestExternalChanges:
    @pytest.mark.asyncio
    async def test_expiry_set_after_trigger_is_honored(self, engine, store, provider, make_alert, clock):
        alert = store.add(make_alert(policy={"max_triggers": 3, "min_interval_seconds": 0}))
        provider.set_price("BTCUSDT", 51000)
        assert (await engine.run_tick("BTCUSDT")).triggered == [alert.id]

        stored = store.get(alert.id)
        stored.expires_at = clock() - timedelta(seconds=1)
        store.add(stored)
        clock.advance(60)

        assert (await engine.run_tick("BTCUSDT")).triggered == []
        assert store.get(alert.id).trigger_count == 1

    @pytest.mark.asyncio
    async def test_target_edited_after_trigger_is_honored(self, engine, store, provider, make_alert, clock):
        alert = store.add(make_alert(policy={"max_triggers": 3, "min_interval_seconds": 0}))
        provider.set_price("BTCUSDT", 51000)
        assert (await engine.run_tick("BTCUSDT")).triggered == [alert.id]

        stored = store.get(alert.id)
        stored.params = stored.params.model_copy(update={"target_price": 60000})
        store.add(stored)
        clock.advance(60)
        assert (await engine.run_tick("BTCUSDT")).triggered == []

        provider.set_price("BTCUSDT", 60500)
        clock.advance(60)
        assert (await engine.run_tick("BTCUSDT")).triggered == [alert.id]
        history = store.get(alert.id).trigger_history
        assert [record.price for record in history] == [51000, 60500]

    @pytest.mark.asyncio
    async def test_naive_expiry_is_read_as_utc(self, engine, store, provider, make_alert):
        naive = store.add(make_alert(expires_at=datetime(2030, 1, 1)))
        other = store.add(make_alert())
        provider.set_price("BTCUSDT", 51000)

        result = await engine.run_tick("BTCUSDT")

        assert set(result.triggered) == {naive.id, other.id}

    @pytest.mark.asyncio
    async def test_broken_alert_does_not_block_its_symbol(self, engine, store, provider, make_alert):
        broken = make_alert()
        # Assignment skips validation, leaving a naive datetime in place
        broken.expires_at = datetime(2030, 1, 1)
        store.add(broken)
        other = store.add(make_alert())
        provider.set_price("BTCUSDT", 51000)

        result = await engine.run_tick("BTCUSDT")

        assert result.triggered == [other.id]
        assert store.get(broken.id).trigger_count == 0

    @pytest.mark.asyncio
    async def test_sync_drops_confirmations_of_inactive_alerts(self, engine, store, provider, make_alert):
        alert = store.add(make_alert(policy={"confirmation_seconds": 60}))
        provider.set_price("BTCUSDT", 51000)
        await engine.run_tick("BTCUSDT")
        assert engine.status()["pending_confirmations"] == 1

        paused = store.get(alert.id)
        paused.pause()
        store.add(paused)
        await engine.sync_alerts()

        assert engine.status()["pending_confirmations"] == 0


class TestTimers:
    @pytest.mark.asyncio
    async def test_resync_runs_only_while_something_is_monitored(self, engine, store, make_alert):
        await engine.start(paused=True)
        try:
            assert engine.scheduler.get_job(RESYNC_JOB_ID) is None

            alert = store.add(make_alert(symbol="ETHUSDT"))
            assert await engine.sync_symbol("ETHUSDT") == 300
            assert engine.scheduler.get_job(RESYNC_JOB_ID) is not None

            store.remove(alert.id)
            assert await engine.sync_symbol("ETHUSDT") is None
            assert engine.scheduler.get_job(RESYNC_JOB_ID) is None
        finally:
            await engine.stop()

    @pytest.mark.asyncio
    async def test_recheck_is_idempotent(self, engine, store, make_alert):
        store.add(make_alert())
        await engine.start(paused=True)
        try:
            engine.activity.record("user-1", "BTCUSDT")
            with patch.object(
                engine.scheduler, "reschedule_job", wraps=engine.scheduler.reschedule_job
            ) as reschedule:
                assert engine.recheck_interval("BTCUSDT") == 30
                assert engine.recheck_interval("BTCUSDT") == 30

            assert reschedule.call_count == 1
            jobs = monitor_jobs(engine)
            assert len(jobs) == 1
            assert jobs[0].trigger.interval == timedelta(seconds=30)
        finally:
            await engine.stop()

    @pytest.mark.asyncio
    async def test_timer_retired_when_alerts_disappear(self, engine, store, make_alert):
        alert = store.add(make_alert())
        await engine.start(paused=True)
        try:
            assert "BTCUSDT" in engine.monitored_symbols
            store.remove(alert.id)

            result = await engine.run_tick("BTCUSDT")

            assert result.retired
            assert monitor_jobs(engine) == []
            assert engine.monitored_symbols == {}
        finally:
            await engine.stop()

    @pytest.mark.asyncio
    async def test_symbol_cap_prefers_active_then_recent(self, store, provider, dispatcher, settings, clock, make_alert):
        engine = MonitorEngine(
            store,
            provider,
            dispatcher,
            settings=settings.model_copy(update={"max_monitored_symbols": 2}),
            clock=clock,
        )
        store.add(make_alert(symbol="AAAUSDT"))
        clock.advance(10)
        store.add(make_alert(symbol="BBBUSDT"))
        clock.advance(10)
        store.add(make_alert(symbol="CCCUSDT"))
        engine.activity.record("user-2", "AAAUSDT")

        selected = await engine.sync_alerts()

        assert selected == ["AAAUSDT", "CCCUSDT"]
        assert engine.monitored_symbols == {"AAAUSDT": 30, "CCCUSDT": 300}

    @pytest.mark.asyncio
    async def test_sync_symbol(self, engine, store, make_alert):
        assert await engine.sync_symbol("solusdt") is None
        alert = store.add(make_alert(symbol="SOLUSDT"))
        assert await engine.sync_symbol("solusdt") == 300
        store.remove(alert.id)
        assert await engine.sync_symbol("SOLUSDT") is None
        assert engine.monitored_symbols == {}


class TestActivity:
    @pytest.mark.asyncio
    async def test_activity_switches_to_active_cadence(self, engine, store, make_alert, clock):
        store.add(make_alert(symbol="ETHUSDT"))
        await engine.start(paused=True)
        try:
            assert engine.monitored_symbols == {"ETHUSDT": 300}

            assert engine.notify_activity("user-1", "ethusdt")
            await engine._activity_queue.join()
            assert engine.monitored_symbols == {"ETHUSDT": 30}
            assert engine.status()["monitored_symbols"]["ETHUSDT"]["mode"] == "active"

            clock.advance(1801)
            await engine.sweep_activity()
            assert engine.monitored_symbols == {"ETHUSDT": 300}
        finally:
            await engine.stop()

    @pytest.mark.asyncio
    async def test_activity_starts_monitoring_new_symbol(self, engine, store, make_alert):
        await engine.start(paused=True)
        try:
            store.add(make_alert(symbol="SOLUSDT"))
            engine.notify_activity("user-1", "SOLUSDT")
            await engine._activity_queue.join()
            assert engine.monitored_symbols == {"SOLUSDT": 30}
        finally:
            await engine.stop()

    @pytest.mark.asyncio
    async def test_full_queue_drops_recheck(self, store, provider, dispatcher, settings, clock):
        engine = MonitorEngine(
            store,
            provider,
            dispatcher,
            settings=settings.model_copy(update={"activity_queue_size": 1}),
            clock=clock,
        )
        await engine.start(paused=True)
        try:
            # No await in between, so the worker cannot drain the queue
            assert engine.notify_activity("user-1", "BTCUSDT")
            assert not engine.notify_activity("user-2", "BTCUSDT")
            assert engine.counters["activity_dropped"] == 1
            # The activity itself is still recorded
            assert set(engine.activity.active_users("BTCUSDT")) == {"user-1", "user-2"}
        finally:
            await engine.stop()

    def test_activity_before_start_is_not_queued(self, engine):
        assert not engine.notify_activity("user-1", "BTCUSDT")
        assert engine.activity.has_active_users("BTCUSDT")


class TestStatus:
    @pytest.mark.asyncio
    async def test_status_snapshot(self, engine, store, make_alert):
        store.add(make_alert())
        await engine.start(paused=True)
        try:
            status = engine.status()
            assert status["running"]
            assert status["monitored_count"] == 1
            assert status["monitored_symbols"]["BTCUSDT"] == {
                "interval_seconds": 300,
                "mode": "idle",
            }
            assert {job["id"] for job in status["jobs"]} == {
                monitor_job_id("BTCUSDT"),
                RESYNC_JOB_ID,
                ACTIVITY_SWEEP_JOB_ID,
            }
        finally:
            await engine.stop()

        assert not engine.status()["running"]


@pytest.mark.integration
class TestScheduledRun:
    @pytest.mark.asyncio
    async def test_first_tick_runs_immediately_and_stop_is_clean(self, engine, store, provider, channel, make_alert):
        alert = store.add(make_alert())
        provider.set_price("BTCUSDT", 50500)

        await engine.start()
        try:
            for _ in range(200):
                if channel.sent:
                    break
                await asyncio.sleep(0.01)
        finally:
            await engine.stop()

        assert [c.alert_id for c in channel.sent] == [alert.id]
        assert not engine.scheduler.running
        assert engine.status()["inflight_ticks"] == 0

    @pytest.mark.asyncio
    async def test_empty_store_is_loaded_once(self, provider, dispatcher, settings, clock):
        settings = settings.model_copy(
            update={"alert_refresh_interval_seconds": 1, "activity_sweep_interval_seconds": 1}
        )
        store = CountingStore()
        engine = MonitorEngine(store, provider, dispatcher, settings=settings, clock=clock)

        await engine.start()
        try:
            clock.advance(3600)
            await asyncio.sleep(1.5)

            assert store.load_calls == [None]
            assert engine.scheduler.get_job(RESYNC_JOB_ID) is None
            assert provider.total_calls == 0
        finally:
            await engine.stop()
