"""Tests for the alert data model."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from vigil.models.alert import (
    Alert,
    AlertStatus,
    AlertVariant,
    IndicatorConfig,
    TriggerRecord,
    VariantFamily,
)
from vigil.models.notification import NotificationChannel, NotificationTarget


class TestAlertVariant:
    def test_closed_set(self):
        assert len(AlertVariant) == 28

    @pytest.mark.parametrize(
        "tag,family,indicator",
        [
            ("price_above", VariantFamily.PRICE, False),
            ("percent_change", VariantFamily.PERCENT, False),
            ("volume_spike", VariantFamily.VOLUME, False),
            ("rsi_oversold", VariantFamily.RSI, True),
            ("macd_above_zero", VariantFamily.MACD, True),
            ("ma_golden_cross", VariantFamily.MOVING_AVERAGE, True),
            ("bb_squeeze", VariantFamily.BOLLINGER, True),
            ("williams_below", VariantFamily.WILLIAMS_R, True),
        ],
    )
    def test_family(self, tag, family, indicator):
        variant = AlertVariant(tag)
        assert variant.family == family
        assert variant.is_indicator is indicator

    def test_every_variant_has_a_family(self):
        for variant in AlertVariant:
            assert isinstance(variant.family, VariantFamily)


class TestAlertValidation:
    def test_symbol_is_normalized(self, make_alert):
        assert make_alert(symbol=" ethusdt ").symbol == "ETHUSDT"

    @pytest.mark.parametrize("symbol", ["BTC-USD", "B", "btc/usdt", ""])
    def test_invalid_symbol(self, make_alert, symbol):
        with pytest.raises(ValidationError):
            make_alert(symbol=symbol)

    def test_unknown_variant_rejected(self, make_alert):
        with pytest.raises(ValidationError):
            make_alert("price_sideways", params={"target_price": 1})

    def test_basic_variant_requires_its_field(self, make_alert):
        with pytest.raises(ValidationError):
            make_alert("price_above", params={"percent_change": 5})
        with pytest.raises(ValidationError):
            make_alert("volume_spike")

    def test_basic_variant_rejects_indicator_config(self, make_alert):
        with pytest.raises(ValidationError):
            make_alert("price_above", indicator={})

    def test_indicator_variant_rejects_basic_params(self, make_alert):
        with pytest.raises(ValidationError):
            make_alert("rsi_above", params={"target_price": 1})

    def test_indicator_variant_gets_default_config(self, make_alert):
        alert = make_alert("macd_bullish_crossover")
        assert alert.indicator == IndicatorConfig()
        assert alert.indicator.macd.slow_period == 26

    def test_period_ordering(self, make_alert):
        with pytest.raises(ValidationError):
            make_alert("macd_above_zero", indicator={"macd": {"fast_period": 26, "slow_period": 12}})
        with pytest.raises(ValidationError):
            make_alert("ma_cross_above", indicator={"ma": {"fast_period": 50, "slow_period": 20}})

    def test_history_bounded_by_max_triggers(self, make_alert, clock):
        records = [TriggerRecord(triggered_at=clock(), price=1.0) for _ in range(2)]
        with pytest.raises(ValidationError):
            make_alert(trigger_history=records)
        assert make_alert(trigger_history=records, policy={"max_triggers": 2}).trigger_count == 2

    def test_target_destination_required(self):
        with pytest.raises(ValidationError):
            NotificationTarget(channel=NotificationChannel.LINE, destination="")


class TestAlertState:
    def test_naive_datetimes_read_as_utc(self, make_alert):
        alert = make_alert(expires_at="2030-01-01T00:00:00", created_at=datetime(2024, 3, 4, 12))
        assert alert.expires_at == datetime(2030, 1, 1, tzinfo=timezone.utc)
        assert alert.created_at.tzinfo is not None
        assert not alert.is_expired(datetime(2029, 12, 31, tzinfo=timezone.utc))

    def test_naive_trigger_time_read_as_utc(self):
        record = TriggerRecord(triggered_at=datetime(2024, 3, 4, 12), price=1.0)
        assert record.triggered_at == datetime(2024, 3, 4, 12, tzinfo=timezone.utc)

    def test_active_and_expiry(self, make_alert, clock):
        alert = make_alert(expires_at=clock() + timedelta(minutes=5))
        assert alert.is_active(clock())
        assert not alert.is_active(clock() + timedelta(minutes=5))
        assert alert.is_expired(clock() + timedelta(minutes=6))

    def test_pause_and_resume(self, make_alert, clock):
        alert = make_alert()
        alert.pause()
        assert alert.status == AlertStatus.PAUSED
        assert not alert.is_active(clock())
        alert.resume()
        assert alert.is_active(clock())

    def test_resume_does_not_revive_triggered(self, make_alert):
        alert = make_alert(status="triggered", enabled=False)
        alert.resume()
        assert alert.status == AlertStatus.TRIGGERED

    def test_last_triggered_at(self, make_alert, clock):
        alert = make_alert(policy={"max_triggers": 3})
        assert alert.last_triggered_at is None
        alert.trigger_history.append(TriggerRecord(triggered_at=clock(), price=1.0))
        assert alert.last_triggered_at == clock()

    def test_thresholds(self, make_alert):
        assert make_alert("rsi_overbought").thresholds() == {
            "period": 14,
            "overbought_level": 70,
            "oversold_level": 30,
        }
        assert make_alert("percent_change", params={"percent_change": 5}).thresholds() == {
            "percent_change": 5.0,
            "direction": "either",
        }

    def test_json_round_trip(self, make_alert):
        alert = make_alert("bb_squeeze", indicator={"bollinger": {"squeeze_threshold": 0.04}})
        restored = Alert.model_validate_json(alert.model_dump_json())
        assert restored == alert
