"""Condition evaluation: one rule per alert variant."""

from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from ..config.logging import get_logger, log_integrity_issue
from ..indicators.engine import IndicatorSnapshot
from ..models.alert import Alert, AlertVariant, ChangeDirection
from ..models.market import MarketData

logger = get_logger(__name__)

INSUFFICIENT_HISTORY = "insufficient_history"
UNKNOWN_VARIANT = "unknown_variant"


@dataclass(frozen=True)
class Decision:
    """Outcome of evaluating one alert against one market view."""

    triggered: bool
    observed: Dict[str, float] = field(default_factory=dict)
    reason: Optional[str] = None


Rule = Callable[[Alert, MarketData, Optional[IndicatorSnapshot]], Decision]


def _crossed_up(previous_a, previous_b, a, b) -> bool:
    return previous_a <= previous_b and a > b


def _crossed_down(previous_a, previous_b, a, b) -> bool:
    return previous_a >= previous_b and a < b


class ConditionEvaluator:
    """Stateless mapping of (alert, market data, snapshot) to a trigger decision."""

    def __init__(self, volume_lookback: int = 20):
        self.volume_lookback = volume_lookback
        self.logger = logger.bind(component="condition_evaluator")

        V = AlertVariant
        self._rules: Dict[AlertVariant, Rule] = {
            V.PRICE_ABOVE: self._price_above,
            V.PRICE_BELOW: self._price_below,
            V.PERCENT_CHANGE: self._percent_change,
            V.VOLUME_SPIKE: self._volume_spike,
            V.RSI_ABOVE: self._rsi_above,
            V.RSI_BELOW: self._rsi_below,
            V.RSI_OVERBOUGHT: self._rsi_overbought,
            V.RSI_OVERSOLD: self._rsi_oversold,
            V.MACD_BULLISH_CROSSOVER: self._macd_bullish_crossover,
            V.MACD_BEARISH_CROSSOVER: self._macd_bearish_crossover,
            V.MACD_ABOVE_ZERO: self._macd_above_zero,
            V.MACD_BELOW_ZERO: self._macd_below_zero,
            V.MA_CROSS_ABOVE: self._ma_cross_up,
            V.MA_GOLDEN_CROSS: self._ma_cross_up,
            V.MA_CROSS_BELOW: self._ma_cross_down,
            V.MA_DEATH_CROSS: self._ma_cross_down,
            V.MA_SUPPORT_BOUNCE: self._ma_support_bounce,
            V.MA_RESISTANCE_REJECT: self._ma_resistance_reject,
            V.BB_UPPER_TOUCH: self._bb_upper_touch,
            V.BB_LOWER_TOUCH: self._bb_lower_touch,
            V.BB_SQUEEZE: self._bb_squeeze,
            V.BB_EXPANSION: self._bb_expansion,
            V.BB_MIDDLE_CROSS: self._bb_middle_cross,
            V.BB_BANDWIDTH_ALERT: self._bb_bandwidth_alert,
            V.WILLIAMS_OVERBOUGHT: self._williams_overbought,
            V.WILLIAMS_OVERSOLD: self._williams_oversold,
            V.WILLIAMS_ABOVE: self._williams_above,
            V.WILLIAMS_BELOW: self._williams_below,
        }

    def evaluate(
        self,
        alert: Alert,
        market: MarketData,
        snapshot: Optional[IndicatorSnapshot] = None,
    ) -> Decision:
        """
        Decide whether an alert's condition currently holds.

        Args:
            alert: Alert being checked
            market: Current market data for the alert's symbol
            snapshot: Indicator snapshot computed with the alert's parameters;
                required for indicator variants

        Returns:
            Decision with the observed values used
        """
        rule = self._rules.get(alert.variant)
        if rule is None:
            log_integrity_issue(
                self.logger,
                "Unknown alert variant reached evaluation",
                alert_id=alert.id,
                variant=str(alert.variant),
            )
            return Decision(False, {"price": market.price}, UNKNOWN_VARIANT)

        if alert.variant.is_indicator and snapshot is None:
            return Decision(False, {"price": market.price}, INSUFFICIENT_HISTORY)

        try:
            return rule(alert, market, snapshot)
        except Exception as e:
            self.logger.error(
                "Failed to evaluate alert",
                alert_id=alert.id,
                variant=alert.variant.value,
                error=str(e),
                exc_info=True,
            )
            return Decision(False, {"price": market.price}, "evaluation_error")

    # Basic conditions

    def _price_above(self, alert, market, snapshot) -> Decision:
        target = alert.params.target_price
        return Decision(
            market.price >= target, {"price": market.price, "target_price": target}
        )

    def _price_below(self, alert, market, snapshot) -> Decision:
        target = alert.params.target_price
        return Decision(
            market.price <= target, {"price": market.price, "target_price": target}
        )

    def _percent_change(self, alert, market, snapshot) -> Decision:
        threshold = abs(alert.params.percent_change)
        change = market.price_change_percent
        direction = alert.params.direction

        if direction == ChangeDirection.UP:
            triggered = change >= threshold
        elif direction == ChangeDirection.DOWN:
            triggered = change <= -threshold
        else:
            triggered = abs(change) >= threshold

        return Decision(
            triggered,
            {
                "price": market.price,
                "price_change_percent": change,
                "threshold": threshold,
            },
        )

    def _volume_spike(self, alert, market, snapshot) -> Decision:
        volumes = market.volumes
        observed = {"price": market.price}
        if len(volumes) < 2:
            return Decision(False, observed, INSUFFICIENT_HISTORY)

        baseline_window = volumes[-(self.volume_lookback + 1) : -1]
        baseline = sum(baseline_window) / len(baseline_window)
        current = volumes[-1]
        multiplier = alert.params.volume_multiplier

        observed.update(
            {
                "volume": current,
                "average_volume": baseline,
                "volume_multiplier": multiplier,
            }
        )
        if baseline <= 0:
            return Decision(False, observed, "no_volume_baseline")

        observed["volume_ratio"] = current / baseline
        return Decision(current >= baseline * multiplier, observed)

    # RSI

    def _rsi_decision(self, market, snapshot, level: float, above: bool) -> Decision:
        rsi = snapshot.rsi
        observed = {"price": market.price, "rsi": rsi.value, "level": level}
        if not rsi.ready:
            return Decision(False, observed, INSUFFICIENT_HISTORY)
        triggered = rsi.value >= level if above else rsi.value <= level
        return Decision(triggered, observed)

    def _rsi_above(self, alert, market, snapshot) -> Decision:
        config = alert.indicator.rsi
        level = config.threshold if config.threshold is not None else config.overbought_level
        return self._rsi_decision(market, snapshot, level, above=True)

    def _rsi_below(self, alert, market, snapshot) -> Decision:
        config = alert.indicator.rsi
        level = config.threshold if config.threshold is not None else config.oversold_level
        return self._rsi_decision(market, snapshot, level, above=False)

    def _rsi_overbought(self, alert, market, snapshot) -> Decision:
        level = alert.indicator.rsi.overbought_level
        return self._rsi_decision(market, snapshot, level, above=True)

    def _rsi_oversold(self, alert, market, snapshot) -> Decision:
        level = alert.indicator.rsi.oversold_level
        return self._rsi_decision(market, snapshot, level, above=False)

    # MACD

    def _macd_observed(self, market, snapshot) -> Dict[str, float]:
        macd = snapshot.macd
        observed = {
            "price": market.price,
            "macd": macd.macd,
            "macd_signal": macd.signal,
            "macd_histogram": macd.histogram,
        }
        if macd.previous_histogram is not None:
            observed["previous_histogram"] = macd.previous_histogram
        return observed

    def _macd_bullish_crossover(self, alert, market, snapshot) -> Decision:
        macd = snapshot.macd
        observed = self._macd_observed(market, snapshot)
        if not macd.ready or macd.previous_histogram is None:
            return Decision(False, observed, INSUFFICIENT_HISTORY)
        return Decision(macd.previous_histogram <= 0 < macd.histogram, observed)

    def _macd_bearish_crossover(self, alert, market, snapshot) -> Decision:
        macd = snapshot.macd
        observed = self._macd_observed(market, snapshot)
        if not macd.ready or macd.previous_histogram is None:
            return Decision(False, observed, INSUFFICIENT_HISTORY)
        return Decision(macd.previous_histogram >= 0 > macd.histogram, observed)

    def _macd_above_zero(self, alert, market, snapshot) -> Decision:
        observed = self._macd_observed(market, snapshot)
        if not snapshot.macd.ready:
            return Decision(False, observed, INSUFFICIENT_HISTORY)
        return Decision(snapshot.macd.macd > 0, observed)

    def _macd_below_zero(self, alert, market, snapshot) -> Decision:
        observed = self._macd_observed(market, snapshot)
        if not snapshot.macd.ready:
            return Decision(False, observed, INSUFFICIENT_HISTORY)
        return Decision(snapshot.macd.macd < 0, observed)

    # Moving averages

    def _ma_observed(self, market, snapshot) -> Dict[str, float]:
        ma = snapshot.ma
        observed = {"price": market.price, "ma_fast": ma.fast, "ma_slow": ma.slow}
        if ma.previous_fast is not None and ma.previous_slow is not None:
            observed["previous_ma_fast"] = ma.previous_fast
            observed["previous_ma_slow"] = ma.previous_slow
        return observed

    def _ma_pair_ready(self, snapshot) -> bool:
        ma = snapshot.ma
        return ma.ready and ma.previous_fast is not None and ma.previous_slow is not None

    def _ma_cross_up(self, alert, market, snapshot) -> Decision:
        ma = snapshot.ma
        observed = self._ma_observed(market, snapshot)
        if not self._ma_pair_ready(snapshot):
            return Decision(False, observed, INSUFFICIENT_HISTORY)
        return Decision(
            _crossed_up(ma.previous_fast, ma.previous_slow, ma.fast, ma.slow), observed
        )

    def _ma_cross_down(self, alert, market, snapshot) -> Decision:
        ma = snapshot.ma
        observed = self._ma_observed(market, snapshot)
        if not self._ma_pair_ready(snapshot):
            return Decision(False, observed, INSUFFICIENT_HISTORY)
        return Decision(
            _crossed_down(ma.previous_fast, ma.previous_slow, ma.fast, ma.slow), observed
        )

    def _ma_support_bounce(self, alert, market, snapshot) -> Decision:
        ma = snapshot.ma
        tolerance = alert.indicator.ma.tolerance
        observed = self._ma_observed(market, snapshot)
        if not self._ma_pair_ready(snapshot) or snapshot.previous_low is None:
            return Decision(False, observed, INSUFFICIENT_HISTORY)

        observed["previous_low"] = snapshot.previous_low
        touched = snapshot.previous_low <= ma.previous_fast * (1 + tolerance)
        recovered = market.price > ma.fast and market.price > snapshot.previous_close
        return Decision(touched and recovered, observed)

    def _ma_resistance_reject(self, alert, market, snapshot) -> Decision:
        ma = snapshot.ma
        tolerance = alert.indicator.ma.tolerance
        observed = self._ma_observed(market, snapshot)
        if not self._ma_pair_ready(snapshot) or snapshot.previous_high is None:
            return Decision(False, observed, INSUFFICIENT_HISTORY)

        observed["previous_high"] = snapshot.previous_high
        touched = snapshot.previous_high >= ma.previous_fast * (1 - tolerance)
        rejected = market.price < ma.fast and market.price < snapshot.previous_close
        return Decision(touched and rejected, observed)

    # Bollinger Bands

    def _bb_observed(self, market, snapshot) -> Dict[str, float]:
        bb = snapshot.bollinger
        return {
            "price": market.price,
            "bb_upper": bb.upper,
            "bb_middle": bb.middle,
            "bb_lower": bb.lower,
            "bb_bandwidth": bb.bandwidth,
        }

    def _bb_upper_touch(self, alert, market, snapshot) -> Decision:
        observed = self._bb_observed(market, snapshot)
        if not snapshot.bollinger.ready:
            return Decision(False, observed, INSUFFICIENT_HISTORY)
        return Decision(market.price >= snapshot.bollinger.upper, observed)

    def _bb_lower_touch(self, alert, market, snapshot) -> Decision:
        observed = self._bb_observed(market, snapshot)
        if not snapshot.bollinger.ready:
            return Decision(False, observed, INSUFFICIENT_HISTORY)
        return Decision(market.price <= snapshot.bollinger.lower, observed)

    def _bb_squeeze(self, alert, market, snapshot) -> Decision:
        threshold = alert.indicator.bollinger.squeeze_threshold
        observed = self._bb_observed(market, snapshot)
        observed["threshold"] = threshold
        if not snapshot.bollinger.ready:
            return Decision(False, observed, INSUFFICIENT_HISTORY)
        return Decision(snapshot.bollinger.bandwidth < threshold, observed)

    def _bb_expansion(self, alert, market, snapshot) -> Decision:
        threshold = alert.indicator.bollinger.expansion_threshold
        observed = self._bb_observed(market, snapshot)
        observed["threshold"] = threshold
        if not snapshot.bollinger.ready:
            return Decision(False, observed, INSUFFICIENT_HISTORY)
        return Decision(snapshot.bollinger.bandwidth > threshold, observed)

    def _bb_middle_cross(self, alert, market, snapshot) -> Decision:
        bb = snapshot.bollinger
        observed = self._bb_observed(market, snapshot)
        if not bb.ready or bb.previous_middle is None or snapshot.previous_close is None:
            return Decision(False, observed, INSUFFICIENT_HISTORY)

        previous_close = snapshot.previous_close
        observed["previous_close"] = previous_close
        crossed = _crossed_up(previous_close, bb.previous_middle, market.price, bb.middle) or (
            _crossed_down(previous_close, bb.previous_middle, market.price, bb.middle)
        )
        return Decision(crossed, observed)

    def _bb_bandwidth_alert(self, alert, market, snapshot) -> Decision:
        config = alert.indicator.bollinger
        threshold = (
            config.bandwidth_threshold
            if config.bandwidth_threshold is not None
            else config.expansion_threshold
        )
        bb = snapshot.bollinger
        observed = self._bb_observed(market, snapshot)
        observed["threshold"] = threshold
        if not bb.ready or bb.previous_bandwidth is None:
            return Decision(False, observed, INSUFFICIENT_HISTORY)

        observed["previous_bandwidth"] = bb.previous_bandwidth
        was_above = bb.previous_bandwidth >= threshold
        is_above = bb.bandwidth >= threshold
        return Decision(was_above != is_above, observed)

    # Williams %R

    def _williams_decision(self, market, snapshot, level: float, above: bool) -> Decision:
        williams = snapshot.williams_r
        observed = {"price": market.price, "williams_r": williams.value, "level": level}
        if not williams.ready:
            return Decision(False, observed, INSUFFICIENT_HISTORY)
        triggered = williams.value >= level if above else williams.value <= level
        return Decision(triggered, observed)

    def _williams_overbought(self, alert, market, snapshot) -> Decision:
        level = alert.indicator.williams_r.overbought_level
        return self._williams_decision(market, snapshot, level, above=True)

    def _williams_oversold(self, alert, market, snapshot) -> Decision:
        level = alert.indicator.williams_r.oversold_level
        return self._williams_decision(market, snapshot, level, above=False)

    def _williams_above(self, alert, market, snapshot) -> Decision:
        config = alert.indicator.williams_r
        level = config.threshold if config.threshold is not None else config.overbought_level
        return self._williams_decision(market, snapshot, level, above=True)

    def _williams_below(self, alert, market, snapshot) -> Decision:
        config = alert.indicator.williams_r
        level = config.threshold if config.threshold is not None else config.oversold_level
        return self._williams_decision(market, snapshot, level, above=False)
