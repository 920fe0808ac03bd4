"""Tests for the technical indicator series functions."""

import math

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from vigil.indicators.technical import (
    calculate_bollinger_bands,
    calculate_ema,
    calculate_macd,
    calculate_rate_of_change,
    calculate_rsi,
    calculate_sma,
    calculate_volatility,
    calculate_williams_r,
    is_valid,
    last_valid,
)


@st.composite
def price_series(draw, min_length: int = 2, max_length: int = 120):
    """Positive price series with realistic step changes."""
    length = draw(st.integers(min_value=min_length, max_value=max_length))
    base_price = draw(st.floats(min_value=0.01, max_value=100_000.0))
    changes = draw(
        st.lists(
            st.floats(min_value=-0.2, max_value=0.2),
            min_size=length - 1,
            max_size=length - 1,
        )
    )

    prices = [base_price]
    for change in changes:
        prices.append(max(0.0001, prices[-1] * (1 + change)))
    return prices


class TestRSIBounds:
    """RSI always stays within [0, 100]."""

    @given(prices=price_series(), period=st.integers(min_value=1, max_value=30))
    @settings(max_examples=200, deadline=None)
    def test_rsi_within_bounds(self, prices, period):
        for value in calculate_rsi(prices, period):
            if is_valid(value):
                assert 0 <= value <= 100

    def test_rsi_is_100_without_losses(self):
        prices = [float(p) for p in range(1, 20)]
        assert calculate_rsi(prices, 14)[-1] == 100.0

    def test_rsi_is_0_without_gains(self):
        prices = [float(p) for p in range(20, 1, -1)]
        assert calculate_rsi(prices, 14)[-1] == 0.0

    def test_rsi_warm_up_is_nan(self):
        series = calculate_rsi([1.0, 2.0, 3.0, 2.0, 4.0], period=3)
        assert all(math.isnan(v) for v in series[:3])
        assert is_valid(series[3])

    def test_rsi_short_window_is_all_nan(self):
        assert all(math.isnan(v) for v in calculate_rsi([1.0, 2.0], period=14))

    def test_rsi_wilder_smoothing(self):
        # Changes: +1, -1, +2, then +1
        prices = [10.0, 11.0, 10.0, 12.0, 13.0]
        series = calculate_rsi(prices, period=3)

        # Seed: avg gain 1.0, avg loss 1/3
        assert series[3] == pytest.approx(100 - 100 / (1 + 1.0 / (1 / 3)))
        # Smoothed: gain (1.0*2 + 1)/3 = 1.0, loss (1/3*2 + 0)/3 = 2/9
        assert series[4] == pytest.approx(100 - 100 / (1 + 1.0 / (2 / 9)))


class TestBollingerOrdering:
    """Lower band <= middle band <= upper band."""

    @given(prices=price_series(min_length=20), multiplier=st.floats(min_value=0.1, max_value=4.0))
    @settings(max_examples=200, deadline=None)
    def test_band_ordering(self, prices, multiplier):
        upper, middle, lower = calculate_bollinger_bands(prices, 20, multiplier)
        for u, m, l in zip(upper, middle, lower):
            if is_valid(m):
                assert l <= m <= u

    def test_flat_window_collapses_bands(self):
        upper, middle, lower = calculate_bollinger_bands([5.0] * 20, 20, 2.0)
        assert upper[-1] == middle[-1] == lower[-1] == 5.0

    def test_population_standard_deviation(self):
        upper, middle, lower = calculate_bollinger_bands([1.0, 3.0], 2, 1.0)
        assert middle[-1] == 2.0
        assert upper[-1] == pytest.approx(3.0)
        assert lower[-1] == pytest.approx(1.0)


class TestMovingAverages:
    def test_sma(self):
        series = calculate_sma([1.0, 2.0, 3.0, 4.0, 5.0], 3)
        assert all(math.isnan(v) for v in series[:2])
        assert series[2:] == [2.0, 3.0, 4.0]

    def test_ema_seeded_with_simple_average(self):
        series = calculate_ema([2.0, 4.0, 6.0, 8.0, 20.0], 3)
        # Seed 4.0, then k = 0.5
        assert series[2] == 4.0
        assert series[3] == 6.0
        assert series[4] == 13.0

    def test_short_window_is_all_nan(self):
        assert all(math.isnan(v) for v in calculate_sma([1.0, 2.0], 5))
        assert all(math.isnan(v) for v in calculate_ema([1.0, 2.0], 5))


class TestMACD:
    def test_lines_relationship(self):
        prices = [100 + math.sin(i / 3) * 5 for i in range(60)]
        macd_line, signal_line, histogram = calculate_macd(prices, 12, 26, 9)

        for m, s, h in zip(macd_line, signal_line, histogram):
            if is_valid(h):
                assert h == pytest.approx(m - s)
        assert is_valid(histogram[-1])
        assert is_valid(histogram[-2])

    def test_signal_warm_up(self):
        prices = [float(i) for i in range(30)]
        macd_line, signal_line, histogram = calculate_macd(prices, 12, 26, 9)
        assert is_valid(macd_line[-1])
        assert not is_valid(signal_line[-1])
        assert not is_valid(histogram[-1])

    def test_short_window(self):
        macd_line, signal_line, histogram = calculate_macd([1.0] * 10, 12, 26, 9)
        assert not any(is_valid(v) for v in macd_line + signal_line + histogram)


class TestWilliamsR:
    def test_value(self):
        highs = [10.0, 12.0, 11.0]
        lows = [8.0, 9.0, 7.0]
        closes = [9.0, 11.0, 10.0]
        assert calculate_williams_r(highs, lows, closes, 3)[-1] == pytest.approx(-40.0)

    def test_flat_window_is_midpoint(self):
        flat = [5.0] * 14
        assert calculate_williams_r(flat, flat, flat, 14)[-1] == -50.0

    @given(prices=price_series(min_length=14))
    @settings(max_examples=100, deadline=None)
    def test_bounds(self, prices):
        highs = [p * 1.01 for p in prices]
        lows = [p * 0.99 for p in prices]
        for value in calculate_williams_r(highs, lows, prices, 14):
            if is_valid(value):
                assert -100 <= value <= 0


class TestHelpers:
    def test_last_valid(self):
        series = [float("nan"), 1.0, 2.0]
        assert last_valid(series) == 2.0
        assert last_valid(series, 1) == 1.0
        assert last_valid(series, 2) is None
        assert last_valid(series, 5) is None

    def test_rate_of_change(self):
        assert calculate_rate_of_change([100.0, 110.0, 121.0], 1)[1:] == pytest.approx([10.0, 10.0])

    def test_volatility(self):
        assert calculate_volatility([100.0, 100.0, 100.0], 20) == 0.0
        assert calculate_volatility([100.0], 20) is None
