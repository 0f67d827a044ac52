("""Tests for indicators module: RSI, EMA/MACD, Bollinger, SMA, volatility.

We focus on the bounds and short-input fallbacks the UI relies on, plus a few
hand-computed values. Using pytest function tests for simplicity.
""")

from collections import deque
import math

import pytest

from indicators import (
	build_snapshot,
	calculate_bollinger_bands,
	calculate_ema,
	calculate_macd,
	calculate_macd_full,
	calculate_rsi,
	calculate_sma,
	calculate_volatility,
	classify_trend,
	ema_series,
)


def test_rsi_flat_data_returns_100():
	# Zero average loss reads as 100, even with no gains.
	prices = deque([10.0] * 30)
	assert calculate_rsi(prices, period=14) == 100.0


def test_rsi_insufficient_data_returns_50():
	prices = deque([10.0 + i for i in range(10)])  # fewer than period+1
	assert calculate_rsi(prices, period=14) == 50.0
	assert calculate_rsi([100.0], 14) == 50.0


def test_rsi_rising_trend_is_100():
	prices = [float(i) for i in range(1, 40)]
	assert calculate_rsi(prices, period=14) == 100.0


def test_rsi_falling_trend_is_0():
	prices = [float(i) for i in range(40, 1, -1)]
	assert calculate_rsi(prices, period=14) == 0.0


def test_rsi_uses_only_last_period_deltas():
	period = 14
	prices = [
		44.0, 44.0, 45.0, 43.0, 44.0, 45.0, 44.0, 46.0, 45.0, 47.0, 46.0, 46.0, 47.0, 46.0, 48.0
	]  # length = 15 -> period+1
	# A large early move outside the window must not matter.
	rsi_val = calculate_rsi([10.0, 90.0] + prices, period=period)

	deltas = [prices[i] - prices[i - 1] for i in range(1, len(prices))]
	avg_gain = sum(max(d, 0.0) for d in deltas) / period
	avg_loss = sum(max(-d, 0.0) for d in deltas) / period
	expected = 100.0 - 100.0 / (1.0 + avg_gain / avg_loss)

	assert math.isclose(rsi_val, expected, rel_tol=1e-9, abs_tol=1e-9)


def test_rsi_stays_in_bounds_for_noisy_series():
	prices = [100 + ((i * 37) % 11) - 5 for i in range(60)]
	for end in range(1, len(prices) + 1):
		assert 0.0 <= calculate_rsi(prices[:end]) <= 100.0


def test_ema_seeded_with_first_price():
	assert calculate_ema([], 12) == 0.0
	assert calculate_ema([42.0], 12) == 42.0
	# k = 2/3 for period 2
	series = ema_series([1.0, 4.0], 2)
	assert series == [1.0, pytest.approx(3.0)]


def test_macd_zero_below_26_prices():
	prices = [100.0 + i for i in range(25)]
	assert calculate_macd(prices) == 0.0
	assert calculate_macd_full(prices) == (0.0, 0.0, 0.0)


def test_macd_positive_in_uptrend():
	prices = [100.0 + i for i in range(60)]
	macd, signal, histogram = calculate_macd_full(prices)
	assert macd > 0
	assert macd == pytest.approx(calculate_ema(prices, 12) - calculate_ema(prices, 26))
	assert histogram == pytest.approx(macd - signal)


def test_bollinger_ordering_and_values():
	prices = [float(p) for p in range(1, 21)]
	bands = calculate_bollinger_bands(prices, period=20)
	mean = sum(prices) / 20
	std = math.sqrt(sum((p - mean) ** 2 for p in prices) / 20)
	assert bands.middle == pytest.approx(mean)
	assert bands.upper == pytest.approx(mean + 2 * std)
	assert bands.lower == pytest.approx(mean - 2 * std)
	assert bands.lower <= bands.middle <= bands.upper


def test_bollinger_short_series_falls_back_to_two_percent():
	bands = calculate_bollinger_bands([100.0, 102.0], period=20)
	assert bands.middle == pytest.approx(101.0)
	assert bands.upper == pytest.approx(101.0 * 1.02)
	assert bands.lower == pytest.approx(101.0 * 0.98)
	empty = calculate_bollinger_bands([])
	assert empty.lower == empty.middle == empty.upper == 0.0


def test_volatility_of_constant_series_is_zero():
	assert calculate_volatility([5.0] * 10) == 0.0
	assert calculate_volatility([5.0]) == 0.0


def test_volatility_alternating_returns():
	# returns: +10%, -10%/1.1 ... compute directly
	prices = [100.0, 110.0, 99.0]
	r = [0.1, (99.0 - 110.0) / 110.0]
	mean = sum(r) / 2
	expected = math.sqrt(sum((x - mean) ** 2 for x in r) / 2) * 100
	assert calculate_volatility(prices) == pytest.approx(expected)


def test_sma_basic():
	prices = deque([1, 2, 3, 4, 5])
	assert calculate_sma(prices, period=5) == 3.0
	# Insufficient data returns last price
	assert calculate_sma(prices, period=10) == 5.0
	assert calculate_sma([], period=3) == 0.0


def test_classify_trend():
	assert classify_trend([float(i) for i in range(60)]) == "up"
	assert classify_trend([float(i) for i in range(60, 0, -1)]) == "down"
	assert classify_trend([3.0] * 60) == "sideways"


def test_build_snapshot_on_short_and_long_series():
	short = build_snapshot([100.0])
	assert short.rsi == 50.0
	assert short.macd == 0.0
	assert short.volume_sma == 0.0

	closes = [100.0 + math.sin(i / 3.0) * 5 for i in range(80)]
	volumes = [1e6 + i for i in range(80)]
	snap = build_snapshot(closes, volumes)
	assert 0.0 <= snap.rsi <= 100.0
	assert snap.bollinger.lower <= snap.bollinger.middle <= snap.bollinger.upper
	assert snap.volume_sma == pytest.approx(sum(volumes[-20:]) / 20)
	assert snap.histogram == pytest.approx(snap.macd - snap.signal)
