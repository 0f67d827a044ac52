"""Market analysis, fallback prediction inputs and risk helpers."""

import pytest

from market_analysis import (
    analyze_market,
    assess_risk,
    build_prediction_input,
    calculate_position_size,
    calculate_stop_levels,
    support_resistance,
)


def test_support_resistance_from_last_24_bars():
    closes = [1000.0] + [float(100 + i) for i in range(24)]
    support, resistance = support_resistance(closes)
    assert support == pytest.approx(100 * 0.98)
    assert resistance == pytest.approx(123 * 1.02)


def test_oversold_crash_reads_bullish():
    # Steady fall then a sharp drop below the lower band.
    closes = [100.0 - i * 0.5 for i in range(40)] + [70.0]
    analysis = analyze_market(closes, price_change_24h=-6.0, volume_24h=2e9)
    assert analysis.rsi < 30
    assert analysis.price <= analysis.bollinger.lower
    assert analysis.trend == "bullish"
    assert analysis.signal == "buy"
    assert 30 <= analysis.confidence <= 95


def test_overbought_spike_reads_bearish():
    closes = [100.0 + i * 0.5 for i in range(40)] + [130.0]
    analysis = analyze_market(closes, price_change_24h=8.0, volume_24h=2e9)
    assert analysis.rsi > 70
    assert analysis.trend == "bearish"
    assert analysis.signal == "sell"


def test_flat_market_holds():
    # Zero spread pins price on both bands; RSI reads 100 with no losses.
    analysis = analyze_market([100.0] * 30)
    assert analysis.rsi == 100.0
    assert analysis.trend == "neutral"
    assert analysis.signal == "hold"
    assert analysis.confidence == 45


def test_empty_history_degrades_to_neutral():
    analysis = analyze_market([])
    assert analysis.price == 0.0
    assert analysis.rsi == 50.0
    assert analysis.signal == "hold"


def test_build_prediction_input_fallbacks():
    inp = build_prediction_input("BTCUSDT")
    assert inp.rsi == 50.0
    assert inp.macd == 0.0
    assert inp.volume == 1e9
    assert inp.trend == "sideways"
    assert inp.price_history == []


def test_build_prediction_input_from_series():
    closes = [float(100 + i) for i in range(80)]
    inp = build_prediction_input("ETHUSDT", "4h", closes, volumes=[5e8, 3e9], sentiment="positive")
    assert inp.trend == "up"
    assert inp.volume == 3e9
    assert inp.rsi == 100.0
    assert inp.macd > 0
    assert len(inp.price_history) == 50
    assert inp.price_history[-1] == 179.0

    down = build_prediction_input("ETHUSDT", closes=closes, price_change_24h=-3.5)
    assert down.trend == "down"


def test_position_size_and_stops():
    assert calculate_position_size(10_000, 2, 100.0, 95.0) == pytest.approx(40.0)
    assert calculate_position_size(10_000, 2, 100.0, 100.0) == 0.0

    long_levels = calculate_stop_levels(100.0, "long", 2, 4)
    assert long_levels == {"stop_loss": pytest.approx(98.0), "take_profit": pytest.approx(104.0)}
    short_levels = calculate_stop_levels(100.0, "short", 2, 4)
    assert short_levels == {"stop_loss": pytest.approx(102.0), "take_profit": pytest.approx(96.0)}


def test_assess_risk_tiers():
    assert assess_risk(10_000, 100) == "low"
    assert assess_risk(10_000, 300) == "medium"
    assert assess_risk(10_000, 600) == "high"
    assert assess_risk(0, 1) == "high"
