# src/market_analysis.py
"""Bar-level market analysis and the caller-side fallback for predictions.

``analyze_market`` reads a close series the way the trading bot does: RSI and
MACD, a touch of the Bollinger envelope, the 24h change, volume, and the
distance to support/resistance taken from the last 24 bars. It returns a
``MarketAnalysis`` with a trend read, a buy/sell/hold signal and a confidence.

``build_prediction_input`` turns a (possibly empty) series into a
``PredictionInput``, substituting neutral values for anything that cannot be
computed, so the scorer is never called with missing data.
"""

from __future__ import annotations

from typing import Optional, Sequence

from indicators import (
    calculate_bollinger_bands,
    calculate_macd,
    calculate_rsi,
    calculate_volatility,
    classify_trend,
)
from models import MarketAnalysis, PredictionInput

NEUTRAL_VOLUME = 1e9


def support_resistance(closes: Sequence[float], lookback: int = 24) -> tuple:
    recent = list(closes)[-lookback:]
    if not recent:
        return 0.0, 0.0
    return min(recent) * 0.98, max(recent) * 1.02


def analyze_market(
    closes: Sequence[float],
    price_change_24h: float = 0.0,
    volume_24h: float = 0.0,
    current_price: Optional[float] = None,
) -> MarketAnalysis:
    closes = [float(p) for p in closes]
    price = current_price if current_price is not None else (closes[-1] if closes else 0.0)

    rsi = calculate_rsi(closes)
    macd = calculate_macd(closes)
    bollinger = calculate_bollinger_bands(closes)
    support, resistance = support_resistance(closes)
    volatility = calculate_volatility(closes)

    bullish = 0
    bearish = 0
    confidence = 0.0

    if rsi < 30:
        bullish += 2
        confidence += 15
    elif rsi > 70:
        bearish += 2
        confidence += 15

    if macd > 0:
        bullish += 1
    else:
        bearish += 1
    confidence += 10

    has_history = bool(closes)

    if has_history and price <= bollinger.lower:
        bullish += 2
        confidence += 20
    elif has_history and price >= bollinger.upper:
        bearish += 2
        confidence += 20

    if price_change_24h > 5:
        bullish += 1
        confidence += 10
    elif price_change_24h < -5:
        bearish += 1
        confidence += 10

    if volume_24h > 1e9:
        confidence += 15

    if has_history and price <= support * 1.01:
        bullish += 1
        confidence += 10
    elif has_history and price >= resistance * 0.99:
        bearish += 1
        confidence += 10

    if volatility > 10:
        confidence *= 0.8

    if bullish > bearish + 1:
        trend = "bullish"
        signal = "buy" if confidence > 60 else "hold"
    elif bearish > bullish + 1:
        trend = "bearish"
        signal = "sell" if confidence > 60 else "hold"
    else:
        trend = "neutral"
        signal = "hold"

    return MarketAnalysis(
        price=price,
        price_change_24h=price_change_24h,
        volume_24h=volume_24h,
        volatility=volatility,
        rsi=rsi,
        macd=macd,
        bollinger=bollinger,
        support=support,
        resistance=resistance,
        trend=trend,
        signal=signal,
        confidence=int(round(min(95.0, max(30.0, confidence)))),
    )


def build_prediction_input(
    symbol: str,
    timeframe: str = "1h",
    closes: Optional[Sequence[float]] = None,
    volumes: Optional[Sequence[float]] = None,
    price_change_24h: Optional[float] = None,
    sentiment: str = "neutral",
) -> PredictionInput:
    closes = [float(p) for p in (closes or [])]
    volume = float(volumes[-1]) if volumes else NEUTRAL_VOLUME

    if price_change_24h is not None:
        if price_change_24h > 2:
            trend = "up"
        elif price_change_24h < -2:
            trend = "down"
        else:
            trend = "sideways"
    elif len(closes) >= 2:
        trend = classify_trend(closes)
    else:
        trend = "sideways"

    return PredictionInput(
        symbol=symbol,
        timeframe=timeframe,
        rsi=calculate_rsi(closes),
        macd=calculate_macd(closes),
        volume=max(volume, 0.0),
        trend=trend,
        sentiment=sentiment,
        price_history=closes[-50:],
    )


# --- Position sizing / risk helpers ---

def calculate_position_size(account_balance: float, risk_percent: float,
                            entry_price: float, stop_loss: float) -> float:
    """Units to buy so that hitting ``stop_loss`` loses ``risk_percent`` of the balance."""
    price_risk = abs(entry_price - stop_loss)
    if price_risk == 0:
        return 0.0
    return account_balance * (risk_percent / 100.0) / price_risk


def calculate_stop_levels(entry_price: float, side: str, stop_loss_percent: float,
                          take_profit_percent: float) -> dict:
    if side == "long":
        return {
            "stop_loss": entry_price * (1 - stop_loss_percent / 100.0),
            "take_profit": entry_price * (1 + take_profit_percent / 100.0),
        }
    return {
        "stop_loss": entry_price * (1 + stop_loss_percent / 100.0),
        "take_profit": entry_price * (1 - take_profit_percent / 100.0),
    }


def assess_risk(account_equity: float, position_value: float, leverage: float = 1.0) -> str:
    if account_equity <= 0:
        return "high"
    ratio = position_value * leverage / account_equity
    if ratio < 0.02:
        return "low"
    if ratio < 0.05:
        return "medium"
    return "high"
