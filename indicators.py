"""Technical indicators over chronological price sequences.

This module provides RSI, EMA/MACD, Bollinger Bands, SMA and volatility
calculations that accept any ``Sequence[float]`` of closes (a ``list`` or a
``collections.deque``), oldest first. Every function is pure and never raises on
short input: when there is not enough history it returns a neutral or estimated
value instead, so a caller can always render something.

Notes on the conventions used here:
- RSI uses the simple average of the last ``period`` gains/losses (no Wilder
  smoothing) and reads 100 whenever the average loss is zero.
- EMA is seeded with the first price of the series rather than an SMA.
- Bollinger Bands use the population standard deviation.
"""

import math
from typing import List, Optional, Sequence, Tuple

from models import BollingerBands, IndicatorSnapshot


def calculate_sma(prices: Sequence[float], period: int) -> float:
    """Compute the Simple Moving Average (SMA) of the last ``period`` prices.

    Contract:
    - Input: prices oldest first, ``period`` > 0
    - Output: float SMA for the trailing window
    - Edge cases: If there aren't enough prices, return a neutral value: the last
      observed price if available, else 0.0. This avoids biasing signals toward 0.
    """
    if period <= 0:
        raise ValueError("period must be > 0")

    n = len(prices)
    if n == 0:
        return 0.0
    if n < period:
        # Not enough data: return the most recent price as a neutral proxy.
        return float(prices[-1])

    start_index = n - period
    total = 0.0
    for i, p in enumerate(prices):
        if i >= start_index:
            total += float(p)
    return total / period


def calculate_rsi(prices: Sequence[float], period: int = 14) -> float:
    """Compute the Relative Strength Index (RSI) over the last ``period`` deltas.

    - avg_gain / avg_loss are plain means of the gains and losses of the last
      ``period`` deltas; RS = avg_gain / avg_loss, RSI = 100 - 100 / (1 + RS).
    - Returns 100.0 when the average loss is zero (flat or strictly rising).
    - Returns 50.0 if insufficient data (fewer than ``period+1`` prices).
    - Result is clipped to [0, 100].
    """
    if period <= 0:
        raise ValueError("period must be > 0")

    if len(prices) < period + 1:
        return 50.0  # Neutral when data is insufficient

    closes = [float(x) for x in prices]
    window = closes[-(period + 1):]

    gains = 0.0
    losses = 0.0
    for i in range(1, len(window)):
        change = window[i] - window[i - 1]
        if change > 0:
            gains += change
        else:
            losses -= change

    avg_gain = gains / period
    avg_loss = losses / period

    if avg_loss == 0.0:
        return 100.0

    rs = avg_gain / avg_loss
    rsi = 100.0 - 100.0 / (1.0 + rs)

    # Bound the value strictly to [0, 100]
    if rsi < 0.0:
        rsi = 0.0
    elif rsi > 100.0:
        rsi = 100.0
    return rsi


def ema_series(prices: Sequence[float], period: int) -> List[float]:
    """Every intermediate EMA value, seeded with the first price (k = 2/(period+1))."""
    if period <= 0:
        raise ValueError("period must be > 0")
    if len(prices) == 0:
        return []

    k = 2.0 / (period + 1.0)
    out: List[float] = []
    ema = float(prices[0])
    out.append(ema)
    for i in range(1, len(prices)):
        ema = float(prices[i]) * k + ema * (1.0 - k)
        out.append(ema)
    return out


def calculate_ema(prices: Sequence[float], period: int) -> float:
    """Latest EMA value; 0.0 for an empty series, the price itself for one sample."""
    series = ema_series(prices, period)
    return series[-1] if series else 0.0


def calculate_macd(prices: Sequence[float]) -> float:
    """MACD line, EMA(12) - EMA(26). Exactly 0.0 with fewer than 26 prices."""
    if len(prices) < 26:
        return 0.0
    return calculate_ema(prices, 12) - calculate_ema(prices, 26)


def calculate_macd_full(prices: Sequence[float], signal_period: int = 9) -> Tuple[float, float, float]:
    """Return ``(macd, signal, histogram)``.

    The signal line is the EMA of the MACD line taken from the first bar where
    both EMAs have 26 samples behind them. Short series return zeros.
    """
    n = len(prices)
    if n < 26:
        return 0.0, 0.0, 0.0

    fast = ema_series(prices, 12)
    slow = ema_series(prices, 26)
    macd_line = [fast[i] - slow[i] for i in range(25, n)]
    signal = calculate_ema(macd_line, signal_period)
    macd = macd_line[-1]
    return macd, signal, macd - signal


def calculate_bollinger_bands(
    prices: Sequence[float],
    period: int = 20,
    std_dev_multiplier: float = 2.0,
) -> BollingerBands:
    """SMA of the last ``period`` closes +/- ``std_dev_multiplier`` population std devs.

    With fewer than ``period`` prices the bands fall back to the mean of whatever
    is available +/- 2%. An empty series yields all-zero bands.
    """
    if period <= 0:
        raise ValueError("period must be > 0")

    n = len(prices)
    if n == 0:
        return BollingerBands(upper=0.0, middle=0.0, lower=0.0)

    if n < period:
        avg = sum(float(p) for p in prices) / n
        spread = abs(avg) * 0.02
        return BollingerBands(upper=avg + spread, middle=avg, lower=avg - spread)

    window = [float(p) for p in list(prices)[-period:]]
    sma = sum(window) / period
    variance = sum((p - sma) ** 2 for p in window) / period
    std_dev = math.sqrt(variance)
    width = abs(std_dev_multiplier) * std_dev
    return BollingerBands(upper=sma + width, middle=sma, lower=sma - width)


def calculate_volatility(prices: Sequence[float]) -> float:
    """Population std dev of simple returns, as a percentage. 0.0 below two prices."""
    if len(prices) < 2:
        return 0.0

    closes = [float(p) for p in prices]
    returns = [
        (closes[i] - closes[i - 1]) / closes[i - 1]
        for i in range(1, len(closes))
        if closes[i - 1] != 0.0
    ]
    if not returns:
        return 0.0

    mean = sum(returns) / len(returns)
    variance = sum((r - mean) ** 2 for r in returns) / len(returns)
    return math.sqrt(variance) * 100.0


def build_snapshot(
    closes: Sequence[float],
    volumes: Optional[Sequence[float]] = None,
    short_period: int = 20,
    long_period: int = 50,
) -> IndicatorSnapshot:
    """Assemble every indicator for the current bar of ``closes``."""
    closes = list(closes)
    macd, signal, histogram = calculate_macd_full(closes)
    volume_sma = calculate_sma(volumes, short_period) if volumes else 0.0
    return IndicatorSnapshot(
        rsi=calculate_rsi(closes, period=14),
        macd=macd,
        signal=signal,
        histogram=histogram,
        sma_short=calculate_sma(closes, short_period),
        sma_long=calculate_sma(closes, long_period),
        ema_short=calculate_ema(closes, 12),
        ema_long=calculate_ema(closes, 26),
        bollinger=calculate_bollinger_bands(closes),
        volume_sma=volume_sma,
        volatility=calculate_volatility(closes),
    )


def classify_trend(closes: Sequence[float], short_period: int = 20, long_period: int = 50) -> str:
    """MA(short/long) crossover read as "up" | "down" | "sideways"."""
    ma_short = calculate_sma(closes, period=short_period)
    ma_long = calculate_sma(closes, period=long_period)

    if ma_short > ma_long:
        return "up"
    if ma_short < ma_long:
        return "down"
    return "sideways"
