# src/config.py
"""Runtime settings for the paper-trading signal service.

Every value can be overridden with a ``PAPER_*`` environment variable.
Unset or unparsable variables keep the dataclass default.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Optional


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_csv(name: str, default: Optional[List[str]] = None) -> List[str]:
    raw = os.getenv(name)
    if raw is None:
        return list(default or [])
    values = [chunk.strip().upper() for chunk in raw.split(",")]
    return [value for value in values if value]


# Seed prices for the simulated feed (USDT quoted)
DEFAULT_BASE_PRICES = {
    "BTCUSDT": 43250.0,
    "ETHUSDT": 2678.0,
    "BNBUSDT": 312.0,
    "SOLUSDT": 67.0,
    "XRPUSDT": 0.62,
    "ADAUSDT": 0.35,
    "AVAXUSDT": 28.0,
    "DOGEUSDT": 0.08,
    "TRXUSDT": 0.11,
    "DOTUSDT": 6.5,
    "MATICUSDT": 0.85,
    "LTCUSDT": 75.0,
    "SHIBUSDT": 0.000012,
    "UNIUSDT": 8.5,
    "ATOMUSDT": 12.0,
    "LINKUSDT": 15.0,
}


@dataclass
class Settings:
    starting_balance: float = 10_000.0
    fee_rate: float = 0.001
    order_history_window: int = 20
    fallback_price: float = 50_000.0

    cache_ttl_seconds: float = 180.0

    price_tick_seconds: float = 5.0
    price_jitter: float = 0.0005  # +/-0.05% per tick
    symbols: List[str] = field(default_factory=lambda: list(DEFAULT_BASE_PRICES))

    bot_analysis_interval_seconds: float = 300.0
    bot_trading_interval_seconds: float = 60.0
    bot_max_position_size: float = 1000.0
    bot_min_confidence: int = 60
    bot_history_size: int = 200

    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        defaults = cls()
        return cls(
            starting_balance=_env_float("PAPER_STARTING_BALANCE", defaults.starting_balance),
            fee_rate=_env_float("PAPER_FEE_RATE", defaults.fee_rate),
            order_history_window=_env_int("PAPER_ORDER_HISTORY", defaults.order_history_window),
            fallback_price=_env_float("PAPER_FALLBACK_PRICE", defaults.fallback_price),
            cache_ttl_seconds=_env_float("PAPER_CACHE_TTL_SECONDS", defaults.cache_ttl_seconds),
            price_tick_seconds=_env_float("PAPER_PRICE_TICK_SECONDS", defaults.price_tick_seconds),
            price_jitter=_env_float("PAPER_PRICE_JITTER", defaults.price_jitter),
            symbols=_env_csv("PAPER_SYMBOLS", defaults.symbols),
            bot_analysis_interval_seconds=_env_float(
                "PAPER_BOT_ANALYSIS_SECONDS", defaults.bot_analysis_interval_seconds
            ),
            bot_trading_interval_seconds=_env_float(
                "PAPER_BOT_TRADING_SECONDS", defaults.bot_trading_interval_seconds
            ),
            bot_max_position_size=_env_float("PAPER_BOT_MAX_POSITION", defaults.bot_max_position_size),
            bot_min_confidence=_env_int("PAPER_BOT_MIN_CONFIDENCE", defaults.bot_min_confidence),
            bot_history_size=_env_int("PAPER_BOT_HISTORY", defaults.bot_history_size),
            log_level=os.getenv("PAPER_LOG_LEVEL", defaults.log_level).upper(),
        )

    def base_prices(self) -> dict:
        """Seed prices for the configured symbols; unknown symbols start at 100."""
        return {sym: DEFAULT_BASE_PRICES.get(sym, 100.0) for sym in self.symbols}
