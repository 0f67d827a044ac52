# src/bot.py
"""Paper-trading bot: periodic market analysis plus periodic trade decisions.

The bot owns two asyncio tasks. One samples the simulated price for its symbol
and refreshes a ``MarketAnalysis`` every ``analysis_interval`` seconds; the other
acts on the latest analysis every ``trading_interval`` seconds. ``stop()`` cancels
both. Order placement itself is synchronous, so a cancelled bot never leaves an
order half-applied.
"""

import asyncio
import logging
import time
from collections import deque
from typing import Callable, List, Optional

from config import Settings
from errors import LedgerError
from ledger import AccountStore
from market_analysis import analyze_market
from models import BotStatus, MarketAnalysis, Order
from price_feed import SimulatedPriceTable

logger = logging.getLogger(__name__)


class TradingBot:
    def __init__(
        self,
        store: AccountStore,
        prices: SimulatedPriceTable,
        user_id: str = "demo_user",
        symbol: str = "BTCUSDT",
        settings: Optional[Settings] = None,
    ):
        self.store = store
        self.prices = prices
        self.user_id = user_id
        self.symbol = symbol.upper()
        self.settings = settings or Settings()

        self.history: deque[float] = deque(maxlen=self.settings.bot_history_size)
        self.logs: deque[str] = deque(maxlen=100)
        self.last_analysis: Optional[MarketAnalysis] = None
        self._tasks: List[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    def log(self, message: str) -> None:
        stamp = time.strftime("%Y-%m-%d %H:%M:%S")
        self.logs.appendleft(f"[{stamp}] {message}")
        logger.info("bot[%s/%s] %s", self.user_id, self.symbol, message)

    def seed_history(self, closes) -> None:
        self.history.extend(float(p) for p in closes)

    def sample_price(self) -> Optional[float]:
        price = self.prices.get(self.symbol)
        if price is not None:
            self.history.append(price)
        return price

    # --- One step of each loop ---

    def analyze(self) -> Optional[MarketAnalysis]:
        self.sample_price()
        if not self.history:
            self.log(f"No price available for {self.symbol}")
            return None

        first, last = self.history[0], self.history[-1]
        change = (last - first) / first * 100.0 if first else 0.0
        analysis = analyze_market(list(self.history), price_change_24h=change)
        self.last_analysis = analysis
        self.log(
            f"Analysis {self.symbol} price {analysis.price:.2f}, "
            f"signal {analysis.signal.upper()}, confidence {analysis.confidence}%"
        )
        return analysis

    def decide(self) -> Optional[Order]:
        analysis = self.last_analysis
        if analysis is None:
            self.log("Waiting for market analysis...")
            return None

        if analysis.confidence < self.settings.bot_min_confidence:
            self.log(f"Confidence too low ({analysis.confidence}%), holding off")
            return None

        if analysis.signal == "buy":
            return self._buy(analysis)
        if analysis.signal == "sell":
            return self._sell()

        self.log(f"Hold: no trade (trend {analysis.trend}, confidence {analysis.confidence}%)")
        return None

    def _buy(self, analysis: MarketAnalysis) -> Optional[Order]:
        account = self.store.refresh(self.user_id)
        max_size = self.settings.bot_max_position_size
        if account.free_margin < max_size:
            self.log("Free margin below max position size, skipping buy signal")
            return None

        price = self.prices.get(self.symbol) or analysis.price
        if price <= 0:
            self.log(f"No usable price for {self.symbol}, skipping buy signal")
            return None

        spend = min(max_size, account.free_margin * 0.1)
        order = self.store.place_market_order(self.user_id, self.symbol, "buy", spend / price)
        self.log(f"BUY {order.amount:.6f} {self.symbol} @ {order.price:.2f} -> {order.status}")
        return order

    def _sell(self) -> Optional[Order]:
        position = self.store.oldest_long(self.user_id, self.symbol)
        if position is None:
            self.log(f"Sell signal but no open long on {self.symbol}")
            return None
        order = self.store.place_market_order(self.user_id, self.symbol, "sell", position.size)
        self.log(f"SELL {order.amount:.6f} {self.symbol} @ {order.price:.2f} -> {order.status}")
        return order

    # --- Scheduling ---

    async def _every(self, interval: float, step: Callable[[], object]) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                step()
            except LedgerError as exc:
                self.log(f"Ledger refused the trade: {exc}")

    def start(self) -> None:
        if self.running:
            return
        self.log("Trading bot started (simulation)")
        self.analyze()
        self._tasks = [
            asyncio.create_task(self._every(self.settings.bot_analysis_interval_seconds, self.analyze)),
            asyncio.create_task(self._every(self.settings.bot_trading_interval_seconds, self.decide)),
        ]

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            self.log("Trading bot stopped")

    def status(self) -> BotStatus:
        return BotStatus(
            running=self.running,
            user_id=self.user_id,
            symbol=self.symbol,
            last_analysis=self.last_analysis,
            logs=list(self.logs)[:20],
        )
