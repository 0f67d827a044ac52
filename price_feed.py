# src/price_feed.py
# Simulated price table for the paper ledger.
# Usage example:
#   import asyncio
#   from price_feed import SimulatedPriceTable, price_stream
#   async def main():
#       table = SimulatedPriceTable({"BTCUSDT": 43250.0})
#       async for ticks in price_stream(table, interval_s=1.0):
#           print(ticks)
#   asyncio.run(main())

import asyncio
import random
import threading
import time
from typing import AsyncIterator, Dict, List, Optional

from models import Tick


class SimulatedPriceTable:
    """Symbol -> last price, advanced by an independent uniform jitter per tick.

    Prices follow a pure random walk; nothing here is derived from a real feed.
    Only ``tick`` writes; everything else is a read.
    """

    def __init__(self, base_prices: Dict[str, float], jitter: float = 0.0005,
                 rng: Optional[random.Random] = None):
        if jitter < 0:
            raise ValueError("jitter must be >= 0")
        self.jitter = jitter
        self._rng = rng or random.Random()
        self._prices: Dict[str, float] = {s.upper(): float(p) for s, p in base_prices.items()}
        self._lock = threading.Lock()
        self.last_update = time.time()

    @property
    def symbols(self) -> List[str]:
        with self._lock:
            return list(self._prices)

    def __contains__(self, symbol: str) -> bool:
        with self._lock:
            return symbol.upper() in self._prices

    def __len__(self) -> int:
        with self._lock:
            return len(self._prices)

    def get(self, symbol: str) -> Optional[float]:
        with self._lock:
            return self._prices.get(symbol.upper())

    def set(self, symbol: str, price: float) -> None:
        if price <= 0:
            raise ValueError("price must be > 0")
        with self._lock:
            self._prices[symbol.upper()] = float(price)

    def snapshot(self) -> Dict[str, float]:
        with self._lock:
            return dict(self._prices)

    def tick(self) -> List[Tick]:
        """Move every symbol by a uniform draw in [-jitter, +jitter] (relative)."""
        now = time.time()
        ticks: List[Tick] = []
        with self._lock:
            for sym, price in self._prices.items():
                change = (self._rng.random() - 0.5) * 2.0 * self.jitter
                new_price = price * (1.0 + change)
                self._prices[sym] = new_price
                ticks.append(Tick(symbol=sym, ts=now, price=new_price))
            self.last_update = now
        return ticks


async def price_stream(table: SimulatedPriceTable,
                       interval_s: float = 5.0) -> AsyncIterator[List[Tick]]:
    """Advance ``table`` every ``interval_s`` seconds and yield the new ticks."""
    while True:
        await asyncio.sleep(max(0.0, interval_s))
        yield table.tick()
