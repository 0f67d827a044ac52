# src/prediction_cache.py
"""Time-bounded memoisation of prediction results.

One fresh entry per ``symbol|timeframe|period`` key. Eviction is lazy: a stale
entry is dropped only when that exact key is looked up again. There is no
capacity bound and no background sweep.
"""

import logging
import time
from typing import Callable, Dict, Optional, Tuple

from models import CacheStats, PredictionResult

logger = logging.getLogger(__name__)


def make_key(symbol: str, timeframe: str, period: str) -> str:
    return f"{symbol}|{timeframe}|{period}"


class PredictionCache:
    def __init__(self, ttl_seconds: float = 180.0, clock: Callable[[], float] = time.monotonic):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[PredictionResult, float]] = {}

    def get(self, key: str) -> Optional[PredictionResult]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        result, stored_at = entry
        if self._clock() - stored_at < self.ttl_seconds:
            logger.debug("cache hit %s", key)
            return result
        # Stale: evict so the caller recomputes.
        del self._entries[key]
        return None

    def put(self, key: str, result: PredictionResult) -> None:
        self._entries[key] = (result, self._clock())

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def stats(self) -> CacheStats:
        return CacheStats(
            cached_predictions=len(self._entries),
            cache_duration_minutes=self.ttl_seconds / 60.0,
        )
