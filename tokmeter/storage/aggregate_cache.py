"""
TTL cache for all-time usage aggregates.
"""

import logging
import threading
import time
from typing import Callable, Optional

from tokmeter.core.token_counter import UsageTotals

logger = logging.getLogger(__name__)

AGGREGATE_TTL_SECONDS = 5 * 60


class AggregateCache:
    """Holds the last computed totals of one source and cost mode.

    The computation runs outside the lock, so two callers missing at the
    same time may both compute; the later write wins with an equivalent
    result. Exceptions from the computation propagate and leave the cache
    untouched.
    """

    def __init__(
        self,
        name: str,
        ttl_seconds: float = AGGREGATE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._lock = threading.Lock()
        self._computed_at: Optional[float] = None
        self._totals: Optional[UsageTotals] = None

    def get_or_compute(self, compute: Callable[[], UsageTotals]) -> UsageTotals:
        with self._lock:
            if self._computed_at is not None and self._totals is not None:
                if self.clock() - self._computed_at < self.ttl_seconds:
                    logger.debug("Aggregate cache hit: %s", self.name)
                    return UsageTotals(self._totals.total_tokens, self._totals.cost_usd)

        logger.debug("Aggregate cache miss: %s", self.name)
        totals = compute()

        with self._lock:
            self._computed_at = self.clock()
            self._totals = UsageTotals(totals.total_tokens, totals.cost_usd)
        return totals

    def invalidate(self) -> None:
        with self._lock:
            self._computed_at = None
            self._totals = None
