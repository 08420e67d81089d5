"""Token-bucket limiter shared by everything that spends directory quota."""

import logging
import threading
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class TokenBucket:
    """Blocking token bucket.

    With ``capacity=1`` and ``rate = 1 / interval`` consecutive ``acquire()``
    calls are at least ``interval`` seconds apart; the first call never waits.
    """

    def __init__(
        self,
        rate_per_second: Optional[float],
        capacity: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.rate = rate_per_second
        self.capacity = capacity
        self._clock = clock
        self._sleep = sleep
        self._tokens = capacity
        self._updated = clock()
        self._lock = threading.Lock()

    @classmethod
    def from_interval(cls, interval_seconds: float, **kwargs) -> "TokenBucket":
        rate = 1.0 / interval_seconds if interval_seconds > 0 else None
        return cls(rate, **kwargs)

    def _refill(self) -> None:
        now = self._clock()
        self._tokens = min(self.capacity, self._tokens + (now - self._updated) * self.rate)
        self._updated = now

    def acquire(self) -> float:
        """Take one token, sleeping until it is available. Returns the time waited."""
        if self.rate is None:
            return 0.0
        with self._lock:
            self._refill()
            waited = 0.0
            if self._tokens < 1:
                waited = (1 - self._tokens) / self.rate
                logger.debug("Throttling for %.2fs", waited)
                self._sleep(waited)
                self._tokens = 1.0
                self._updated = self._clock()
            self._tokens -= 1
            return waited
