"""Client-side rate limiting for provider API calls."""

from __future__ import annotations

import threading
import time
from typing import Callable

from .. import metrics


class RateLimiter:
    """Spaces out calls so no more than ``per_second`` start each second.

    One limiter is shared by all clients built for the same provider
    endpoint, so concurrent reconciles are throttled together.
    """

    def __init__(
        self,
        per_second: float,
        api_type: str = "provider",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._min_interval = 1.0 / per_second if per_second > 0 else 0.0
        self._api_type = api_type
        self._clock = clock
        self._sleep = sleep
        self._next_slot = 0.0
        self._lock = threading.Lock()

    def acquire(self) -> None:
        """Block until the caller may issue its request."""
        if not self._min_interval:
            return
        with self._lock:
            now = self._clock()
            wait = self._next_slot - now
            self._next_slot = max(now, self._next_slot) + self._min_interval
        if wait > 0:
            metrics.rate_limit_hits_total.labels(api_type=self._api_type).inc()
            self._sleep(wait)
