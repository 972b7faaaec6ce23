from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from .context import CallContext
from .errors import RateLimitCancelled
from .interfaces import Logger

_module_logger = logging.getLogger(__name__)


class RateLimiter:
    """Token bucket shared by every call made through one client.

    Tokens refill at ``rate`` per second up to ``burst`` (defaults to ``rate``,
    never less than one token). ``acquire`` reserves a token under the lock,
    letting the balance go negative, and then sleeps outside the lock until the
    reservation matures, so callers are admitted in reservation order.
    """

    def __init__(
        self,
        rate: float,
        *,
        burst: Optional[float] = None,
        time_fn: Callable[[], float] = time.monotonic,
        sleep_fn: Optional[Callable[[float], None]] = None,
        logger: Optional[Logger] = None,
    ) -> None:
        rate = float(rate)
        if rate <= 0:
            raise ValueError(f"rate limit must be positive, got {rate}")
        self.rate = rate
        self.capacity = max(1.0, float(burst if burst is not None else rate))
        self._time = time_fn
        self._sleep = sleep_fn
        self.logger = logger or _module_logger
        self._lock = threading.Lock()
        self._tokens = self.capacity
        self._last = time_fn()

    # Internal helpers -----------------------------------------------------

    def _refill(self, now: float) -> None:
        elapsed = now - self._last
        if elapsed > 0:
            self._tokens = min(self.capacity, self._tokens + elapsed * self.rate)
            self._last = now

    def _reserve(self) -> float:
        with self._lock:
            self._refill(self._time())
            self._tokens -= 1.0
            if self._tokens >= 0:
                return 0.0
            return -self._tokens / self.rate

    def _release(self) -> None:
        with self._lock:
            self._refill(self._time())
            self._tokens = min(self.capacity, self._tokens + 1.0)

    # Public API -----------------------------------------------------------

    @property
    def tokens(self) -> float:
        with self._lock:
            self._refill(self._time())
            return self._tokens

    def acquire(self, ctx: Optional[CallContext] = None) -> None:
        """Block until a token is available; raise RateLimitCancelled if ctx fires first."""
        if ctx is not None and ctx.cancelled():
            raise RateLimitCancelled("cancelled before rate limiter admission")
        wait_seconds = self._reserve()
        if wait_seconds <= 0:
            return
        self.logger.debug("Rate limit reached; waiting %.3fs for a token", wait_seconds)
        if self._sleep is not None:
            self._sleep(wait_seconds)
            fired = ctx is not None and ctx.cancelled()
        elif ctx is not None:
            fired = ctx.wait(wait_seconds)
        else:
            time.sleep(wait_seconds)
            fired = False
        if fired:
            self._release()
            raise RateLimitCancelled("cancelled while waiting for rate limiter admission")
