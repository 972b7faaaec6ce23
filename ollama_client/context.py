from __future__ import annotations

import threading
import time
from typing import Callable, Optional

from .errors import RequestCancelled


class CallContext:
    """Cancellation and deadline signal for one client call.

    A context fires when ``cancel()`` is called (from any thread) or when its
    monotonic deadline passes. Waits performed through ``wait`` return early
    as soon as the context fires.
    """

    def __init__(
        self,
        stop_event: Optional[threading.Event] = None,
        deadline: Optional[float] = None,
        *,
        time_fn: Callable[[], float] = time.monotonic,
    ) -> None:
        self.stop_event = stop_event if stop_event is not None else threading.Event()
        self.deadline = deadline
        self._time = time_fn

    @classmethod
    def with_timeout(cls, seconds: float, *, time_fn: Callable[[], float] = time.monotonic) -> "CallContext":
        return cls(deadline=time_fn() + float(seconds), time_fn=time_fn)

    def cancel(self) -> None:
        self.stop_event.set()

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None when there is no deadline."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - self._time())

    def cancelled(self) -> bool:
        if self.stop_event.is_set():
            return True
        remaining = self.remaining()
        return remaining is not None and remaining <= 0.0

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; return True if the context fired instead."""
        seconds = max(0.0, float(seconds))
        remaining = self.remaining()
        if remaining is not None and remaining < seconds:
            self.stop_event.wait(remaining)
            return True
        self.stop_event.wait(seconds)
        return self.cancelled()

    def check(self) -> None:
        if self.cancelled():
            raise RequestCancelled("call cancelled")
