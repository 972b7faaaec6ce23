from __future__ import annotations

from typing import Any, Optional, Protocol

from .context import CallContext


class Logger(Protocol):
    """Logging capability injected into the client.

    Messages use printf-style arguments, so a ``logging.Logger`` or
    ``logging.LoggerAdapter`` satisfies this protocol as-is.
    """

    def debug(self, msg: str, *args: Any) -> None:
        ...

    def info(self, msg: str, *args: Any) -> None:
        ...

    def error(self, msg: str, *args: Any) -> None:
        ...


class Limiter(Protocol):
    """Admission gate consulted once before every dispatched request.

    ``acquire`` blocks until the call may proceed and raises
    ``RateLimitCancelled`` when ``ctx`` fires first. It never rejects outright.
    """

    def acquire(self, ctx: Optional[CallContext] = None) -> None:
        ...
