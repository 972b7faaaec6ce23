from __future__ import annotations

import json
import threading
from typing import Any, Callable, Mapping, Optional

import httpx

from .context import CallContext
from .errors import (
    AllRetriesFailed,
    APIError,
    EncodeError,
    HTTPStatusError,
    RequestCancelled,
    RetryableStatusError,
    TransportError,
)
from .interfaces import Limiter, Logger

_JSON_HEADERS = {"Content-Type": "application/json"}
_CANCEL_POLL_SECONDS = 0.05


class _Exchange:
    """One ``httpx.Client.send`` on a helper thread the caller can walk away from.

    A response that arrives after the caller gave up is closed here, so an
    abandoned exchange never leaks a connection.
    """

    def __init__(self, client: httpx.Client, request: httpx.Request) -> None:
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._abandoned = False
        self.response: Optional[httpx.Response] = None
        self.error: Optional[BaseException] = None
        threading.Thread(
            target=self._run, args=(client, request), name="ollama-http-exchange", daemon=True
        ).start()

    def _run(self, client: httpx.Client, request: httpx.Request) -> None:
        try:
            response = client.send(request, stream=True)
        except Exception as e:
            self.error = e
        else:
            with self._lock:
                late = self._abandoned
                if not late:
                    self.response = response
            if late:
                response.close()
        finally:
            self._done.set()

    def wait(self, ctx: CallContext) -> bool:
        """Block until the exchange finishes; False (and abandon it) if ``ctx`` fires first."""
        while not ctx.cancelled():
            remaining = ctx.remaining()
            step = _CANCEL_POLL_SECONDS if remaining is None else min(_CANCEL_POLL_SECONDS, remaining)
            if self._done.wait(step):
                return True
        with self._lock:
            self._abandoned = True
            response, self.response = self.response, None
        if response is not None:
            response.close()
        return False


def compute_backoff(attempt: int, base_wait: float, max_wait: float) -> float:
    """Delay before retry ``attempt`` (1-based): base * 2^(attempt-1), capped."""
    if attempt <= 0:
        return 0.0
    return min(base_wait * (2 ** (attempt - 1)), max_wait)


def is_retryable_status(status_code: int) -> bool:
    return status_code == 429 or 500 <= status_code < 600


def encode_body(body: Any) -> Optional[bytes]:
    """Serialize a request body (pydantic model or JSON-compatible value)."""
    if body is None:
        return None
    try:
        to_payload = getattr(body, "to_payload", None)
        if callable(to_payload):
            data = to_payload()
        elif hasattr(body, "model_dump"):
            data = body.model_dump(mode="json", exclude_none=True)
        else:
            data = body
        return json.dumps(data, ensure_ascii=False).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise EncodeError(f"failed to encode request body: {e}") from e


def _error_message(payload: bytes) -> Optional[str]:
    try:
        data = json.loads(payload)
    except ValueError:
        return None
    if isinstance(data, dict) and isinstance(data.get("error"), str):
        return data["error"]
    return None


class Dispatcher:
    """Request-send pipeline: rate limit, encode, send with retries, classify.

    ``send`` returns the open ``httpx.Response`` of a 200 answer; the caller
    decodes it and must close it. Every other outcome raises an ``OllamaError``
    and leaves no response open.

    With a caller-supplied ``ctx``, each HTTP exchange runs on a helper thread
    so that cancellation or an expired deadline raises ``RequestCancelled``
    without waiting for the server to answer.
    """

    def __init__(
        self,
        http_client: httpx.Client,
        limiter: Limiter,
        *,
        max_retries: int,
        retry_wait: float,
        retry_max_wait: float,
        timeout: Optional[float],
        logger: Logger,
        debug: bool = False,
        sleep_fn: Optional[Callable[[float], None]] = None,
    ) -> None:
        self._client = http_client
        self._limiter = limiter
        self.max_retries = max(0, int(max_retries))
        self.retry_wait = float(retry_wait)
        self.retry_max_wait = float(retry_max_wait)
        self.timeout = timeout
        self._logger = logger
        self._debug = debug
        self._sleep = sleep_fn

    # Internals -------------------------------------------------------------

    def _request_timeout(self, ctx: CallContext) -> Optional[float]:
        remaining = ctx.remaining()
        if remaining is None:
            return self.timeout
        if self.timeout is None:
            return remaining
        return min(self.timeout, remaining)

    def _backoff(self, attempt: int, ctx: CallContext) -> None:
        delay = compute_backoff(attempt, self.retry_wait, self.retry_max_wait)
        self._logger.debug("Retrying request (attempt %d/%d) in %.2fs", attempt, self.max_retries, delay)
        if self._sleep is not None:
            self._sleep(delay)
            ctx.check()
        elif ctx.wait(delay):
            raise RequestCancelled("call cancelled during retry backoff")

    def _classify(self, response: httpx.Response) -> httpx.Response:
        if response.status_code == 200:
            return response
        try:
            payload = response.read()
        except httpx.HTTPError:
            payload = b""
        finally:
            response.close()
        message = _error_message(payload)
        if message is None:
            raise HTTPStatusError(response.status_code)
        raise APIError(response.status_code, message)

    def _exchange(
        self, request: httpx.Request, ctx: CallContext, cancellable: bool, method: str, path: str
    ) -> httpx.Response:
        if not cancellable:
            return self._client.send(request, stream=True)
        exchange = _Exchange(self._client, request)
        if not exchange.wait(ctx):
            raise RequestCancelled(f"call cancelled during {method} {path}")
        if exchange.error is not None:
            raise exchange.error
        return exchange.response  # type: ignore[return-value]

    # Public API ------------------------------------------------------------

    def send(
        self,
        method: str,
        path: str,
        body: Any = None,
        *,
        ctx: Optional[CallContext] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> httpx.Response:
        # Only a caller-held context can fire mid-exchange.
        cancellable = ctx is not None
        ctx = ctx or CallContext()
        self._limiter.acquire(ctx)

        content = encode_body(body)
        if self._debug and content is not None:
            self._logger.debug("Request body for %s %s: %s", method, path, content.decode("utf-8"))
        request_headers = dict(_JSON_HEADERS)
        if headers:
            request_headers.update(headers)

        last_error: Optional[Exception] = None
        for attempt in range(self.max_retries + 1):
            if attempt > 0:
                self._backoff(attempt, ctx)
            ctx.check()

            request = self._client.build_request(
                method,
                path,
                content=content,
                headers=request_headers,
                timeout=self._request_timeout(ctx),
            )
            self._logger.debug("Sending request: %s %s", method, path)
            try:
                response = self._exchange(request, ctx, cancellable, method, path)
            except httpx.TransportError as e:
                if ctx.cancelled():
                    raise RequestCancelled(f"call cancelled during {method} {path}") from e
                last_error = TransportError(f"{method} {path}: {e}")
                last_error.__cause__ = e
                self._logger.error("Request failed: %s", e)
                continue

            self._logger.debug("Received response: %s %s -> %d", method, path, response.status_code)
            if is_retryable_status(response.status_code):
                response.close()
                last_error = RetryableStatusError(response.status_code)
                continue
            if ctx.cancelled():
                response.close()
                raise RequestCancelled(f"call cancelled during {method} {path}")
            return self._classify(response)

        raise AllRetriesFailed(self.max_retries + 1, last_error) from last_error
