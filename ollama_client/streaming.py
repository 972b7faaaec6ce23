"""Background decoding of streamed (newline-delimited JSON) response bodies.

A ``ResponseStream`` owns one open ``httpx.Response``. A daemon thread reads
the body, decodes one JSON value at a time and publishes typed ``StreamItem``
objects into a bounded queue, so the reader is never more than ``maxsize``
items ahead of the consumer. A failure is delivered once as a terminal error
item instead of being raised across the thread boundary. The body is closed
exactly once, by the decode thread, whichever way the stream ends.

Abandoning a stream: call ``close()`` (or leave a ``with`` block). The decode
thread notices on its next publish attempt and exits. A thread blocked inside
a network read only notices after that read returns or times out.

Cancelling the call's ``CallContext`` also stops decoding, but the consumer is
still owed an explanation: the body is closed and one ``RequestCancelled``
item is published before the end of the stream.
"""

from __future__ import annotations

import codecs
import json
import logging
import queue
import threading
from dataclasses import dataclass
from typing import Any, Callable, Generic, Iterable, Iterator, List, Optional, TypeVar

import httpx
from pydantic import ValidationError

from .context import CallContext
from .errors import APIError, DecodeError, RequestCancelled, TransportError
from .types import ChatResponse, GenerateResponse, ModelResponse

logger = logging.getLogger(__name__)

T = TypeVar("T")

_JSON_WS = " \t\n\r"
_PUBLISH_POLL_SECONDS = 0.05
_JOIN_TIMEOUT_SECONDS = 1.0
_END = object()


@dataclass(frozen=True)
class StreamItem(Generic[T]):
    """One published stream element: a decoded value or the terminal error."""

    value: Optional[T] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


class GenerateStreamResponse(StreamItem[GenerateResponse]):
    pass


class ChatStreamResponse(StreamItem[ChatResponse]):
    pass


class ModelStreamResponse(StreamItem[ModelResponse]):
    pass


# -----------------------------
# Incremental JSON decoding
# -----------------------------
def _drain(decoder: json.JSONDecoder, text: str, *, final: bool):
    """Yield every complete value in ``text``; return the undecoded tail."""
    idx = 0
    end = len(text)
    while True:
        while idx < end and text[idx] in _JSON_WS:
            idx += 1
        if idx >= end:
            return ""
        try:
            value, idx = decoder.raw_decode(text, idx)
        except json.JSONDecodeError as e:
            # An unterminated object or array fails exactly at the end of the
            # text; it may continue on the next line.
            if not final and e.pos >= end:
                return text[idx:]
            raise DecodeError(f"malformed JSON in response stream: {e}") from e
        yield value


def iter_json_values(chunks: Iterable[bytes]) -> Iterator[Any]:
    """Decode concatenated JSON values from an iterator of byte chunks.

    Values are decoded at newline boundaries and at end of input. Clean end
    of input stops iteration; anything else raises DecodeError after every
    earlier value has been yielded.
    """
    decoder = json.JSONDecoder()
    utf8 = codecs.getincrementaldecoder("utf-8")()
    pending = ""
    try:
        for chunk in chunks:
            pending += utf8.decode(chunk)
            cut = pending.rfind("\n")
            if cut < 0:
                continue
            ready, rest = pending[: cut + 1], pending[cut + 1 :]
            leftover = yield from _drain(decoder, ready, final=False)
            pending = leftover + rest
        pending += utf8.decode(b"", final=True)
    except UnicodeDecodeError as e:
        raise DecodeError(f"response stream is not valid UTF-8: {e}") from e
    yield from _drain(decoder, pending, final=True)


# -----------------------------
# Stream conduit
# -----------------------------
class ResponseStream(Generic[T]):
    """Iterable of ``StreamItem`` values decoded from one streaming response."""

    def __init__(
        self,
        response: httpx.Response,
        decode: Callable[[Any], T],
        item_type: type = StreamItem,
        *,
        maxsize: int = 1,
        ctx: Optional[CallContext] = None,
    ) -> None:
        self._response = response
        self._decode = decode
        self._item_type = item_type
        self._ctx = ctx
        self._queue: "queue.Queue[Any]" = queue.Queue(maxsize=max(1, int(maxsize)))
        self._closed = threading.Event()
        self._finished = False
        self._thread = threading.Thread(target=self._run, name="ollama-stream-decoder", daemon=True)
        self._thread.start()

    # Decode thread --------------------------------------------------------

    def _abandoned(self) -> bool:
        return self._closed.is_set() or (self._ctx is not None and self._ctx.cancelled())

    def _publish(self, item: Any) -> bool:
        while not self._abandoned():
            try:
                self._queue.put(item, timeout=_PUBLISH_POLL_SECONDS)
                return True
            except queue.Full:
                continue
        return False

    def _deliver(self, item: Any) -> bool:
        """Publish a terminal item; only a consumer-side close() stops this."""
        while not self._closed.is_set():
            try:
                self._queue.put(item, timeout=_PUBLISH_POLL_SECONDS)
                return True
            except queue.Full:
                continue
        return False

    def _to_item(self, value: Any) -> Any:
        if isinstance(value, dict) and isinstance(value.get("error"), str):
            return self._item_type(error=APIError(self._response.status_code, value["error"]))
        try:
            return self._item_type(value=self._decode(value))
        except ValidationError as e:
            return self._item_type(error=DecodeError(f"unexpected stream value: {e}"))

    def _run(self) -> None:
        terminal = None
        cut_short = False
        try:
            for value in iter_json_values(self._response.iter_bytes()):
                item = self._to_item(value)
                if not item.ok:
                    terminal = item
                    break
                if not self._publish(item):
                    cut_short = True
                    break
        except DecodeError as e:
            terminal = self._item_type(error=e)
        except httpx.TransportError as e:
            terminal = self._item_type(error=TransportError(f"stream read failed: {e}"))
        except httpx.StreamError as e:
            terminal = self._item_type(error=DecodeError(f"stream unavailable: {e}"))
        finally:
            self._response.close()
            if terminal is None and cut_short and not self._closed.is_set():
                terminal = self._item_type(error=RequestCancelled("stream cancelled by caller context"))
            if terminal is not None:
                self._deliver(terminal)
            self._deliver(_END)
            logger.debug("Stream decoder finished (status %s)", self._response.status_code)

    # Consumer side ---------------------------------------------------------

    def __iter__(self) -> Iterator[StreamItem[T]]:
        while not self._finished:
            if self._closed.is_set():
                return
            try:
                item = self._queue.get(timeout=_PUBLISH_POLL_SECONDS)
            except queue.Empty:
                if not self._thread.is_alive() and self._queue.empty():
                    self._finished = True
                continue
            if item is _END:
                self._finished = True
                return
            yield item

    def collect(self) -> List[StreamItem[T]]:
        """Drain the stream into a list (the terminal error item included)."""
        return list(self)

    def close(self) -> None:
        """Abandon the stream; the decode thread exits and closes the body."""
        self._closed.set()
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                break
        self._thread.join(_JOIN_TIMEOUT_SECONDS)

    @property
    def body_closed(self) -> bool:
        return self._response.is_closed

    def __enter__(self) -> "ResponseStream[T]":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
