import os
import sys
from typing import Callable, Iterable, Iterator, List

import httpx
import pytest

# Ensure project root is importable so top-level packages like 'scripts' resolve
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from ollama_client import ClientConfig, OllamaClient  # noqa: E402


class CountingStream(httpx.SyncByteStream):
    """Response body that records how often it was closed."""

    def __init__(self, chunks: Iterable[bytes]) -> None:
        self.chunks = list(chunks)
        self.close_calls = 0

    def __iter__(self):
        yield from self.chunks

    def close(self) -> None:
        self.close_calls += 1


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: List[float] = []

    def time(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_client(clock: FakeClock) -> Iterator[Callable[..., OllamaClient]]:
    """Build a client whose HTTP traffic goes to ``handler``; backoff sleeps hit the fake clock."""
    clients: List[OllamaClient] = []

    def _make(handler, **overrides) -> OllamaClient:
        settings = dict(base_url="http://ollama.test", rate_limit=1000, retry_wait=1.0, retry_max_wait=30.0)
        settings.update(overrides)
        config = ClientConfig(transport=httpx.MockTransport(handler), **settings)
        client = OllamaClient(config, sleep_fn=clock.sleep)
        clients.append(client)
        return client

    yield _make
    for client in clients:
        client.close()


class ListLogger:
    """Logger capability that keeps formatted lines in memory."""

    def __init__(self) -> None:
        self.lines: List[tuple] = []

    def debug(self, msg, *args) -> None:
        self.lines.append(("debug", msg % args))

    def info(self, msg, *args) -> None:
        self.lines.append(("info", msg % args))

    def error(self, msg, *args) -> None:
        self.lines.append(("error", msg % args))
