from __future__ import annotations

import json
import logging
from typing import Any, List, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from .config import ClientConfig
from .context import CallContext
from .dispatcher import Dispatcher
from .errors import DecodeError, TransportError
from .rate_limiter import RateLimiter
from .streaming import (
    ChatStreamResponse,
    GenerateStreamResponse,
    ModelStreamResponse,
    ResponseStream,
)
from .types import (
    ChatRequest,
    ChatResponse,
    CopyModelRequest,
    CreateModelRequest,
    DeleteModelRequest,
    EmbeddingRequest,
    EmbeddingResponse,
    GenerateRequest,
    GenerateResponse,
    ModelInfo,
    ModelListResponse,
    ModelResponse,
    PullModelRequest,
    PushModelRequest,
    ShowModelRequest,
)

M = TypeVar("M", bound=BaseModel)


def _decode_response(response: httpx.Response, model: Type[M]) -> M:
    """Read one JSON value from ``response`` into ``model`` and close the body."""
    try:
        payload = response.read()
    except httpx.TransportError as e:
        raise TransportError(f"failed to read response body: {e}") from e
    finally:
        response.close()
    try:
        return model.model_validate(json.loads(payload))
    except (ValueError, ValidationError) as e:
        raise DecodeError(f"failed to decode {model.__name__}: {e}") from e


class OllamaClient:
    """HTTP client for an Ollama inference server.

    Every call goes through one shared pipeline: rate limiting, JSON
    encoding, retries with capped exponential backoff, and error
    classification. One client may be used from many threads at once.
    Synchronous calls return a decoded value; streaming calls return a
    ``ResponseStream`` immediately and decode in the background.
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        *,
        http_client: Optional[httpx.Client] = None,
        limiter: Optional[Any] = None,
        sleep_fn: Optional[Any] = None,
        **overrides: Any,
    ) -> None:
        config = config or ClientConfig()
        if overrides:
            config = config.with_overrides(**overrides)
        self.config = config
        self.logger = config.logger or logging.getLogger("ollama_client")
        self._owns_http_client = http_client is None
        if http_client is None:
            http_client = httpx.Client(
                base_url=config.base_url,
                transport=config.transport,
                timeout=config.timeout,
            )
        self._http = http_client
        self.limiter = limiter or RateLimiter(config.rate_limit, logger=self.logger)
        self.dispatcher = Dispatcher(
            self._http,
            self.limiter,
            max_retries=config.max_retries,
            retry_wait=config.retry_wait,
            retry_max_wait=config.retry_max_wait,
            timeout=config.timeout,
            logger=self.logger,
            debug=config.debug,
            sleep_fn=sleep_fn,
        )
        self.logger.info("Ollama client initialized - Host: %s", config.base_url)

    # -----------------------------
    # Lifecycle
    # -----------------------------
    def close(self) -> None:
        if self._owns_http_client:
            self._http.close()

    def __enter__(self) -> "OllamaClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # -----------------------------
    # Internals
    # -----------------------------
    def _call(self, method: str, path: str, body: Any, model: Type[M], ctx: Optional[CallContext]) -> M:
        response = self.dispatcher.send(method, path, body, ctx=ctx)
        return _decode_response(response, model)

    def _call_no_content(self, method: str, path: str, body: Any, ctx: Optional[CallContext]) -> None:
        response = self.dispatcher.send(method, path, body, ctx=ctx)
        response.close()

    def _stream(
        self,
        path: str,
        body: Any,
        model: Type[M],
        item_type: type,
        ctx: Optional[CallContext],
    ) -> ResponseStream[M]:
        response = self.dispatcher.send("POST", path, body, ctx=ctx)
        return ResponseStream(
            response,
            model.model_validate,
            item_type,
            maxsize=self.config.stream_buffer,
            ctx=ctx,
        )

    # -----------------------------
    # Generate / chat
    # -----------------------------
    def generate(self, request: GenerateRequest, *, ctx: Optional[CallContext] = None) -> GenerateResponse:
        """Run a single, non-streaming completion."""
        body = request.model_copy(update={"stream": False})
        return self._call("POST", "/api/generate", body, GenerateResponse, ctx)

    def generate_stream(
        self, request: GenerateRequest, *, ctx: Optional[CallContext] = None
    ) -> ResponseStream[GenerateResponse]:
        """Start a streaming completion; items are ``GenerateStreamResponse``."""
        body = request.model_copy(update={"stream": True})
        return self._stream("/api/generate", body, GenerateResponse, GenerateStreamResponse, ctx)

    def chat(self, request: ChatRequest, *, ctx: Optional[CallContext] = None) -> ChatResponse:
        body = request.model_copy(update={"stream": False})
        return self._call("POST", "/api/chat", body, ChatResponse, ctx)

    def chat_stream(self, request: ChatRequest, *, ctx: Optional[CallContext] = None) -> ResponseStream[ChatResponse]:
        body = request.model_copy(update={"stream": True})
        return self._stream("/api/chat", body, ChatResponse, ChatStreamResponse, ctx)

    # -----------------------------
    # Model management
    # -----------------------------
    def list_models(self, *, ctx: Optional[CallContext] = None) -> List[ModelInfo]:
        """Models available locally (/api/tags)."""
        return self._call("GET", "/api/tags", None, ModelListResponse, ctx).models

    def list_running_models(self, *, ctx: Optional[CallContext] = None) -> List[ModelInfo]:
        """Models currently loaded in memory (/api/ps)."""
        return self._call("GET", "/api/ps", None, ModelListResponse, ctx).models

    def show_model(self, name: str, *, verbose: bool = False, ctx: Optional[CallContext] = None) -> ModelInfo:
        body = ShowModelRequest(model=name, verbose=verbose or None)
        return self._call("POST", "/api/show", body, ModelInfo, ctx)

    def create_model(self, request: CreateModelRequest, *, ctx: Optional[CallContext] = None) -> ModelResponse:
        body = request.model_copy(update={"stream": False})
        return self._call("POST", "/api/create", body, ModelResponse, ctx)

    def copy_model(self, request: CopyModelRequest, *, ctx: Optional[CallContext] = None) -> None:
        self._call_no_content("POST", "/api/copy", request, ctx)

    def delete_model(self, name: str, *, ctx: Optional[CallContext] = None) -> None:
        self._call_no_content("DELETE", "/api/delete", DeleteModelRequest(model=name), ctx)

    def pull_model(
        self, request: PullModelRequest, *, ctx: Optional[CallContext] = None
    ) -> ResponseStream[ModelResponse]:
        """Download a model; progress arrives as ``ModelStreamResponse`` items."""
        body = request.model_copy(update={"stream": True})
        return self._stream("/api/pull", body, ModelResponse, ModelStreamResponse, ctx)

    def push_model(
        self, request: PushModelRequest, *, ctx: Optional[CallContext] = None
    ) -> ResponseStream[ModelResponse]:
        body = request.model_copy(update={"stream": True})
        return self._stream("/api/push", body, ModelResponse, ModelStreamResponse, ctx)

    # -----------------------------
    # Embeddings
    # -----------------------------
    def embeddings(self, request: EmbeddingRequest, *, ctx: Optional[CallContext] = None) -> EmbeddingResponse:
        return self._call("POST", "/api/embeddings", request, EmbeddingResponse, ctx)
