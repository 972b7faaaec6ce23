"""
Ollama HTTP client

Typed operations (generate, chat, embeddings, model management) against a
local Ollama server, with token-bucket rate limiting, retries with capped
exponential backoff, and background decoding of streamed responses.
"""

import logging

from .client import OllamaClient
from .config import ClientConfig, config_from_env, load_config
from .context import CallContext
from .duration import Duration, format_duration, parse_duration
from .errors import (
    AllRetriesFailed,
    APIError,
    DecodeError,
    DurationError,
    EncodeError,
    HTTPStatusError,
    InvalidNumber,
    InvalidUnit,
    OllamaError,
    RateLimitCancelled,
    RequestCancelled,
    RetryableStatusError,
    TrailingDigits,
    TransportError,
)
from .rate_limiter import RateLimiter
from .streaming import (
    ChatStreamResponse,
    GenerateStreamResponse,
    ModelStreamResponse,
    ResponseStream,
    StreamItem,
)
from .types import (
    ChatMessage,
    ChatRequest,
    ChatResponse,
    CopyModelRequest,
    CreateModelRequest,
    EmbeddingRequest,
    EmbeddingResponse,
    GenerateRequest,
    GenerateResponse,
    ModelInfo,
    ModelResponse,
    PropertyField,
    PullModelRequest,
    PushModelRequest,
    Tool,
    ToolCall,
    ToolCallFunction,
    ToolFunction,
    ToolParameters,
)

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "OllamaClient",
    "ClientConfig",
    "config_from_env",
    "load_config",
    "CallContext",
    "RateLimiter",
    "Duration",
    "format_duration",
    "parse_duration",
    "ResponseStream",
    "StreamItem",
    "GenerateStreamResponse",
    "ChatStreamResponse",
    "ModelStreamResponse",
    "ChatMessage",
    "ChatRequest",
    "ChatResponse",
    "CopyModelRequest",
    "CreateModelRequest",
    "EmbeddingRequest",
    "EmbeddingResponse",
    "GenerateRequest",
    "GenerateResponse",
    "ModelInfo",
    "ModelResponse",
    "PropertyField",
    "PullModelRequest",
    "PushModelRequest",
    "Tool",
    "ToolCall",
    "ToolCallFunction",
    "ToolFunction",
    "ToolParameters",
    "OllamaError",
    "EncodeError",
    "TransportError",
    "RetryableStatusError",
    "AllRetriesFailed",
    "APIError",
    "HTTPStatusError",
    "DecodeError",
    "RequestCancelled",
    "RateLimitCancelled",
    "DurationError",
    "InvalidUnit",
    "InvalidNumber",
    "TrailingDigits",
]
