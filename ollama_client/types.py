"""Request and response bodies of the Ollama HTTP API.

Field names follow the server's snake_case protocol. Requests are frozen and
serialize through ``to_payload()``; responses keep unknown fields so newer
server versions do not break decoding.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .duration import Duration


class WireModel(BaseModel):
    # Fields such as "model" and "model_info" are protocol names, not pydantic internals.
    model_config = ConfigDict(protected_namespaces=(), frozen=True)

    def to_payload(self) -> Dict[str, Any]:
        """Return the JSON-ready mapping sent on the wire (None fields omitted)."""
        data = self.model_dump(mode="json", exclude_none=True)
        # A zero keep-alive encodes as "" and means "not set".
        if data.get("keep_alive") == "":
            data.pop("keep_alive")
        return data


class ResponseModel(WireModel):
    model_config = ConfigDict(protected_namespaces=(), frozen=True, extra="allow")


# -----------------------------
# Generate / chat
# -----------------------------
class GenerateRequest(WireModel):
    model: str
    prompt: str = ""
    suffix: Optional[str] = None
    images: Optional[List[str]] = None
    # "json" or a JSON schema mapping
    format: Optional[Any] = None
    options: Optional[Dict[str, Any]] = None
    system: Optional[str] = None
    template: Optional[str] = None
    stream: bool = False
    raw: Optional[bool] = None
    keep_alive: Optional[Duration] = None
    context: Optional[List[int]] = None  # deprecated by the server, still accepted


class GenerateResponse(ResponseModel):
    model: str = ""
    created_at: Optional[datetime] = None
    response: str = ""
    done: bool = False
    done_reason: Optional[str] = None
    context: Optional[List[int]] = None
    total_duration: int = 0
    load_duration: int = 0
    prompt_eval_count: int = 0
    prompt_eval_duration: int = 0
    eval_count: int = 0
    eval_duration: int = 0


class ToolCallFunction(WireModel):
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


class ToolCall(WireModel):
    function: ToolCallFunction


class ChatMessage(WireModel):
    role: str
    content: str = ""
    images: Optional[List[str]] = None
    tool_calls: Optional[List[ToolCall]] = None


class PropertyField(WireModel):
    type: str
    description: str = ""
    enum: Optional[List[str]] = None


class ToolParameters(WireModel):
    type: str = "object"
    required: List[str] = Field(default_factory=list)
    properties: Dict[str, PropertyField] = Field(default_factory=dict)


class ToolFunction(WireModel):
    name: str
    description: str = ""
    parameters: ToolParameters = Field(default_factory=ToolParameters)


class Tool(WireModel):
    type: str = "function"
    function: ToolFunction


class ChatRequest(WireModel):
    model: str
    messages: List[ChatMessage]
    tools: Optional[List[Tool]] = None
    format: Optional[Any] = None
    stream: bool = False
    options: Optional[Dict[str, Any]] = None
    keep_alive: Optional[Duration] = None


class ChatResponse(ResponseModel):
    model: str = ""
    created_at: Optional[datetime] = None
    message: Optional[ChatMessage] = None
    done: bool = False
    done_reason: Optional[str] = None
    total_duration: int = 0
    load_duration: int = 0
    prompt_eval_count: int = 0
    prompt_eval_duration: int = 0
    eval_count: int = 0
    eval_duration: int = 0


# -----------------------------
# Model management
# -----------------------------
class ModelDetails(ResponseModel):
    parent_model: Optional[str] = None
    format: Optional[str] = None
    family: Optional[str] = None
    families: Optional[List[str]] = None
    parameter_size: Optional[str] = None
    quantization_level: Optional[str] = None


class ModelInfo(ResponseModel):
    """One entry of /api/tags or /api/ps, or the body of /api/show."""

    name: str = ""
    model: Optional[str] = None
    modified_at: Optional[datetime] = None
    size: int = 0
    digest: str = ""
    details: Optional[ModelDetails] = None
    # /api/ps only
    expires_at: Optional[datetime] = None
    size_vram: Optional[int] = None
    # /api/show only
    license: Optional[str] = None
    modelfile: Optional[str] = None
    parameters: Optional[str] = None
    template: Optional[str] = None
    model_info: Optional[Dict[str, Any]] = None


class ModelListResponse(ResponseModel):
    models: List[ModelInfo] = Field(default_factory=list)


class ShowModelRequest(WireModel):
    model: str
    verbose: Optional[bool] = None


class CreateModelRequest(WireModel):
    name: str
    modelfile: str = ""
    path: Optional[str] = None
    stream: bool = False


class CopyModelRequest(WireModel):
    source: str
    destination: str


class DeleteModelRequest(WireModel):
    model: str


class PullModelRequest(WireModel):
    name: str
    insecure: Optional[bool] = None
    stream: bool = True


class PushModelRequest(WireModel):
    name: str
    insecure: Optional[bool] = None
    stream: bool = True


class ModelResponse(ResponseModel):
    """Progress/status line emitted by create, pull and push."""

    status: str = ""
    digest: Optional[str] = None
    total: Optional[int] = None
    completed: Optional[int] = None


# -----------------------------
# Embeddings
# -----------------------------
class EmbeddingRequest(WireModel):
    model: str
    prompt: str
    options: Optional[Dict[str, Any]] = None


class EmbeddingResponse(ResponseModel):
    embedding: List[float] = Field(default_factory=list)
