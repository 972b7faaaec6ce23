from __future__ import annotations

import os
from typing import Any, Mapping, Optional

import httpx
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

DEFAULT_BASE_URL = "http://localhost:11434"

_TRUTHY = {"1", "true", "yes", "on"}

# environment variable -> ClientConfig field
_ENV_FIELDS = {
    "OLLAMA_HOST": "base_url",
    "OLLAMA_MAX_RETRIES": "max_retries",
    "OLLAMA_RETRY_WAIT": "retry_wait",
    "OLLAMA_RETRY_MAX_WAIT": "retry_max_wait",
    "OLLAMA_RATE_LIMIT": "rate_limit",
    "OLLAMA_TIMEOUT": "timeout",
    "OLLAMA_DEBUG": "debug",
}


class ClientConfig(BaseModel):
    """Options recognized by ``OllamaClient``. Immutable once built.

    base_url        server root, e.g. http://localhost:11434
    transport       custom ``httpx.BaseTransport`` (tests, proxies, unix sockets)
    max_retries     extra attempts after the first (total = max_retries + 1)
    retry_wait      backoff before the first retry, seconds; doubles per retry
    retry_max_wait  upper bound for a single backoff, seconds
    rate_limit      admitted requests per second (token bucket, burst = rate)
    timeout         per-request HTTP timeout, seconds
    debug           also log encoded request bodies
    logger          Logger capability; defaults to logging.getLogger("ollama_client")
    stream_buffer   decoded items a stream may hold ahead of its consumer
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    base_url: str = Field(default=DEFAULT_BASE_URL)
    transport: Optional[httpx.BaseTransport] = None
    max_retries: int = Field(default=3)
    retry_wait: float = Field(default=1.0)
    retry_max_wait: float = Field(default=30.0)
    rate_limit: float = Field(default=10.0)
    timeout: float = Field(default=300.0)
    debug: bool = False
    logger: Optional[Any] = None
    stream_buffer: int = Field(default=1)

    @field_validator("base_url")
    @classmethod
    def _normalize_base_url(cls, v: str):  # type: ignore[override]
        vv = (v or "").strip().rstrip("/")
        if not vv:
            raise ValueError("base_url must be a non-empty URL")
        if "://" not in vv:
            vv = f"http://{vv}"
        return vv

    @field_validator("max_retries")
    @classmethod
    def _validate_retries(cls, v: int):  # type: ignore[override]
        if int(v) < 0:
            raise ValueError("max_retries must be >= 0")
        return int(v)

    @field_validator("retry_wait", "retry_max_wait")
    @classmethod
    def _validate_waits(cls, v: float, info):  # type: ignore[override]
        fv = float(v)
        if fv < 0:
            raise ValueError(f"{info.field_name} must be non-negative")
        return fv

    @field_validator("rate_limit")
    @classmethod
    def _validate_rate(cls, v: float):  # type: ignore[override]
        fv = float(v)
        if fv <= 0:
            raise ValueError("rate_limit must be > 0 requests per second")
        return fv

    @field_validator("timeout")
    @classmethod
    def _validate_timeout(cls, v: float):  # type: ignore[override]
        fv = float(v)
        if fv <= 0:
            raise ValueError("timeout must be > 0 seconds")
        return fv

    @field_validator("stream_buffer")
    @classmethod
    def _validate_stream_buffer(cls, v: int):  # type: ignore[override]
        if int(v) < 1:
            raise ValueError("stream_buffer must be >= 1")
        return int(v)

    @field_validator("logger")
    @classmethod
    def _validate_logger(cls, v: Any):  # type: ignore[override]
        if v is None:
            return None
        missing = [name for name in ("debug", "info", "error") if not callable(getattr(v, name, None))]
        if missing:
            raise ValueError(f"logger is missing methods: {', '.join(missing)}")
        return v

    @model_validator(mode="after")
    def _check_wait_order(self) -> "ClientConfig":
        if self.retry_max_wait < self.retry_wait:
            raise ValueError("retry_max_wait must be >= retry_wait")
        return self

    def with_overrides(self, **overrides: Any) -> "ClientConfig":
        """Return a new validated config with ``overrides`` applied."""
        data = {name: getattr(self, name) for name in type(self).model_fields}
        data.update(overrides)
        return type(self)(**data)


def load_config(path: str) -> ClientConfig:
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"Invalid configuration in {path}: expected a mapping at top level")
    # Allow either a bare mapping or one nested under an "ollama" key
    if isinstance(raw.get("ollama"), dict):
        raw = raw["ollama"]
    if raw.get("base_url"):
        raw["base_url"] = os.path.expandvars(str(raw["base_url"]))
    try:
        return ClientConfig(**raw)
    except ValidationError as e:
        # Pretty error message that points to the config path
        raise ValueError(f"Invalid configuration in {path}:\n{e}") from e


def config_from_env(environ: Optional[Mapping[str, str]] = None, **overrides: Any) -> ClientConfig:
    """Build a config from OLLAMA_* environment variables; ``overrides`` win."""
    env = os.environ if environ is None else environ
    data: dict[str, Any] = {}
    for var, field_name in _ENV_FIELDS.items():
        raw = env.get(var)
        if raw is None or raw.strip() == "":
            continue
        if field_name == "debug":
            data[field_name] = raw.strip().lower() in _TRUTHY
        else:
            data[field_name] = raw.strip()
    data.update({k: v for k, v in overrides.items() if v is not None})
    return ClientConfig(**data)
