from __future__ import annotations

import json
import logging
from datetime import timedelta

import httpx
import pytest

from ollama_client import (
    ChatMessage,
    ChatRequest,
    ClientConfig,
    CopyModelRequest,
    CreateModelRequest,
    DecodeError,
    EmbeddingRequest,
    GenerateRequest,
    ModelStreamResponse,
    OllamaClient,
    PropertyField,
    PullModelRequest,
    PushModelRequest,
    Tool,
    ToolFunction,
    ToolParameters,
)

CREATED_AT = "2024-01-01T00:00:00.000000Z"

MODEL_ENTRY = {
    "name": "llama2:latest",
    "model": "llama2:latest",
    "modified_at": CREATED_AT,
    "size": 3825819519,
    "digest": "fe938a131f40e6f6d40083c9f0f430a515233eb2edaa6d72eb85c50d64f2300e",
    "details": {"format": "gguf", "family": "llama", "parameter_size": "7B", "quantization_level": "Q4_0"},
}


class Recorder:
    """MockTransport handler that answers by path and keeps every request."""

    def __init__(self, routes):
        self.routes = routes
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        template = self.routes[request.url.path]
        # Fresh response per call; a served response is consumed and closed
        return httpx.Response(template.status_code, headers=template.headers, content=template.content)

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]

    def last_json(self):
        return json.loads(self.last.content)


def _ndjson(*values) -> bytes:
    return b"".join((json.dumps(v) + "\n").encode("utf-8") for v in values)


def test_generate_forces_non_streaming_without_mutating_request(make_client) -> None:
    rec = Recorder({"/api/generate": httpx.Response(200, json={"model": "llama2", "created_at": CREATED_AT, "response": "Blue.", "done": True, "eval_count": 3})})
    client = make_client(rec)
    req = GenerateRequest(model="llama2", prompt="Why is the sky blue?", stream=True, keep_alive=timedelta(minutes=5))

    resp = client.generate(req)

    assert resp.response == "Blue."
    assert resp.eval_count == 3
    assert resp.created_at.year == 2024
    assert rec.last.method == "POST"
    payload = rec.last_json()
    assert payload["stream"] is False
    assert payload["keep_alive"] == "5m"
    assert req.stream is True


def test_generate_stream_forces_streaming(make_client) -> None:
    body = _ndjson(
        {"model": "llama2", "created_at": CREATED_AT, "response": "Bl", "done": False},
        {"model": "llama2", "created_at": CREATED_AT, "response": "ue", "done": True},
    )
    rec = Recorder({"/api/generate": httpx.Response(200, content=body)})
    client = make_client(rec)
    req = GenerateRequest(model="llama2", prompt="Color?")

    with client.generate_stream(req) as stream:
        items = stream.collect()

    assert rec.last_json()["stream"] is True
    assert req.stream is False
    assert "".join(i.unwrap().response for i in items) == "Blue"


def test_chat_sends_messages_and_tools(make_client) -> None:
    answer = {
        "model": "llama2",
        "created_at": CREATED_AT,
        "message": {
            "role": "assistant",
            "content": "",
            "tool_calls": [{"function": {"name": "get_weather", "arguments": {"city": "Paris"}}}],
        },
        "done": True,
        "done_reason": "stop",
    }
    rec = Recorder({"/api/chat": httpx.Response(200, json=answer)})
    client = make_client(rec)
    tool = Tool(
        function=ToolFunction(
            name="get_weather",
            description="Current weather for a city",
            parameters=ToolParameters(required=["city"], properties={"city": PropertyField(type="string")}),
        )
    )
    req = ChatRequest(
        model="llama2",
        messages=[ChatMessage(role="system", content="Be brief."), ChatMessage(role="user", content="Weather in Paris?")],
        tools=[tool],
    )

    resp = client.chat(req)

    payload = rec.last_json()
    assert rec.last.url.path == "/api/chat"
    assert payload["stream"] is False
    assert payload["messages"][1] == {"role": "user", "content": "Weather in Paris?"}
    assert payload["tools"][0]["type"] == "function"
    assert payload["tools"][0]["function"]["parameters"]["required"] == ["city"]
    assert resp.message.tool_calls[0].function.arguments == {"city": "Paris"}
    assert resp.done_reason == "stop"


def test_chat_stream_yields_message_chunks(make_client) -> None:
    body = _ndjson(
        {"model": "llama2", "message": {"role": "assistant", "content": "Hel"}, "done": False},
        {"model": "llama2", "message": {"role": "assistant", "content": "lo"}, "done": True},
    )
    rec = Recorder({"/api/chat": httpx.Response(200, content=body)})
    client = make_client(rec)

    stream = client.chat_stream(ChatRequest(model="llama2", messages=[ChatMessage(role="user", content="hi")]))
    text = "".join(item.unwrap().message.content for item in stream)

    assert text == "Hello"
    assert rec.last_json()["stream"] is True


def test_list_models_and_running_models(make_client) -> None:
    running = dict(MODEL_ENTRY, expires_at=CREATED_AT, size_vram=5137025024)
    rec = Recorder(
        {
            "/api/tags": httpx.Response(200, json={"models": [MODEL_ENTRY]}),
            "/api/ps": httpx.Response(200, json={"models": [running]}),
        }
    )
    client = make_client(rec)

    models = client.list_models()
    assert rec.last.method == "GET"
    assert rec.last.content == b""
    assert [m.name for m in models] == ["llama2:latest"]
    assert models[0].details.family == "llama"

    loaded = client.list_running_models()
    assert rec.last.url.path == "/api/ps"
    assert loaded[0].size_vram == 5137025024


def test_show_model(make_client) -> None:
    info = {
        "modelfile": "FROM llama2",
        "parameters": "stop [INST]",
        "template": "[INST] {{ .Prompt }} [/INST]",
        "details": MODEL_ENTRY["details"],
        "model_info": {"general.architecture": "llama"},
    }
    rec = Recorder({"/api/show": httpx.Response(200, json=info)})
    client = make_client(rec)

    shown = client.show_model("llama2")

    assert rec.last_json() == {"model": "llama2"}
    assert shown.modelfile == "FROM llama2"
    assert shown.model_info["general.architecture"] == "llama"

    client.show_model("llama2", verbose=True)
    assert rec.last_json() == {"model": "llama2", "verbose": True}


def test_create_copy_and_delete_model(make_client) -> None:
    rec = Recorder(
        {
            "/api/create": httpx.Response(200, json={"status": "success"}),
            "/api/copy": httpx.Response(200),
            "/api/delete": httpx.Response(200),
        }
    )
    client = make_client(rec)

    created = client.create_model(CreateModelRequest(name="mario", modelfile="FROM llama2\nSYSTEM You are Mario."))
    assert created.status == "success"
    assert rec.last_json()["stream"] is False

    assert client.copy_model(CopyModelRequest(source="llama2", destination="llama2-backup")) is None
    assert rec.last_json() == {"source": "llama2", "destination": "llama2-backup"}

    assert client.delete_model("llama2-backup") is None
    assert rec.last.method == "DELETE"
    assert rec.last.url.path == "/api/delete"
    assert rec.last_json() == {"model": "llama2-backup"}


def test_pull_model_streams_progress(make_client) -> None:
    body = _ndjson(
        {"status": "pulling manifest"},
        {"status": "downloading", "digest": "sha256:abc", "total": 100, "completed": 50},
        {"status": "success"},
    )
    rec = Recorder({"/api/pull": httpx.Response(200, content=body)})
    client = make_client(rec)

    with client.pull_model(PullModelRequest(name="llama2", stream=False)) as stream:
        items = stream.collect()

    assert all(isinstance(i, ModelStreamResponse) for i in items)
    assert [i.value.status for i in items] == ["pulling manifest", "downloading", "success"]
    assert items[1].value.completed == 50
    assert rec.last_json()["stream"] is True


def test_push_model_reports_server_error_in_stream(make_client) -> None:
    body = _ndjson({"status": "retrieving manifest"}, {"error": "unauthorized"})
    rec = Recorder({"/api/push": httpx.Response(200, content=body)})
    client = make_client(rec)

    items = client.push_model(PushModelRequest(name="me/llama2", insecure=True)).collect()

    assert rec.last_json() == {"name": "me/llama2", "insecure": True, "stream": True}
    assert items[0].ok
    assert not items[1].ok
    assert "unauthorized" in str(items[1].error)


def test_embeddings(make_client) -> None:
    rec = Recorder({"/api/embeddings": httpx.Response(200, json={"embedding": [0.1, -0.2, 0.3]})})
    client = make_client(rec)

    resp = client.embeddings(EmbeddingRequest(model="all-minilm", prompt="hello"))

    assert resp.embedding == pytest.approx([0.1, -0.2, 0.3])
    assert rec.last_json() == {"model": "all-minilm", "prompt": "hello"}


def test_undecodable_success_body_is_decode_error(make_client) -> None:
    rec = Recorder({"/api/embeddings": httpx.Response(200, text="not json")})
    client = make_client(rec)

    with pytest.raises(DecodeError):
        client.embeddings(EmbeddingRequest(model="all-minilm", prompt="hello"))


def test_client_accepts_config_overrides() -> None:
    rec = Recorder({"/api/tags": httpx.Response(200, json={"models": []})})
    with OllamaClient(base_url="ollama.test:8080", transport=httpx.MockTransport(rec)) as client:
        assert client.config.base_url == "http://ollama.test:8080"
        assert client.list_models() == []
    assert str(rec.last.url) == "http://ollama.test:8080/api/tags"


def test_client_logs_initialization(caplog) -> None:
    config = ClientConfig(base_url="http://ollama.test", transport=httpx.MockTransport(Recorder({})))
    with caplog.at_level(logging.INFO, logger="ollama_client"):
        OllamaClient(config).close()
    assert "Ollama client initialized - Host: http://ollama.test" in caplog.text


def test_client_uses_custom_logger() -> None:
    class ListLogger:
        def __init__(self):
            self.lines = []

        def debug(self, msg, *args):
            self.lines.append(("debug", msg % args))

        def info(self, msg, *args):
            self.lines.append(("info", msg % args))

        def error(self, msg, *args):
            self.lines.append(("error", msg % args))

    log = ListLogger()
    rec = Recorder({"/api/tags": httpx.Response(200, json={"models": []})})
    config = ClientConfig(base_url="http://ollama.test", transport=httpx.MockTransport(rec), logger=log)
    with OllamaClient(config) as client:
        client.list_models()
        assert client.limiter.logger is log

    assert ("info", "Ollama client initialized - Host: http://ollama.test") in log.lines
    assert ("debug", "Sending request: GET /api/tags") in log.lines
