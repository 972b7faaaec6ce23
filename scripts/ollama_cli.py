#!/usr/bin/env python3
"""
Command-line front end for the Ollama client.

Examples:
    python -m scripts.ollama_cli list
    python -m scripts.ollama_cli generate --model llama3.2:1b "Why is the sky blue?"
    python -m scripts.ollama_cli chat --model llama3.2:1b --stream "Hello"
    python -m scripts.ollama_cli pull llama3.2:1b
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any, Optional, Sequence

from dotenv import load_dotenv

from ollama_client import (
    CallContext,
    ChatMessage,
    ChatRequest,
    GenerateRequest,
    OllamaClient,
    OllamaError,
    PullModelRequest,
    config_from_env,
    load_config,
    parse_duration,
)


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Talk to a local Ollama server")
    ap.add_argument("--config", default=None, help="YAML config file (default: OLLAMA_* environment variables)")
    ap.add_argument("--host", default=None, help="Server URL, overrides config (e.g., http://localhost:11434)")
    ap.add_argument("--timeout", type=float, default=None, help="Overall deadline for the command, seconds")
    ap.add_argument("--debug", action="store_true", help="Log requests and retries to stderr")
    sub = ap.add_subparsers(dest="command", required=True)

    gen = sub.add_parser("generate", help="Complete a prompt")
    gen.add_argument("--model", required=True)
    gen.add_argument("--stream", action="store_true")
    gen.add_argument("--keep_alive", default=None, help="Keep the model loaded, e.g. 5m or 1h30m")
    gen.add_argument("prompt")

    chat = sub.add_parser("chat", help="Send one user message")
    chat.add_argument("--model", required=True)
    chat.add_argument("--system", default=None)
    chat.add_argument("--stream", action="store_true")
    chat.add_argument("--keep_alive", default=None)
    chat.add_argument("message")

    sub.add_parser("list", help="List local models")
    sub.add_parser("ps", help="List running models")

    show = sub.add_parser("show", help="Show model details")
    show.add_argument("name")

    pull = sub.add_parser("pull", help="Download a model")
    pull.add_argument("name")
    pull.add_argument("--insecure", action="store_true")
    return ap


def _print_stream(stream: Any, text_of) -> int:
    with stream:
        for item in stream:
            if not item.ok:
                print(f"\nstream error: {item.error}", file=sys.stderr)
                return 1
            sys.stdout.write(text_of(item.value))
            sys.stdout.flush()
    sys.stdout.write("\n")
    return 0


def run(args: argparse.Namespace, client: OllamaClient) -> int:
    ctx = CallContext.with_timeout(args.timeout) if args.timeout else None
    keep_alive = getattr(args, "keep_alive", None)
    keep_alive = parse_duration(keep_alive) if keep_alive else None

    if args.command == "generate":
        req = GenerateRequest(model=args.model, prompt=args.prompt, keep_alive=keep_alive)
        if args.stream:
            return _print_stream(client.generate_stream(req, ctx=ctx), lambda r: r.response)
        print(client.generate(req, ctx=ctx).response)
        return 0

    if args.command == "chat":
        messages = []
        if args.system:
            messages.append(ChatMessage(role="system", content=args.system))
        messages.append(ChatMessage(role="user", content=args.message))
        req = ChatRequest(model=args.model, messages=messages, keep_alive=keep_alive)
        if args.stream:
            return _print_stream(
                client.chat_stream(req, ctx=ctx),
                lambda r: r.message.content if r.message else "",
            )
        resp = client.chat(req, ctx=ctx)
        print(resp.message.content if resp.message else "")
        return 0

    if args.command in ("list", "ps"):
        models = client.list_models(ctx=ctx) if args.command == "list" else client.list_running_models(ctx=ctx)
        for m in models:
            print(f"{m.name}\t{m.size}\t{m.digest[:12]}")
        return 0

    if args.command == "show":
        info = client.show_model(args.name, ctx=ctx)
        print(json.dumps(info.model_dump(mode="json", exclude_none=True), indent=2))
        return 0

    if args.command == "pull":
        stream = client.pull_model(PullModelRequest(name=args.name, insecure=args.insecure or None), ctx=ctx)
        with stream:
            for item in stream:
                if not item.ok:
                    print(f"pull failed: {item.error}", file=sys.stderr)
                    return 1
                status = item.value
                if status.total and status.completed is not None:
                    print(f"{status.status}: {status.completed}/{status.total}")
                else:
                    print(status.status)
        return 0

    raise SystemExit(f"Unknown command: {args.command}")


def main(argv: Optional[Sequence[str]] = None, *, transport: Any = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    overrides: dict[str, Any] = {}
    if args.host:
        overrides["base_url"] = args.host
    if args.debug:
        overrides["debug"] = True
    if transport is not None:
        overrides["transport"] = transport
    config = load_config(args.config).with_overrides(**overrides) if args.config else config_from_env(**overrides)

    with OllamaClient(config) as client:
        try:
            return run(args, client)
        except OllamaError as e:
            print(f"error: {e}", file=sys.stderr)
            return 1


if __name__ == "__main__":
    raise SystemExit(main())
