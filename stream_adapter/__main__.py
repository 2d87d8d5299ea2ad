"""
Command-line runner.

    python -m stream_adapter models [--provider NAME] [--refresh]
    python -m stream_adapter chat --model ID [--provider NAME] [--system TEXT] PROMPT
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys

from .client import ChatAdapter
from .config import Configuration
from .errors import AdapterError
from .models import ChatMessage, TextDelta, TextPart, ToolInvocation

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stream-adapter",
        description="Stream chat completions from a configured provider.",
    )
    parser.add_argument("--config", default=None, help="Path to config.yaml")
    parser.add_argument("--provider", default=None, help="Provider key (default: llm.active)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    models_p = sub.add_parser("models", help="List available models")
    models_p.add_argument("--refresh", action="store_true", help="Bypass the model cache")

    chat_p = sub.add_parser("chat", help="Stream one prompt to stdout")
    chat_p.add_argument("prompt", help="User message")
    chat_p.add_argument("--model", required=True, help="Model ID")
    chat_p.add_argument("--system", default=None, help="System prompt")
    chat_p.add_argument("--max-tokens", type=int, default=None, help="Max output tokens")
    chat_p.add_argument("--timeout", type=float, default=None, help="Abort after N seconds")

    return parser


def _configure_logging(configuration: Configuration, verbose: bool) -> None:
    logging_config = configuration.get_logging_config()
    level = "DEBUG" if verbose else str(logging_config.get("level", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format=logging_config.get("format", "%(asctime)s - %(levelname)s - %(message)s"),
        stream=sys.stderr,
    )


async def _list_models(adapter: ChatAdapter, refresh: bool) -> int:
    models = await adapter.available_models(force_refresh=refresh)
    for model in models:
        print(f"{model.id}\t{model.name}\tin={model.max_input_tokens}\tout={model.max_output_tokens}")
    return 0


async def _chat(adapter: ChatAdapter, args: argparse.Namespace) -> int:
    messages = []
    if args.system:
        messages.append(ChatMessage(role="system", content=[TextPart(value=args.system)]))
    messages.append(ChatMessage(role="user", content=[TextPart(value=args.prompt)]))

    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    with contextlib.suppress(NotImplementedError):
        loop.add_signal_handler(signal.SIGINT, cancel_event.set)

    def on_progress(event: TextDelta | ToolInvocation) -> None:
        if isinstance(event, TextDelta):
            sys.stdout.write(event.text)
            sys.stdout.flush()
        else:
            print(f"\n[tool call] {event.name}({event.arguments})", file=sys.stderr)

    result = await adapter.complete(
        args.model,
        messages,
        max_output_tokens=args.max_tokens,
        progress=on_progress,
        cancel_event=cancel_event,
        timeout=args.timeout,
    )
    sys.stdout.write("\n")
    if result.cancelled:
        print(f"[stopped: {result.reason}]", file=sys.stderr)
        return 130
    logger.debug("Finished with reason %s", result.finish_reason)
    return 0


async def _run(args: argparse.Namespace, configuration: Configuration) -> int:
    async with ChatAdapter.from_config(configuration, args.provider) as adapter:
        if args.command == "models":
            return await _list_models(adapter, args.refresh)
        return await _chat(adapter, args)


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    try:
        configuration = Configuration(config_path=args.config)
    except AdapterError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2
    _configure_logging(configuration, args.verbose)

    try:
        return asyncio.run(_run(args, configuration))
    except AdapterError as e:
        logger.error("%s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
