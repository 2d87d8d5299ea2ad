# stream_adapter/llm/normalizer.py
"""
Host chat messages → wire messages.

Two shapes are produced: the OpenAI chat-completions shape (used by every
index-addressed dialect) and the Anthropic messages shape. Both follow the
same rules: assistant turns with neither text nor tool calls are dropped,
tool results always travel as their own message addressed to the
originating call id, and blank system or user turns are skipped.
"""

from __future__ import annotations

import base64
import json
import logging
from collections.abc import Iterable
from typing import Any

from ..models import ChatMessage, ImagePart, TextPart, ToolCallPart, ToolResultPart
from .base import JSON, MsgList

logger = logging.getLogger(__name__)

EMPTY_ARGUMENTS = "{}"


def serialize_tool_arguments(arguments: Any) -> str:
    """
    Tool-call arguments as a JSON string.

    Strings pass through untouched. Anything else is serialized; values that
    cannot be serialized become ``"{}"``. Never raises.
    """
    if isinstance(arguments, str):
        return arguments
    if arguments is None:
        return EMPTY_ARGUMENTS
    try:
        return json.dumps(arguments)
    except (TypeError, ValueError) as e:
        logger.warning("Could not serialize tool arguments, sending {}: %s", e)
        return EMPTY_ARGUMENTS


def parse_tool_input(arguments: Any) -> JSON:
    """Tool-call arguments as a dict, ``{}`` when they are not a JSON object."""
    if isinstance(arguments, dict):
        return arguments
    try:
        value = json.loads(serialize_tool_arguments(arguments))
    except ValueError:
        logger.debug("Tool arguments are not valid JSON, sending {}")
        return {}
    return value if isinstance(value, dict) else {}


def _split_parts(
    msg: ChatMessage,
) -> tuple[str, list[ImagePart], list[ToolCallPart], list[ToolResultPart]]:
    texts: list[str] = []
    images: list[ImagePart] = []
    calls: list[ToolCallPart] = []
    results: list[ToolResultPart] = []
    for part in msg.content:
        if isinstance(part, TextPart):
            texts.append(part.value)
        elif isinstance(part, ImagePart):
            # cache_control markers travel as non-image data parts
            if part.is_image:
                images.append(part)
        elif isinstance(part, ToolCallPart):
            calls.append(part)
        elif isinstance(part, ToolResultPart):
            results.append(part)
    return "".join(texts), images, calls, results


def _has_text(text: str) -> bool:
    return bool(text.strip())


def _b64(image: ImagePart) -> str:
    return base64.b64encode(image.data).decode("ascii")


def _anthropic_image(image: ImagePart) -> JSON:
    return {
        "type": "image",
        "source": {"type": "base64", "media_type": image.mime_type, "data": _b64(image)},
    }


def _anthropic_result_content(result: ToolResultPart) -> str | list[JSON]:
    """Plain text, or text and image blocks when the result carries images."""
    text = result.text()
    images = result.images()
    if not images:
        return text
    blocks: list[JSON] = [{"type": "text", "text": text}] if _has_text(text) else []
    blocks.extend(_anthropic_image(image) for image in images)
    return blocks


# ---------- OpenAI chat-completions shape ----------


def to_openai_messages(messages: Iterable[ChatMessage]) -> MsgList:
    out: MsgList = []
    for msg in messages:
        text, images, calls, results = _split_parts(msg)

        if msg.role == "assistant":
            wire: JSON = {"role": "assistant"}
            if _has_text(text):
                wire["content"] = text
            if calls:
                wire["tool_calls"] = [
                    {
                        "id": call.call_id,
                        "type": "function",
                        "function": {
                            "name": call.name,
                            "arguments": serialize_tool_arguments(call.arguments),
                        },
                    }
                    for call in calls
                ]
            if len(wire) > 1:
                out.append(wire)

        for result in results:
            out.append(
                {"role": "tool", "tool_call_id": result.call_id, "content": result.text()}
            )

        if msg.role == "user":
            if images:
                content: list[JSON] = []
                if _has_text(text):
                    content.append({"type": "text", "text": text})
                for image in images:
                    content.append(
                        {
                            "type": "image_url",
                            "image_url": {"url": f"data:{image.mime_type};base64,{_b64(image)}"},
                        }
                    )
                out.append({"role": "user", "content": content})
            elif _has_text(text):
                out.append({"role": "user", "content": text})
        elif msg.role == "system" and _has_text(text):
            out.append({"role": "system", "content": text})

    return out


# ---------- Anthropic messages shape ----------


def to_anthropic_messages(messages: Iterable[ChatMessage]) -> MsgList:
    """
    Anthropic-shaped wire messages.

    System turns are kept as ``{"role": "system"}`` entries here; the request
    builder hoists them into the top-level ``system`` field.
    """
    out: MsgList = []
    for msg in messages:
        text, images, calls, results = _split_parts(msg)

        if msg.role == "assistant":
            blocks: list[JSON] = []
            if _has_text(text):
                blocks.append({"type": "text", "text": text})
            for call in calls:
                blocks.append(
                    {
                        "type": "tool_use",
                        "id": call.call_id,
                        "name": call.name,
                        "input": parse_tool_input(call.arguments),
                    }
                )
            if blocks:
                out.append({"role": "assistant", "content": blocks})

        for result in results:
            out.append(
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "tool_result",
                            "tool_use_id": result.call_id,
                            "content": _anthropic_result_content(result),
                        }
                    ],
                }
            )

        if msg.role == "user":
            if images:
                content: list[JSON] = []
                if _has_text(text):
                    content.append({"type": "text", "text": text})
                for image in images:
                    content.append(_anthropic_image(image))
                out.append({"role": "user", "content": content})
            elif _has_text(text):
                out.append({"role": "user", "content": text})
        elif msg.role == "system" and _has_text(text):
            out.append({"role": "system", "content": text})

    return out
