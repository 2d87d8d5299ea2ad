"""
Token estimation.

A character-based approximation (one token per four characters) that needs
no tokenizer; good enough for context budgeting, not for billing.
"""

from __future__ import annotations

import json
import math
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import BaseModel

CHARS_PER_TOKEN = 4


def _estimate_text(text: str) -> int:
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_tokens(value: str | BaseModel | Mapping[str, Any] | None) -> int:
    """``ceil(len / 4)`` of a string, or of a message's JSON serialization."""
    if value is None:
        return 0
    if isinstance(value, str):
        return _estimate_text(value)
    if isinstance(value, BaseModel):
        return _estimate_text(value.model_dump_json())
    return _estimate_text(json.dumps(value, default=str))


def _wire_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            block["text"]
            for block in content
            if isinstance(block, dict) and block.get("type") == "text" and block.get("text")
        )
    return ""


def estimate_messages_tokens(messages: Iterable[Mapping[str, Any]]) -> int:
    """Wire messages: text content plus role (and name) overhead."""
    total = 0
    for message in messages:
        total += _estimate_text(_wire_text(message.get("content")))
        total += _estimate_text(message.get("role", "")) + 1
        if name := message.get("name"):
            total += _estimate_text(name) + 1
    return total


def estimate_tool_tokens(tools: Iterable[Any] | None) -> int:
    tools = list(tools or [])
    if not tools:
        return 0
    payload = [t.model_dump(by_alias=True) if isinstance(t, BaseModel) else t for t in tools]
    try:
        return _estimate_text(json.dumps(payload))
    except (TypeError, ValueError):
        return 0


def remaining_context(
    total_context_length: int,
    messages: Iterable[Mapping[str, Any]],
    tools: Iterable[Any] | None,
    reserved_output_tokens: int,
) -> int:
    """Context space left after messages, tools and the reserved output."""
    used = estimate_messages_tokens(messages) + estimate_tool_tokens(tools)
    return max(0, total_context_length - used - reserved_output_tokens)
