# stream_adapter/llm/request_builder.py
from __future__ import annotations

import copy
import re
from collections.abc import Iterable
from typing import Any

from ..models import ToolDescriptor
from .base import JSON, MsgList, ToolList

TOOL_NAME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9_-]{0,63}$")
TOOL_NAME_MAX_LENGTH = 64
_INVALID_NAME_CHARS = re.compile(r"[^A-Za-z0-9_-]")
_LEADING_LETTER = re.compile(r"^[A-Za-z]")

EMPTY_OBJECT_SCHEMA: JSON = {"type": "object", "properties": {}}


def sanitize_tool_name(name: Any) -> str:
    """Coerce a tool name into ``^[A-Za-z][A-Za-z0-9_-]{0,63}$``."""
    if not isinstance(name, str) or not name:
        return "tool"
    if TOOL_NAME_PATTERN.match(name):
        return name
    sanitized = _INVALID_NAME_CHARS.sub("_", name)
    if not _LEADING_LETTER.match(sanitized):
        sanitized = f"fn_{sanitized}"
    return sanitized[:TOOL_NAME_MAX_LENGTH]


def _schema(value: Any) -> JSON | None:
    return value if isinstance(value, dict) else None


def _text(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _coerce_tool(tool: ToolDescriptor | Any) -> ToolDescriptor:
    """Descriptor for *tool*; malformed fields fall back to defaults."""
    if isinstance(tool, ToolDescriptor):
        return tool
    if not isinstance(tool, dict):
        return ToolDescriptor(name="")
    # OpenAI-shaped {"type": "function", "function": {...}} entries
    if tool.get("type") == "function" and isinstance(tool.get("function"), dict):
        fn = tool["function"]
        return ToolDescriptor(
            name=_text(fn.get("name")) or "",
            description=_text(fn.get("description")),
            input_schema=_schema(fn.get("parameters")),
        )
    schema = tool.get("inputSchema", tool.get("input_schema"))
    return ToolDescriptor(
        name=_text(tool.get("name")) or "",
        description=_text(tool.get("description")),
        input_schema=_schema(schema),
    )


def _parameters(tool: ToolDescriptor) -> JSON:
    return copy.deepcopy(tool.input_schema or EMPTY_OBJECT_SCHEMA)


def _description(tool: ToolDescriptor) -> str | None:
    if tool.description and tool.description.strip():
        return tool.description
    return None


def to_openai_tools(tools: Iterable[ToolDescriptor | JSON]) -> list[JSON]:
    res = []
    for t in map(_coerce_tool, tools):
        fn: JSON = {"name": sanitize_tool_name(t.name)}
        if description := _description(t):
            fn["description"] = description
        fn["parameters"] = _parameters(t)
        res.append({"type": "function", "function": fn})
    return res


def to_anthropic_tools(tools: Iterable[ToolDescriptor | JSON]) -> list[JSON]:
    res = []
    for t in map(_coerce_tool, tools):
        entry: JSON = {"name": sanitize_tool_name(t.name)}
        if description := _description(t):
            entry["description"] = description
        entry["input_schema"] = _parameters(t)
        res.append(entry)
    return res


# ---------- request bodies ----------


def build_openai_body(
    model_id: str,
    messages: MsgList,
    tools: ToolList,
    max_output_tokens: int,
) -> JSON:
    payload: JSON = {
        "model": model_id,
        "messages": list(messages),
        "max_tokens": max_output_tokens,
        "stream": True,
    }
    if tools:
        payload["tools"] = to_openai_tools(tools)
    return payload


def _as_blocks(content: str | list[JSON]) -> list[JSON]:
    if isinstance(content, str):
        return [{"type": "text", "text": content}]
    return list(content)


def _merge_adjacent(messages: MsgList) -> MsgList:
    """Merge same-role neighbours into new messages; inputs stay untouched."""
    merged: MsgList = []
    for m in messages:
        if merged and merged[-1]["role"] == m["role"]:
            prev = merged[-1]
            merged[-1] = {
                "role": prev["role"],
                "content": _as_blocks(prev["content"]) + _as_blocks(m["content"]),
            }
        else:
            merged.append(m)
    return merged


def build_anthropic_body(
    model_id: str,
    messages: MsgList,
    tools: ToolList,
    max_output_tokens: int,
) -> JSON:
    system_parts = [m["content"] for m in messages if m["role"] == "system"]
    conversation = _merge_adjacent([m for m in messages if m["role"] != "system"])

    # The API requires the first turn to come from the user
    if conversation and conversation[0]["role"] == "assistant":
        conversation.insert(0, {"role": "user", "content": [{"type": "text", "text": "(continue)"}]})
    if not conversation:
        conversation.append({"role": "user", "content": [{"type": "text", "text": "(start)"}]})

    payload: JSON = {
        "model": model_id,
        "messages": conversation,
        "max_tokens": max_output_tokens,
        "stream": True,
    }
    if system_parts:
        payload["system"] = "".join(system_parts)
    if tools:
        payload["tools"] = to_anthropic_tools(tools)
    return payload
