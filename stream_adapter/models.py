"""
Canonical data models for the stream adapter.

Host-facing input (ChatMessage and its content parts, ToolDescriptor) and
model metadata (ModelDescriptor) are pydantic v2 models so they are validated
once at the boundary. Stream events are small slotted dataclasses that the
decoder creates at high frequency.

Content parts carry an explicit ``kind`` tag; parts whose tag is not one of
the known kinds are dropped while the owning message is validated.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)

Role = Literal["system", "user", "assistant", "tool"]


class Dialect(str, Enum):
    """Vendor wire schema family selected per provider."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"
    OLLAMA = "ollama"


# ---------- Content parts ----------


class TextPart(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["text"] = "text"
    value: str


class ImagePart(BaseModel):
    model_config = ConfigDict(frozen=True, ser_json_bytes="base64")

    kind: Literal["image"] = "image"
    mime_type: str
    data: bytes

    @property
    def is_image(self) -> bool:
        """False for non-image data parts such as cache-control markers."""
        return self.mime_type.startswith("image/")


class ToolCallPart(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["tool_call"] = "tool_call"
    call_id: str
    name: str
    # Either a pre-serialized JSON string or any JSON-compatible object
    arguments: Any = None


# ---------- helpers ----------


def _drop_unknown(value: Any, kinds: frozenset[str], keep_strings: bool = False) -> Any:
    """Drop list entries whose ``kind`` tag is not in *kinds*."""
    if not isinstance(value, list):
        return value
    kept = []
    for part in value:
        if keep_strings and isinstance(part, str):
            kept.append(part)
            continue
        if isinstance(part, dict):
            kind = part.get("kind")
        else:
            kind = getattr(part, "kind", None)
        if kind in kinds:
            kept.append(part)
        else:
            logger.debug("Dropping content part of unknown kind %r", kind)
    return kept


ResultItem = Annotated[TextPart | ImagePart, Field(discriminator="kind")]

RESULT_ITEM_KINDS = frozenset({"text", "image"})


class ToolResultPart(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["tool_result"] = "tool_result"
    call_id: str
    content: list[str | ResultItem] = []

    @field_validator("content", mode="before")
    @classmethod
    def _drop_unknown_items(cls, value: Any) -> Any:
        return _drop_unknown(value, RESULT_ITEM_KINDS, keep_strings=True)

    def text(self) -> str:
        """Newline-joined text of the result items; non-text items are skipped."""
        out: list[str] = []
        for item in self.content:
            if isinstance(item, str):
                value = item
            elif isinstance(item, TextPart):
                value = item.value
            else:
                continue
            if value:
                out.append(value)
        return "\n".join(out)

    def images(self) -> list[ImagePart]:
        return [
            item for item in self.content if isinstance(item, ImagePart) and item.is_image
        ]


ContentPart = Annotated[
    TextPart | ImagePart | ToolCallPart | ToolResultPart,
    Field(discriminator="kind"),
]

KNOWN_PART_KINDS = frozenset({"text", "image", "tool_call", "tool_result"})


class ChatMessage(BaseModel):
    """One host chat message; read-only and consumed once per call."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: list[ContentPart] = []

    @field_validator("content", mode="before")
    @classmethod
    def _drop_unknown_parts(cls, value: Any) -> Any:
        return _drop_unknown(value, KNOWN_PART_KINDS)


# ---------- Tools and models ----------


class ToolDescriptor(BaseModel):
    """A tool the host offers to the model."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    description: str | None = None
    input_schema: dict[str, Any] | None = Field(default=None, alias="inputSchema")


class ModelDescriptor(BaseModel):
    id: str
    name: str
    max_input_tokens: int
    max_output_tokens: int
    supports_tools: bool = True
    supports_vision: bool = False
    provider_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


# ---------- Stream events ----------


@dataclass(slots=True, frozen=True)
class TextDelta:
    text: str


@dataclass(slots=True, frozen=True)
class ToolInvocation:
    """A fully reassembled tool call, emitted once per call."""

    call_id: str
    name: str
    arguments: str

    def parsed_arguments(self) -> dict[str, Any]:
        """Arguments as a dict; ``{}`` when they are not a JSON object."""
        try:
            value = json.loads(self.arguments)
        except ValueError:
            return {}
        return value if isinstance(value, dict) else {}


@dataclass(slots=True, frozen=True)
class StreamEnd:
    finish_reason: str | None = None


@dataclass(slots=True, frozen=True)
class StreamError:
    message: str
    status_code: int | None = None


StreamEvent = TextDelta | ToolInvocation | StreamEnd | StreamError


@dataclass(slots=True)
class CompletionResult:
    """Terminal outcome of one completion call."""

    cancelled: bool = False
    reason: str | None = None
    finish_reason: str | None = None
    text: str = ""
    tool_calls: list[ToolInvocation] = field(default_factory=list)
