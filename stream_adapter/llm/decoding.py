# stream_adapter/llm/decoding.py
"""
Incremental decoding of streamed completion responses.

``StreamDecoder`` owns the byte-level concerns shared by every dialect:
UTF-8 decoding across chunk boundaries, newline framing, ``data:`` payload
extraction, the cancellation check between frames, and the end-of-stream
flush. What a payload means is delegated to a ``FrameHandler``:

- ``IndexedFrameHandler``: OpenAI-style chunks where tool-call fragments
  are addressed by ``index`` and flushed on ``finish_reason``.
- ``BlockFrameHandler``: Anthropic-style events where each tool call lives in
  a content block opened by ``content_block_start`` and closed by
  ``content_block_stop``.

Both handlers reassemble tool calls with a ``ToolCallAccumulator``.
"""

from __future__ import annotations

import codecs
import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from ..errors import DecodeError
from ..models import StreamEnd, StreamError, StreamEvent, TextDelta, ToolInvocation
from .base import JSON

if TYPE_CHECKING:
    from ..cancellation import AbortSignal

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"

STOP_MAP = {
    "end_turn": "stop",
    "stop_sequence": "stop",
    "tool_use": "tool_calls",
    "max_tokens": "length",
}

# finish reasons that close out the tool-call buffers of an indexed stream
FLUSH_REASONS = frozenset({"tool_calls", "stop"})


def normalize_finish_reason(reason: str | None) -> str | None:
    if not reason:
        return None
    return STOP_MAP.get(reason, reason)


# ---------- tool-call reassembly ----------


@dataclass(slots=True)
class ToolCallBuffer:
    index: int
    id: str | None = None
    name: str | None = None
    fragments: list[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return bool(self.id and self.name)

    def to_invocation(self) -> ToolInvocation:
        arguments = "".join(self.fragments)
        return ToolInvocation(self.id or "", self.name or "", arguments or "{}")


class ToolCallAccumulator:
    """
    Buffers partial tool-call fragments keyed by their stream index.

    A buffer is created the first time an index is seen and destroyed when it
    is flushed or discarded. Buffers lacking an id or a name at flush time
    are dropped.
    """

    def __init__(self) -> None:
        self._buffers: dict[int, ToolCallBuffer] = {}

    def __len__(self) -> int:
        return len(self._buffers)

    def update(
        self,
        index: int,
        *,
        call_id: str | None = None,
        name: str | None = None,
        arguments: str | None = None,
    ) -> None:
        buf = self._buffers.get(index)
        if buf is None:
            buf = self._buffers[index] = ToolCallBuffer(index)
        if call_id:
            buf.id = call_id
        if name:
            buf.name = name
        if arguments:
            buf.fragments.append(arguments)

    def flush(self) -> list[ToolInvocation]:
        """Emit every complete buffer in index order and clear them all."""
        out = []
        for index in sorted(self._buffers):
            buf = self._buffers[index]
            if buf.complete:
                out.append(buf.to_invocation())
            else:
                logger.debug("Dropping incomplete tool call at index %d", index)
        self._buffers.clear()
        return out

    def flush_index(self, index: int) -> ToolInvocation | None:
        buf = self._buffers.pop(index, None)
        if buf is None:
            return None
        if not buf.complete:
            logger.debug("Dropping incomplete tool call at index %d", index)
            return None
        return buf.to_invocation()

    def discard(self) -> int:
        count = len(self._buffers)
        self._buffers.clear()
        return count


# ---------- frame handlers ----------


class FrameHandler(Protocol):
    sentinel: str | None
    tool_calls: ToolCallAccumulator

    def handle(self, data: JSON) -> list[StreamEvent]:
        """Events for one decoded payload; a StreamEnd or StreamError ends the stream."""
        ...

    def end(self) -> list[StreamEvent]:
        """Flush outstanding tool calls and close the stream."""
        ...


def _index(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise DecodeError(f"tool-call index is not an integer: {value!r}")
    return value


def _str_or_none(value: Any) -> str | None:
    return value if isinstance(value, str) else None


class IndexedFrameHandler:
    """OpenAI chat-completions chunks (also Gemini and Ollama compatibility endpoints)."""

    sentinel = DONE_SENTINEL

    def __init__(self) -> None:
        self.tool_calls = ToolCallAccumulator()
        self.finish_reason: str | None = None

    def handle(self, data: JSON) -> list[StreamEvent]:
        events: list[StreamEvent] = []

        if isinstance(data.get("error"), dict):
            error = data["error"]
            return [StreamError(str(error.get("message") or "stream error"))]

        choices = data.get("choices") or []
        if not choices:
            return events
        choice = choices[0]
        delta = choice.get("delta") or {}

        content = delta.get("content")
        if isinstance(content, str) and content:
            events.append(TextDelta(content))

        for tc in delta.get("tool_calls") or []:
            fn = tc.get("function") or {}
            self.tool_calls.update(
                _index(tc.get("index")),
                call_id=_str_or_none(tc.get("id")),
                name=_str_or_none(fn.get("name")),
                arguments=_str_or_none(fn.get("arguments")),
            )

        reason = choice.get("finish_reason")
        if reason:
            self.finish_reason = normalize_finish_reason(reason)
            if reason in FLUSH_REASONS:
                events.extend(self.tool_calls.flush())

        return events

    def end(self) -> list[StreamEvent]:
        return [*self.tool_calls.flush(), StreamEnd(self.finish_reason)]


class BlockFrameHandler:
    """Anthropic messages-API events."""

    sentinel = None

    def __init__(self) -> None:
        self.tool_calls = ToolCallAccumulator()
        self.finish_reason: str | None = None

    def handle(self, data: JSON) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        event_type = data.get("type")

        if event_type == "content_block_start":
            block = data.get("content_block") or {}
            if block.get("type") == "tool_use":
                self.tool_calls.update(
                    _index(data.get("index")),
                    call_id=_str_or_none(block.get("id")),
                    name=_str_or_none(block.get("name")),
                )

        elif event_type == "content_block_delta":
            delta = data.get("delta") or {}
            delta_type = delta.get("type")
            if delta_type == "text_delta":
                text = delta.get("text")
                if isinstance(text, str) and text:
                    events.append(TextDelta(text))
            elif delta_type == "input_json_delta":
                self.tool_calls.update(
                    _index(data.get("index")),
                    arguments=_str_or_none(delta.get("partial_json")),
                )

        elif event_type == "content_block_stop":
            invocation = self.tool_calls.flush_index(_index(data.get("index")))
            if invocation is not None:
                events.append(invocation)

        elif event_type == "message_delta":
            reason = (data.get("delta") or {}).get("stop_reason")
            if reason:
                self.finish_reason = normalize_finish_reason(reason)

        elif event_type == "message_stop":
            events.extend(self.end())

        elif event_type == "error":
            error = data.get("error") or {}
            events.append(StreamError(str(error.get("message") or "stream error")))

        return events

    def end(self) -> list[StreamEvent]:
        return [*self.tool_calls.flush(), StreamEnd(self.finish_reason)]


# ---------- byte framing ----------


class LineSplitter:
    """Incremental UTF-8 decoding plus newline framing."""

    def __init__(self) -> None:
        # holds at most one incomplete multi-byte sequence between chunks
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._partial = ""

    def feed(self, chunk: bytes) -> list[str]:
        text = self._partial + self._decoder.decode(chunk)
        lines = text.split("\n")
        self._partial = lines.pop()
        return [line.rstrip("\r") for line in lines]

    def finish(self) -> list[str]:
        text = self._partial + self._decoder.decode(b"", final=True)
        self._partial = ""
        return [line.rstrip("\r") for line in text.split("\n")]


def frame_payload(line: str) -> str | None:
    """The payload of a ``data:`` line; None for every other line."""
    line = line.strip()
    if not line.startswith(DATA_PREFIX):
        return None
    return line[len(DATA_PREFIX):].strip()


class StreamDecoder:
    """
    State machine over the response byte stream.

    ``feed`` returns the events produced by one chunk; ``finish`` is called
    once the bytes are exhausted. After the stream ends (sentinel, terminal
    error or ``finish``) or the abort signal fires, further input is ignored.
    """

    def __init__(self, handler: FrameHandler, signal: AbortSignal | None = None):
        self.handler = handler
        self.signal = signal
        self._lines = LineSplitter()
        self.finished = False
        self.aborted = False

    @property
    def done(self) -> bool:
        return self.finished or self.aborted

    def feed(self, chunk: bytes) -> list[StreamEvent]:
        if self.done:
            return []
        return self._process(self._lines.feed(chunk))

    def finish(self) -> list[StreamEvent]:
        """End of bytes: drain the partial line, flush complete buffers, emit StreamEnd."""
        if self.done:
            return []
        events = self._process(self._lines.finish())
        if self.done:
            return events
        events.extend(self.handler.end())
        self.finished = True
        return events

    def abort(self) -> None:
        """Drop buffered tool calls and stop; no StreamEnd is emitted."""
        if self.aborted:
            return
        self.aborted = True
        dropped = self.handler.tool_calls.discard()
        if dropped:
            logger.debug("Discarded %d pending tool call(s) on abort", dropped)

    def _process(self, lines: list[str]) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        for line in lines:
            if self.signal is not None and self.signal.aborted:
                self.abort()
                break

            payload = frame_payload(line)
            if not payload:
                continue

            if self.handler.sentinel is not None and payload == self.handler.sentinel:
                events.extend(self.handler.end())
                self.finished = True
                break

            try:
                events.extend(self._handle_payload(payload))
            except DecodeError as e:
                logger.debug("Skipping malformed frame: %s", e)
                continue

            if events and isinstance(events[-1], (StreamEnd, StreamError)):
                self.finished = True
                break
        return events

    def _handle_payload(self, payload: str) -> list[StreamEvent]:
        try:
            data = json.loads(payload)
        except ValueError as e:
            raise DecodeError(f"invalid JSON: {payload[:100]!r}") from e
        if not isinstance(data, dict):
            raise DecodeError(f"payload is not an object: {payload[:100]!r}")

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("Frame: %s", payload[:500])

        try:
            return self.handler.handle(data)
        except (AttributeError, KeyError, TypeError) as e:
            raise DecodeError(f"unexpected frame structure: {e}") from e
