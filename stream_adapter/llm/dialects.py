# stream_adapter/llm/dialects.py
from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

from ..models import ChatMessage, Dialect
from .base import JSON, DialectAdapter, MsgList, ToolList
from .decoding import BlockFrameHandler, IndexedFrameHandler, StreamDecoder
from .normalizer import to_anthropic_messages, to_openai_messages
from .request_builder import build_anthropic_body, build_openai_body

if TYPE_CHECKING:
    from ..cancellation import AbortSignal
    from ..config import ProviderConfig


class OpenAICompatibleDialect(DialectAdapter):
    """
    Works unchanged for:
      • api.openai.com and OpenAI-compatible vendors (GLM, OpenRouter, ...)
      • Gemini's OpenAI compatibility endpoint
      • Ollama's /v1 endpoint
    """

    def normalize(self, messages: Sequence[ChatMessage]) -> MsgList:
        return to_openai_messages(messages)

    def build_body(
        self, model_id: str, messages: MsgList, tools: ToolList, max_output_tokens: int
    ) -> JSON:
        return build_openai_body(model_id, messages, tools, max_output_tokens)

    def auth_headers(self, provider: ProviderConfig, api_key: str | None) -> dict[str, str]:
        if not api_key:
            return {}
        return {"Authorization": f"Bearer {api_key}"}

    def create_decoder(self, signal: AbortSignal | None = None) -> StreamDecoder:
        return StreamDecoder(IndexedFrameHandler(), signal)


class AnthropicDialect(DialectAdapter):
    def normalize(self, messages: Sequence[ChatMessage]) -> MsgList:
        return to_anthropic_messages(messages)

    def build_body(
        self, model_id: str, messages: MsgList, tools: ToolList, max_output_tokens: int
    ) -> JSON:
        return build_anthropic_body(model_id, messages, tools, max_output_tokens)

    def auth_headers(self, provider: ProviderConfig, api_key: str | None) -> dict[str, str]:
        headers = {"anthropic-version": provider.anthropic_version}
        if api_key:
            headers["x-api-key"] = api_key
        return headers

    def create_decoder(self, signal: AbortSignal | None = None) -> StreamDecoder:
        return StreamDecoder(BlockFrameHandler(), signal)


_OPENAI_COMPATIBLE = OpenAICompatibleDialect()

DIALECTS: dict[Dialect, DialectAdapter] = {
    Dialect.OPENAI: _OPENAI_COMPATIBLE,
    Dialect.GEMINI: _OPENAI_COMPATIBLE,
    Dialect.OLLAMA: _OPENAI_COMPATIBLE,
    Dialect.ANTHROPIC: AnthropicDialect(),
}


def get_dialect(dialect: Dialect | str) -> DialectAdapter:
    try:
        return DIALECTS[Dialect(dialect)]
    except ValueError as e:
        raise ValueError(f"Unknown wire dialect: {dialect}") from e


# ---------- functional entry points ----------


def normalize_messages(messages: Sequence[ChatMessage], dialect: Dialect | str) -> MsgList:
    return get_dialect(dialect).normalize(messages)


def build_request(
    model_id: str,
    messages: MsgList,
    tools: ToolList,
    max_output_tokens: int,
    dialect: Dialect | str,
) -> JSON:
    """Streaming request body for ``dialect``; ``stream`` is always true."""
    return get_dialect(dialect).build_body(model_id, messages, tools, max_output_tokens)


def create_decoder(dialect: Dialect | str, signal: AbortSignal | None = None) -> StreamDecoder:
    return get_dialect(dialect).create_decoder(signal)
