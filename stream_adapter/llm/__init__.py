from .base import DialectAdapter
from .decoding import (
    BlockFrameHandler,
    IndexedFrameHandler,
    StreamDecoder,
    ToolCallAccumulator,
    normalize_finish_reason,
)
from .dialects import (
    AnthropicDialect,
    OpenAICompatibleDialect,
    build_request,
    create_decoder,
    get_dialect,
    normalize_messages,
)
from .normalizer import parse_tool_input, serialize_tool_arguments
from .request_builder import sanitize_tool_name, to_anthropic_tools, to_openai_tools

__all__ = [
    "AnthropicDialect",
    "BlockFrameHandler",
    "DialectAdapter",
    "IndexedFrameHandler",
    "OpenAICompatibleDialect",
    "StreamDecoder",
    "ToolCallAccumulator",
    "build_request",
    "create_decoder",
    "get_dialect",
    "normalize_finish_reason",
    "normalize_messages",
    "parse_tool_input",
    "sanitize_tool_name",
    "serialize_tool_arguments",
    "to_anthropic_tools",
    "to_openai_tools",
]
