"""Streaming chat-completion protocol adapter."""

from .cancellation import AbortSignal, CancellationCoordinator
from .client import ChatAdapter
from .config import Configuration, ProviderConfig
from .errors import (
    AdapterError,
    CancellationError,
    ConfigurationError,
    DecodeError,
    ModelFetchError,
    TransportError,
)
from .model_registry import ModelRegistry, build_models_url, convert_remote_model
from .models import (
    ChatMessage,
    CompletionResult,
    Dialect,
    ImagePart,
    ModelDescriptor,
    StreamEnd,
    StreamError,
    TextDelta,
    TextPart,
    ToolCallPart,
    ToolDescriptor,
    ToolInvocation,
    ToolResultPart,
)
from .tokens import estimate_tokens
from .transport import HttpConfig, HttpTransport

__all__ = [
    "AbortSignal",
    "AdapterError",
    "CancellationCoordinator",
    "CancellationError",
    "ChatAdapter",
    "ChatMessage",
    "CompletionResult",
    "Configuration",
    "ConfigurationError",
    "DecodeError",
    "Dialect",
    "HttpConfig",
    "HttpTransport",
    "ImagePart",
    "ModelDescriptor",
    "ModelFetchError",
    "ModelRegistry",
    "ProviderConfig",
    "StreamEnd",
    "StreamError",
    "TextDelta",
    "TextPart",
    "ToolCallPart",
    "ToolDescriptor",
    "ToolInvocation",
    "ToolResultPart",
    "TransportError",
    "build_models_url",
    "convert_remote_model",
    "estimate_tokens",
]
