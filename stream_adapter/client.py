"""
ChatAdapter: the completion-call façade a host talks to.

It resolves the provider's dialect strategy and credentials, runs streaming
completion calls through the normalizer, request builder, transport and
decoder, and serves the provider's model list.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from contextlib import aclosing
from typing import Any

from .cancellation import CancellationCoordinator
from .config import Configuration, ProviderConfig
from .errors import CancellationError, ConfigurationError, ModelFetchError, TransportError
from .llm.base import ToolList
from .llm.dialects import get_dialect
from .model_registry import ModelRegistry
from .models import (
    ChatMessage,
    CompletionResult,
    ModelDescriptor,
    StreamEnd,
    StreamError,
    StreamEvent,
    TextDelta,
    ToolInvocation,
)
from .tokens import estimate_tokens
from .transport import HttpConfig, HttpTransport

logger = logging.getLogger(__name__)

ProgressSink = Callable[[TextDelta | ToolInvocation], Awaitable[None] | None]
MessageInput = ChatMessage | dict[str, Any]


class ChatAdapter:
    """
    Thin façade: choose dialect strategy, forward calls.
    """

    def __init__(
        self,
        provider: ProviderConfig,
        api_key: str | None = None,
        http_config: HttpConfig | None = None,
        transport: HttpTransport | None = None,
    ) -> None:
        self.provider = provider
        self.api_key = api_key
        self.dialect = get_dialect(provider.dialect)

        self._owns_transport = transport is None
        self.transport = transport or HttpTransport(http_config)
        self.registry = ModelRegistry.for_provider(
            provider, self.transport, headers=self._headers
        )

    @classmethod
    def from_config(
        cls,
        configuration: Configuration,
        provider_name: str | None = None,
        transport: HttpTransport | None = None,
    ) -> ChatAdapter:
        """
        Build an adapter for a configured provider.

        Raises:
            ConfigurationError: If the provider is unknown or its key is missing.
        """
        provider = configuration.get_provider_config(provider_name)
        api_key = configuration.api_key_for(provider)
        return cls(
            provider,
            api_key=api_key,
            http_config=configuration.get_http_config(),
            transport=transport,
        )

    async def __aenter__(self) -> ChatAdapter:
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.aclose()

    # ---------- public ----------

    def provide_token_count(self, value: str | ChatMessage) -> int:
        return estimate_tokens(value)

    async def available_models(self, force_refresh: bool = False) -> list[ModelDescriptor]:
        """
        Models offered by the provider.

        Providers without a dynamic model list return their configured models.
        When a fetch fails with nothing cached, the configured models are the
        fallback; with none configured the ModelFetchError propagates.
        """
        if not self.provider.dynamic_models:
            return list(self.provider.models)

        self._require_api_key()
        try:
            return await self.registry.get_models(force_refresh=force_refresh)
        except ModelFetchError as e:
            if not self.provider.models:
                raise
            logger.warning(
                "Using %d configured models for %s: %s",
                len(self.provider.models),
                self.provider.display_name,
                e,
            )
            return list(self.provider.models)

    async def complete(
        self,
        model_id: str,
        messages: Sequence[MessageInput],
        tools: ToolList = None,
        max_output_tokens: int | None = None,
        progress: ProgressSink | None = None,
        cancel_event: asyncio.Event | None = None,
        timeout: float | None = None,
    ) -> CompletionResult:
        """
        Run one streaming completion call.

        Text deltas and tool invocations are reported to ``progress`` as they
        are decoded. Cancellation (host event or timeout) stops the call
        silently: the result comes back with ``cancelled=True``.

        Raises:
            TransportError: If the request or the stream fails.
            ConfigurationError: If the provider's API key is missing.
        """
        result = CompletionResult()
        coordinator = CancellationCoordinator(cancel_event, self._timeout(timeout))

        async with coordinator:
            events = self._stream(model_id, messages, tools, max_output_tokens, coordinator)
            async with aclosing(events):
                async for event in events:
                    if isinstance(event, StreamError):
                        raise TransportError(event.message, status_code=event.status_code)
                    if isinstance(event, StreamEnd):
                        result.finish_reason = event.finish_reason
                        continue
                    if isinstance(event, TextDelta):
                        result.text += event.text
                    else:
                        result.tool_calls.append(event)
                    if progress is not None:
                        await _report(progress, event)
                    if coordinator.signal.aborted:
                        break

        if coordinator.signal.aborted:
            result.cancelled = True
            result.reason = coordinator.signal.reason
        return result

    async def stream_events(
        self,
        model_id: str,
        messages: Sequence[MessageInput],
        tools: ToolList = None,
        max_output_tokens: int | None = None,
        cancel_event: asyncio.Event | None = None,
        timeout: float | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """
        Async-generator form of ``complete``.

        Yields TextDelta and ToolInvocation events, then a StreamEnd. A
        transport failure ends the stream with a StreamError instead.
        Cancellation ends it without either.
        """
        coordinator = CancellationCoordinator(cancel_event, self._timeout(timeout))
        async with coordinator:
            events = self._stream(model_id, messages, tools, max_output_tokens, coordinator)
            async with aclosing(events):
                async for event in events:
                    yield event

    async def aclose(self) -> None:
        await self.registry.aclose()
        if self._owns_transport:
            await self.transport.close()

    # ---------- helpers ----------

    def _timeout(self, timeout: float | None) -> float | None:
        return timeout if timeout is not None else self.provider.request_timeout

    def _require_api_key(self) -> None:
        if self.provider.requires_api_key and not self.api_key:
            raise ConfigurationError(
                f"API key not configured for {self.provider.display_name}: "
                f"set {self.provider.api_key_env_name}"
            )

    def _headers(self) -> dict[str, str]:
        return self.dialect.request_headers(self.provider, self.api_key)

    async def _stream(
        self,
        model_id: str,
        messages: Sequence[MessageInput],
        tools: ToolList,
        max_output_tokens: int | None,
        coordinator: CancellationCoordinator,
    ) -> AsyncIterator[StreamEvent]:
        self._require_api_key()

        wire_messages = self.dialect.normalize(coerce_messages(messages))
        body = self.dialect.build_body(
            model_id,
            wire_messages,
            tools,
            max_output_tokens or self.provider.default_max_output_tokens,
        )
        logger.info(
            "Streaming %s via %s (%d messages, %d tools)",
            model_id,
            self.provider.display_name,
            len(wire_messages),
            len(tools or []),
        )

        signal = coordinator.signal
        decoder = self.dialect.create_decoder(signal)
        chunks = self.transport.stream_post(self.provider.base_url, body, self._headers())

        try:
            async with aclosing(coordinator.guard(chunks)) as guarded:
                async for chunk in guarded:
                    for event in decoder.feed(chunk):
                        signal.raise_if_aborted()
                        yield event
                    if decoder.done:
                        break
            signal.raise_if_aborted()
            if not decoder.done:
                for event in decoder.finish():
                    yield event
        except CancellationError as e:
            decoder.abort()
            logger.info("Completion for %s stopped (%s)", model_id, e.reason)
        except TransportError as e:
            logger.error("Streaming request to %s failed: %s", self.provider.display_name, e)
            yield StreamError(str(e), status_code=e.status_code)


async def _report(progress: ProgressSink, event: TextDelta | ToolInvocation) -> None:
    outcome = progress(event)
    if inspect.isawaitable(outcome):
        await outcome


def coerce_messages(messages: Sequence[MessageInput]) -> list[ChatMessage]:
    return [
        m if isinstance(m, ChatMessage) else ChatMessage.model_validate(m)
        for m in messages
    ]
