"""
Provider model list with caching.

``ModelRegistry`` owns the cache for one provider: a TTL-bounded entry list,
the timestamp of the last successful fetch, and at most one in-flight fetch
shared by every concurrent caller. A failed refresh falls back to the stale
entries when there are any.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, ValidationError

from .errors import ModelFetchError
from .models import ModelDescriptor

if TYPE_CHECKING:
    from .config import ProviderConfig
    from .transport import HttpTransport

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL = 300.0
DEFAULT_FETCH_TIMEOUT = 30.0

ModelFetcher = Callable[[], Awaitable[list[ModelDescriptor]]]

_ENDPOINT_SUFFIXES = ("/chat/completions", "/messages")


# ---------- remote payloads ----------


class RemoteCapabilities(BaseModel):
    model_config = ConfigDict(extra="allow")

    vision: bool | None = None
    function_calling: bool | None = None
    tool_use: bool | None = None


class RemoteModel(BaseModel):
    """One entry of a ``/models`` listing; unknown fields are kept."""

    model_config = ConfigDict(extra="allow")

    id: str
    object: str | None = None
    created: int | None = None
    owned_by: str | None = None
    display_name: str | None = None
    context_length: int | None = None
    max_tokens: int | None = None
    max_completion_tokens: int | None = None
    capabilities: RemoteCapabilities | None = None


def build_models_url(base_url: str) -> str:
    """
    Derive the models endpoint from a provider's completion URL.

    >>> build_models_url("https://api.example.com/v1/chat/completions/")
    'https://api.example.com/v1/models'
    >>> build_models_url("https://api.example.com/v4")
    'https://api.example.com/v4/models'
    """
    url = base_url.rstrip("/")
    for suffix in _ENDPOINT_SUFFIXES:
        if url.endswith(suffix):
            return url[: -len(suffix)] + "/models"
    # version-segment URLs (".../v1") and anything else get /models appended
    return f"{url}/models"


def convert_remote_model(remote: RemoteModel, provider: ProviderConfig) -> ModelDescriptor:
    if remote.max_completion_tokens is not None:
        max_output = remote.max_completion_tokens
    elif remote.max_tokens is not None:
        max_output = remote.max_tokens
    else:
        max_output = provider.default_max_output_tokens
    context = (
        remote.context_length
        if remote.context_length is not None
        else provider.default_context_length
    )

    caps = remote.capabilities
    supports_tools = provider.supports_tools
    supports_vision = provider.supports_vision
    if caps is not None:
        if caps.function_calling is not None:
            supports_tools = caps.function_calling
        elif caps.tool_use is not None:
            supports_tools = caps.tool_use
        if caps.vision is not None:
            supports_vision = caps.vision

    return ModelDescriptor(
        id=remote.id,
        name=remote.display_name or remote.id,
        max_input_tokens=max(1, context - max_output),
        max_output_tokens=max_output,
        supports_tools=supports_tools,
        supports_vision=supports_vision,
        provider_id=provider.id,
        metadata={
            "owned_by": remote.owned_by,
            "created": remote.created,
            "context_length": context,
        },
    )


def parse_models_response(data: Any, provider: ProviderConfig) -> list[ModelDescriptor]:
    """Descriptors from a ``{"data": [...]}`` (or bare list) response body."""
    items = data.get("data") if isinstance(data, dict) else data
    if not isinstance(items, list):
        raise ModelFetchError(f"Unexpected models response from {provider.display_name}")

    models = []
    for item in items:
        try:
            remote = RemoteModel.model_validate(item)
        except ValidationError as e:
            logger.debug("Skipping unparseable model entry %r: %s", item, e)
            continue
        if provider.model_id_prefix and not remote.id.startswith(provider.model_id_prefix):
            continue
        models.append(convert_remote_model(remote, provider))
    return models


async def fetch_models(
    transport: HttpTransport,
    provider: ProviderConfig,
    headers: dict[str, str] | None = None,
) -> list[ModelDescriptor]:
    url = build_models_url(provider.base_url)
    logger.debug("Fetching models for %s from %s", provider.display_name, url)
    data = await transport.get_json(url, headers=headers)
    models = parse_models_response(data, provider)
    logger.info("Fetched %d models for %s", len(models), provider.display_name)
    return models


# ---------- cache ----------


class ModelRegistry:
    """
    TTL cache around a model fetcher with single-flight refreshes.

    Args:
        fetcher: Coroutine function returning the provider's models
        ttl: Seconds a successful fetch stays fresh
        fetch_timeout: Seconds before an in-flight fetch counts as failed
        clock: Monotonic time source
    """

    def __init__(
        self,
        fetcher: ModelFetcher,
        ttl: float = DEFAULT_CACHE_TTL,
        fetch_timeout: float | None = DEFAULT_FETCH_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._fetcher = fetcher
        self.ttl = ttl
        self.fetch_timeout = fetch_timeout
        self._clock = clock

        self._entries: list[ModelDescriptor] | None = None
        self._last_fetch: float | None = None
        self._pending: asyncio.Task[list[ModelDescriptor]] | None = None

    @classmethod
    def for_provider(
        cls,
        provider: ProviderConfig,
        transport: HttpTransport,
        headers: Callable[[], dict[str, str]] | None = None,
    ) -> ModelRegistry:
        """Registry fetching from ``provider``'s models endpoint over ``transport``."""

        async def fetch() -> list[ModelDescriptor]:
            return await fetch_models(transport, provider, headers() if headers else None)

        return cls(
            fetch,
            ttl=provider.models_cache_ttl,
            fetch_timeout=provider.models_fetch_timeout,
        )

    @property
    def cached(self) -> list[ModelDescriptor] | None:
        return None if self._entries is None else list(self._entries)

    @property
    def fetch_in_flight(self) -> bool:
        return self._pending is not None

    def _is_fresh(self) -> bool:
        if self._entries is None or self._last_fetch is None:
            return False
        return self._clock() - self._last_fetch < self.ttl

    async def get_models(self, force_refresh: bool = False) -> list[ModelDescriptor]:
        """
        The provider's models.

        Served from cache while fresh. Otherwise every concurrent caller
        awaits one shared fetch.

        Raises:
            ModelFetchError: If the fetch fails and nothing is cached.
        """
        if not force_refresh and self._is_fresh():
            assert self._entries is not None
            return list(self._entries)

        if self._pending is None:
            self._pending = asyncio.create_task(self._refresh())
        # a cancelled waiter must not cancel the shared fetch
        return list(await asyncio.shield(self._pending))

    async def _refresh(self) -> list[ModelDescriptor]:
        try:
            error: ModelFetchError
            cause: BaseException | None = None
            try:
                if self.fetch_timeout:
                    models = await asyncio.wait_for(self._fetcher(), self.fetch_timeout)
                else:
                    models = await self._fetcher()
            except TimeoutError as e:
                error = ModelFetchError(f"Model fetch timed out after {self.fetch_timeout}s")
                cause = e
            except ModelFetchError as e:
                error = e
            except Exception as e:
                error = ModelFetchError(f"Failed to fetch models: {e}")
                cause = e
            else:
                self._entries = list(models)
                self._last_fetch = self._clock()
                return self._entries

            if self._entries is not None:
                logger.warning(
                    "Model fetch failed, serving %d cached models: %s",
                    len(self._entries),
                    error,
                )
                return self._entries
            raise error from cause
        finally:
            self._pending = None

    def clear_cache(self) -> None:
        self._entries = None
        self._last_fetch = None

    async def aclose(self) -> None:
        """Cancel an in-flight fetch and drop the cache."""
        pending, self._pending = self._pending, None
        if pending is not None and not pending.done():
            pending.cancel()
            with contextlib.suppress(asyncio.CancelledError, ModelFetchError):
                await pending
        self.clear_cache()
