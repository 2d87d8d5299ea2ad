# stream_adapter/llm/base.py
from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..cancellation import AbortSignal
    from ..config import ProviderConfig
    from ..models import ChatMessage, ToolDescriptor
    from .decoding import StreamDecoder

JSON = dict[str, Any]
MsgList = list[dict[str, Any]]
ToolList = Sequence["ToolDescriptor | JSON"] | None


class DialectAdapter(ABC):
    """
    Strategy interface for each wire dialect family.
    Concrete adapters normalize messages, build the request body, pick the
    auth headers and create a stream decoder for the response.
    """

    # ---------- interface ----------
    @abstractmethod
    def normalize(self, messages: Sequence[ChatMessage]) -> MsgList:
        """Host messages → wire messages in this dialect's shape."""
        ...

    @abstractmethod
    def build_body(
        self,
        model_id: str,
        messages: MsgList,
        tools: ToolList,
        max_output_tokens: int,
    ) -> JSON:
        """→ streaming request body"""
        ...

    @abstractmethod
    def auth_headers(self, provider: ProviderConfig, api_key: str | None) -> dict[str, str]:
        ...

    @abstractmethod
    def create_decoder(self, signal: AbortSignal | None = None) -> StreamDecoder:
        ...

    # ---------- helpers ----------
    def request_headers(self, provider: ProviderConfig, api_key: str | None) -> dict[str, str]:
        """Auth headers with the provider's custom headers merged last."""
        headers = {"content-type": "application/json"}
        headers.update(self.auth_headers(provider, api_key))
        headers.update(provider.headers)
        return headers
