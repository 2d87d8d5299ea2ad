import asyncio
import json

import httpx
import pytest

from stream_adapter.client import ChatAdapter
from stream_adapter.config import ProviderConfig
from stream_adapter.errors import ConfigurationError, ModelFetchError, TransportError
from stream_adapter.models import (
    ChatMessage,
    Dialect,
    ModelDescriptor,
    StreamEnd,
    StreamError,
    TextDelta,
    TextPart,
    ToolDescriptor,
    ToolInvocation,
)
from stream_adapter.transport import HttpTransport

OPENAI = ProviderConfig(id="acme", name="Acme", base_url="https://api.acme.test/v1/chat/completions")
ANTHROPIC = ProviderConfig(
    id="claude",
    dialect=Dialect.ANTHROPIC,
    base_url="https://api.anthropic.test/v1/messages",
)

HELLO = [
    ChatMessage(role="system", content=[TextPart(value="Be brief.")]),
    ChatMessage(role="user", content=[TextPart(value="Hi")]),
]


def frame(payload) -> bytes:
    body = payload if isinstance(payload, str) else json.dumps(payload)
    return f"data: {body}\n\n".encode()


def delta(**fields) -> dict:
    finish_reason = fields.pop("finish_reason", None)
    return {"choices": [{"index": 0, "delta": fields, "finish_reason": finish_reason}]}


class Recorder:
    """MockTransport handler that records requests and replays a canned stream."""

    def __init__(self, *chunks: bytes, status_code: int = 200, hang: bool = False):
        self.chunks = chunks
        self.status_code = status_code
        self.hang = hang
        self.requests: list[httpx.Request] = []
        self.closed = False

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status_code >= 400:
            return httpx.Response(self.status_code, content=b"".join(self.chunks))
        return httpx.Response(self.status_code, content=self._body())

    async def _body(self):
        try:
            for chunk in self.chunks:
                yield chunk
            if self.hang:
                await asyncio.Event().wait()
        finally:
            self.closed = True

    @property
    def body(self) -> dict:
        return json.loads(self.requests[-1].content)


def adapter_for(provider: ProviderConfig, recorder: Recorder, api_key: str | None = "sk-test") -> ChatAdapter:
    return ChatAdapter(provider, api_key=api_key, transport=HttpTransport(transport=httpx.MockTransport(recorder)))


# ---------- completion ----------


@pytest.mark.asyncio
async def test_complete_streams_text_to_progress():
    recorder = Recorder(
        frame(delta(role="assistant", content="Hel")),
        frame(delta(content="lo")),
        frame(delta(finish_reason="stop")),
        frame("[DONE]"),
    )
    seen = []
    async with adapter_for(OPENAI, recorder) as adapter:
        result = await adapter.complete("gpt-test", HELLO, progress=seen.append, max_output_tokens=64)

    assert seen == [TextDelta("Hel"), TextDelta("lo")]
    assert result.text == "Hello"
    assert result.finish_reason == "stop"
    assert not result.cancelled

    request = recorder.requests[0]
    assert str(request.url) == OPENAI.base_url
    assert request.headers["authorization"] == "Bearer sk-test"
    assert recorder.body == {
        "model": "gpt-test",
        "messages": [
            {"role": "system", "content": "Be brief."},
            {"role": "user", "content": "Hi"},
        ],
        "max_tokens": 64,
        "stream": True,
    }


@pytest.mark.asyncio
async def test_complete_reassembles_tool_calls_with_async_progress():
    recorder = Recorder(
        frame(delta(tool_calls=[{"index": 0, "id": "call_1", "function": {"name": "get_weather", "arguments": ""}}])),
        frame(delta(tool_calls=[{"index": 0, "function": {"arguments": '{"city": "Oslo"}'}}])),
        frame(delta(finish_reason="tool_calls")),
        frame("[DONE]"),
    )
    seen = []

    async def progress(event):
        seen.append(event)

    tools = [ToolDescriptor(name="get weather")]
    async with adapter_for(OPENAI, recorder) as adapter:
        result = await adapter.complete("gpt-test", HELLO, tools=tools, progress=progress)

    invocation = ToolInvocation("call_1", "get_weather", '{"city": "Oslo"}')
    assert seen == [invocation]
    assert result.tool_calls == [invocation]
    assert result.finish_reason == "tool_calls"
    assert recorder.body["tools"][0]["function"]["name"] == "get_weather"
    assert recorder.body["max_tokens"] == OPENAI.default_max_output_tokens


@pytest.mark.asyncio
async def test_complete_anthropic_headers_and_events():
    events = [
        {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
        {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Hi there"}},
        {"type": "content_block_stop", "index": 0},
        {"type": "message_delta", "delta": {"stop_reason": "end_turn"}},
        {"type": "message_stop"},
    ]
    recorder = Recorder(*(frame(e) for e in events))
    async with adapter_for(ANTHROPIC, recorder, api_key="ak") as adapter:
        result = await adapter.complete("claude-test", HELLO)

    assert result.text == "Hi there"
    assert result.finish_reason == "stop"
    headers = recorder.requests[0].headers
    assert headers["x-api-key"] == "ak"
    assert headers["anthropic-version"] == "2023-06-01"
    assert "authorization" not in headers
    assert recorder.body["system"] == "Be brief."
    assert recorder.body["messages"] == [{"role": "user", "content": "Hi"}]


@pytest.mark.asyncio
async def test_custom_headers_are_merged_last():
    provider = OPENAI.model_copy(update={"headers": {"Authorization": "Token custom", "X-Org": "o1"}})
    recorder = Recorder(frame("[DONE]"))
    async with adapter_for(provider, recorder) as adapter:
        await adapter.complete("m", HELLO)
    headers = recorder.requests[0].headers
    assert headers["authorization"] == "Token custom"
    assert headers["x-org"] == "o1"


@pytest.mark.asyncio
async def test_http_error_raises_transport_error():
    recorder = Recorder(b'{"error": {"message": "Incorrect API key"}}', status_code=401)
    async with adapter_for(OPENAI, recorder) as adapter:
        with pytest.raises(TransportError) as exc:
            await adapter.complete("m", HELLO)
    assert exc.value.status_code == 401
    assert "Incorrect API key" in str(exc.value)


@pytest.mark.asyncio
async def test_stream_events_yields_terminal_error():
    recorder = Recorder(b"upstream down", status_code=502)
    async with adapter_for(OPENAI, recorder) as adapter:
        events = [e async for e in adapter.stream_events("m", HELLO)]
    assert events == [StreamError("HTTP 502: upstream down", status_code=502)]


@pytest.mark.asyncio
async def test_stream_events_ends_with_stream_end():
    recorder = Recorder(frame(delta(content="a")), frame(delta(content="b")))
    async with adapter_for(OPENAI, recorder) as adapter:
        events = [e async for e in adapter.stream_events("m", HELLO)]
    assert events == [TextDelta("a"), TextDelta("b"), StreamEnd(None)]
    assert recorder.closed


@pytest.mark.asyncio
async def test_missing_key_fails_before_any_request():
    recorder = Recorder(frame("[DONE]"))
    async with adapter_for(OPENAI, recorder, api_key=None) as adapter:
        with pytest.raises(ConfigurationError, match="ACME_API_KEY"):
            await adapter.complete("m", HELLO)
    assert recorder.requests == []


@pytest.mark.asyncio
async def test_keyless_provider_sends_no_authorization():
    provider = ProviderConfig(
        id="local",
        dialect=Dialect.OLLAMA,
        base_url="http://localhost:11434/v1/chat/completions",
        requires_api_key=False,
    )
    recorder = Recorder(frame(delta(content="ok")), frame("[DONE]"))
    async with adapter_for(provider, recorder, api_key=None) as adapter:
        result = await adapter.complete("llama", HELLO)
    assert result.text == "ok"
    assert "authorization" not in recorder.requests[0].headers


# ---------- cancellation ----------


@pytest.mark.asyncio
async def test_host_cancellation_stops_silently():
    recorder = Recorder(
        frame(delta(content="partial")),
        frame(delta(tool_calls=[{"index": 0, "id": "c", "function": {"name": "f", "arguments": "{"}}])),
        hang=True,
    )
    cancel = asyncio.Event()
    seen = []

    def progress(event):
        seen.append(event)
        cancel.set()

    async with adapter_for(OPENAI, recorder) as adapter:
        result = await asyncio.wait_for(
            adapter.complete("m", HELLO, progress=progress, cancel_event=cancel), 2
        )

    assert result.cancelled
    assert result.reason == "host"
    assert result.tool_calls == []
    assert seen == [TextDelta("partial")]


@pytest.mark.asyncio
async def test_timeout_stops_silently():
    recorder = Recorder(frame(delta(content="slow")), hang=True)
    async with adapter_for(OPENAI, recorder) as adapter:
        result = await asyncio.wait_for(adapter.complete("m", HELLO, timeout=0.05), 2)

    assert result.cancelled
    assert result.reason == "timeout"
    assert result.text == "slow"


@pytest.mark.asyncio
async def test_cancelled_stream_events_emit_no_end():
    recorder = Recorder(frame(delta(content="x")), hang=True)
    cancel = asyncio.Event()
    events = []
    async with adapter_for(OPENAI, recorder) as adapter:
        async for event in adapter.stream_events("m", HELLO, cancel_event=cancel):
            events.append(event)
            cancel.set()
    assert events == [TextDelta("x")]


# ---------- models and tokens ----------


@pytest.mark.asyncio
async def test_available_models_fetches_and_caches():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={"data": [{"id": "m1"}, {"id": "m2"}]})

    adapter = ChatAdapter(OPENAI, api_key="sk", transport=HttpTransport(transport=httpx.MockTransport(handler)))
    async with adapter:
        first = await adapter.available_models()
        second = await adapter.available_models()

    assert [m.id for m in first] == ["m1", "m2"]
    assert first == second
    assert len(calls) == 1
    assert str(calls[0].url) == "https://api.acme.test/v1/models"
    assert calls[0].headers["authorization"] == "Bearer sk"


@pytest.mark.asyncio
async def test_available_models_falls_back_to_configured():
    fallback = ModelDescriptor(id="glm-4.6", name="GLM-4.6", max_input_tokens=1000, max_output_tokens=100)
    provider = OPENAI.model_copy(update={"models": [fallback]})
    recorder = Recorder(b"nope", status_code=500)

    async with adapter_for(provider, recorder) as adapter:
        assert await adapter.available_models() == [fallback]

    async with adapter_for(OPENAI, Recorder(b"nope", status_code=500)) as adapter:
        with pytest.raises(ModelFetchError):
            await adapter.available_models()


@pytest.mark.asyncio
async def test_static_models_skip_fetch():
    fallback = ModelDescriptor(id="a", name="A", max_input_tokens=1, max_output_tokens=1)
    provider = OPENAI.model_copy(update={"dynamic_models": False, "models": [fallback]})
    recorder = Recorder()
    async with adapter_for(provider, recorder, api_key=None) as adapter:
        assert await adapter.available_models() == [fallback]
    assert recorder.requests == []


def test_provide_token_count():
    adapter = ChatAdapter(OPENAI, api_key="sk", transport=HttpTransport())
    assert adapter.provide_token_count("abcdefgh") == 2
    assert adapter.provide_token_count(HELLO[1]) > 0
