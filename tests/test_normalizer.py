import base64

from stream_adapter.llm import normalize_messages, parse_tool_input, serialize_tool_arguments
from stream_adapter.models import (
    ChatMessage,
    Dialect,
    ImagePart,
    TextPart,
    ToolCallPart,
    ToolResultPart,
)

PNG = b"\x89PNG\r\n\x1a\n"


def text(role: str, value: str) -> ChatMessage:
    return ChatMessage(role=role, content=[TextPart(value=value)])


# ---------- argument serialization ----------


def test_serialize_arguments():
    assert serialize_tool_arguments('{"a": 1}') == '{"a": 1}'
    assert serialize_tool_arguments({"a": [1, 2]}) == '{"a": [1, 2]}'
    assert serialize_tool_arguments(None) == "{}"


def test_unserializable_arguments_become_empty_object():
    circular: dict = {}
    circular["self"] = circular
    assert serialize_tool_arguments(circular) == "{}"
    assert serialize_tool_arguments({"when": object()}) == "{}"


def test_parse_tool_input():
    assert parse_tool_input('{"q": "x"}') == {"q": "x"}
    assert parse_tool_input("not json") == {}
    assert parse_tool_input("[1, 2]") == {}
    assert parse_tool_input({"k": 1}) == {"k": 1}


# ---------- OpenAI shape ----------


def test_assistant_text_and_tool_calls():
    msg = ChatMessage(
        role="assistant",
        content=[
            TextPart(value="Checking "),
            TextPart(value="now."),
            ToolCallPart(call_id="call_1", name="lookup", arguments={"q": "x"}),
        ],
    )
    assert normalize_messages([msg], Dialect.OPENAI) == [
        {
            "role": "assistant",
            "content": "Checking now.",
            "tool_calls": [
                {
                    "id": "call_1",
                    "type": "function",
                    "function": {"name": "lookup", "arguments": '{"q": "x"}'},
                }
            ],
        }
    ]


def test_empty_assistant_turn_is_dropped():
    msg = ChatMessage(role="assistant", content=[TextPart(value="   ")])
    assert normalize_messages([msg], Dialect.OPENAI) == []


def test_assistant_tool_calls_only_has_no_content_field():
    msg = ChatMessage(role="assistant", content=[ToolCallPart(call_id="c", name="f", arguments="{}")])
    (wire,) = normalize_messages([msg], Dialect.OPENAI)
    assert "content" not in wire
    assert wire["tool_calls"][0]["function"]["arguments"] == "{}"


def test_tool_results_become_tool_messages_regardless_of_role():
    msg = ChatMessage(
        role="user",
        content=[
            ToolResultPart(call_id="c1", content=["line one", TextPart(value="line two")]),
            TextPart(value="thanks"),
        ],
    )
    assert normalize_messages([msg], Dialect.OPENAI) == [
        {"role": "tool", "tool_call_id": "c1", "content": "line one\nline two"},
        {"role": "user", "content": "thanks"},
    ]


def test_user_images_become_data_uris():
    msg = ChatMessage(
        role="user",
        content=[
            TextPart(value="What is this?"),
            ImagePart(mime_type="image/png", data=PNG),
            ImagePart(mime_type="cache_control", data=b"ephemeral"),
        ],
    )
    (wire,) = normalize_messages([msg], Dialect.OPENAI)
    encoded = base64.b64encode(PNG).decode()
    assert wire == {
        "role": "user",
        "content": [
            {"type": "text", "text": "What is this?"},
            {"type": "image_url", "image_url": {"url": f"data:image/png;base64,{encoded}"}},
        ],
    }


def test_blank_system_and_user_turns_are_skipped():
    messages = [text("system", ""), text("user", ""), text("system", "Be brief."), text("user", "Hi")]
    assert normalize_messages(messages, Dialect.OPENAI) == [
        {"role": "system", "content": "Be brief."},
        {"role": "user", "content": "Hi"},
    ]


def test_unknown_part_kinds_are_dropped():
    msg = ChatMessage.model_validate(
        {
            "role": "user",
            "content": [
                {"kind": "text", "value": "hello"},
                {"kind": "thinking", "value": "hmm"},
                {"value": "no kind"},
            ],
        }
    )
    assert len(msg.content) == 1
    assert normalize_messages([msg], Dialect.GEMINI) == [{"role": "user", "content": "hello"}]


# ---------- Anthropic shape ----------


def test_anthropic_assistant_tool_use_has_parsed_input():
    msg = ChatMessage(
        role="assistant",
        content=[
            TextPart(value="Let me look."),
            ToolCallPart(call_id="toolu_1", name="lookup", arguments='{"q": "x"}'),
            ToolCallPart(call_id="toolu_2", name="broken", arguments="{oops"),
        ],
    )
    (wire,) = normalize_messages([msg], Dialect.ANTHROPIC)
    assert wire["content"] == [
        {"type": "text", "text": "Let me look."},
        {"type": "tool_use", "id": "toolu_1", "name": "lookup", "input": {"q": "x"}},
        {"type": "tool_use", "id": "toolu_2", "name": "broken", "input": {}},
    ]


def test_anthropic_tool_result_and_image_shapes():
    messages = [
        ChatMessage(role="tool", content=[ToolResultPart(call_id="toolu_1", content=["42"])]),
        ChatMessage(role="user", content=[ImagePart(mime_type="image/jpeg", data=b"jpg")]),
    ]
    assert normalize_messages(messages, Dialect.ANTHROPIC) == [
        {
            "role": "user",
            "content": [{"type": "tool_result", "tool_use_id": "toolu_1", "content": "42"}],
        },
        {
            "role": "user",
            "content": [
                {
                    "type": "image",
                    "source": {
                        "type": "base64",
                        "media_type": "image/jpeg",
                        "data": base64.b64encode(b"jpg").decode(),
                    },
                }
            ],
        },
    ]


# ---------- tool results with non-text items ----------

MIXED_RESULT = {
    "role": "tool",
    "content": [
        {
            "kind": "tool_result",
            "call_id": "c1",
            "content": [
                {"kind": "text", "value": "ok"},
                {"kind": "image", "mime_type": "cache_control", "data": b"ephemeral"},
                {"kind": "image", "mime_type": "image/png", "data": PNG},
                {"kind": "audio", "value": "?"},
            ],
        }
    ],
}


def test_tool_result_items_of_unknown_kind_are_dropped():
    msg = ChatMessage.model_validate(MIXED_RESULT)
    (result,) = msg.content
    assert len(result.content) == 3
    assert result.text() == "ok"
    assert normalize_messages([msg], Dialect.OPENAI) == [
        {"role": "tool", "tool_call_id": "c1", "content": "ok"}
    ]


def test_anthropic_tool_result_carries_image_blocks():
    msg = ChatMessage.model_validate(MIXED_RESULT)
    (wire,) = normalize_messages([msg], Dialect.ANTHROPIC)
    assert wire["content"] == [
        {
            "type": "tool_result",
            "tool_use_id": "c1",
            "content": [
                {"type": "text", "text": "ok"},
                {
                    "type": "image",
                    "source": {
                        "type": "base64",
                        "media_type": "image/png",
                        "data": base64.b64encode(PNG).decode(),
                    },
                },
            ],
        }
    ]
