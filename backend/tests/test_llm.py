"""Tests for the language model boundary: message conversion and error mapping."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import anthropic
import httpx
import pytest

from concierge.errors import ModelError, ModelTimeoutError
from concierge.utils.llm import (
    AnthropicModel,
    ToolCall,
    Turn,
    dump_tool_result,
    parse_reply,
    to_anthropic_messages,
)


def _response(*blocks, stop_reason="end_turn"):
    return SimpleNamespace(
        content=list(blocks),
        stop_reason=stop_reason,
        usage=SimpleNamespace(input_tokens=120, output_tokens=30),
    )


def _text(text):
    return SimpleNamespace(type="text", text=text)


def _tool_use(id_, name, arguments):
    return SimpleNamespace(type="tool_use", id=id_, name=name, input=arguments)


def _model(create: AsyncMock) -> AnthropicModel:
    client = MagicMock()
    client.messages.create = create
    return AnthropicModel(
        api_key="k", model="claude-test", max_tokens=256, timeout=5.0, client=client
    )


class TestToAnthropicMessages:
    def test_tool_round_trip_shapes(self):
        call = ToolCall(id="toolu_1", name="search_ebay", arguments={"query": "ps5"})
        messages = to_anthropic_messages(
            [
                Turn(role="user", content="find a ps5"),
                Turn(role="assistant", content="", tool_calls=[call]),
                Turn(role="tool", content='{"items": []}', tool_call_id="toolu_1"),
            ]
        )

        assert [m["role"] for m in messages] == ["user", "assistant", "user"]
        assert messages[1]["content"] == [
            {"type": "tool_use", "id": "toolu_1", "name": "search_ebay", "input": {"query": "ps5"}}
        ]
        assert messages[2]["content"][0]["type"] == "tool_result"
        assert messages[2]["content"][0]["tool_use_id"] == "toolu_1"

    def test_parallel_tool_results_merge_into_one_user_message(self):
        calls = [
            ToolCall(id="a", name="search_ebay", arguments={"query": "x"}),
            ToolCall(id="b", name="search_exa", arguments={"query": "x"}),
        ]
        messages = to_anthropic_messages(
            [
                Turn(role="user", content="x"),
                Turn(role="assistant", tool_calls=calls),
                Turn(role="tool", content="{}", tool_call_id="a"),
                Turn(role="tool", content="{}", tool_call_id="b"),
            ]
        )
        assert len(messages) == 3
        assert [b["tool_use_id"] for b in messages[2]["content"]] == ["a", "b"]

    def test_leading_assistant_dropped(self):
        messages = to_anthropic_messages(
            [Turn(role="assistant", content="earlier reply"), Turn(role="user", content="hi")]
        )
        assert messages == [{"role": "user", "content": [{"type": "text", "text": "hi"}]}]

    def test_consecutive_user_turns_merged(self):
        messages = to_anthropic_messages(
            [Turn(role="user", content="one"), Turn(role="user", content="two")]
        )
        assert len(messages) == 1
        assert [b["text"] for b in messages[0]["content"]] == ["one", "two"]


class TestParseReply:
    def test_text_only(self):
        reply = parse_reply(_response(_text("Here you go.")))
        assert reply.content == "Here you go."
        assert reply.tool_calls == []

    def test_tool_calls_in_order(self):
        reply = parse_reply(
            _response(
                _text("Let me look."),
                _tool_use("t1", "search_ebay", {"query": "a"}),
                _tool_use("t2", "search_exa", {"query": "b"}),
                stop_reason="tool_use",
            )
        )
        assert [c.id for c in reply.tool_calls] == ["t1", "t2"]
        assert reply.stop_reason == "tool_use"

    def test_blank_text_is_none(self):
        assert parse_reply(_response(_text("  "))).content is None


class TestAnthropicModel:
    @pytest.mark.asyncio
    async def test_complete_passes_system_and_tools(self):
        create = AsyncMock(return_value=_response(_text("ok")))
        model = _model(create)

        turns = [Turn(role="user", content="hi")]
        reply = await model.complete("be helpful", turns, [{"name": "t"}])

        assert reply.content == "ok"
        kwargs = create.call_args.kwargs
        assert kwargs["system"] == "be helpful"
        assert kwargs["tools"] == [{"name": "t"}]
        assert kwargs["model"] == "claude-test"
        assert kwargs["max_tokens"] == 256

    @pytest.mark.asyncio
    async def test_timeout_mapped(self):
        request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        model = _model(AsyncMock(side_effect=anthropic.APITimeoutError(request=request)))
        with pytest.raises(ModelTimeoutError):
            await model.complete("s", [Turn(role="user", content="hi")], [])

    @pytest.mark.asyncio
    async def test_status_error_mapped(self):
        request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        response = httpx.Response(529, request=request)
        error = anthropic.APIStatusError("overloaded", response=response, body=None)
        model = _model(AsyncMock(side_effect=error))
        with pytest.raises(ModelError, match="529"):
            await model.complete("s", [Turn(role="user", content="hi")], [])


class TestDumpToolResult:
    def test_non_ascii_kept(self):
        assert dump_tool_result({"title": "Café"}) == '{"title": "Café"}'
