"""Language model boundary: a provider-neutral turn format plus the Claude adapter.

The agent runner builds ``Turn`` lists and reads ``ModelReply`` objects.
``AnthropicModel`` translates both ways and maps SDK failures onto
``ModelError`` / ``ModelTimeoutError``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

import anthropic
import structlog

from concierge.errors import ModelError, ModelTimeoutError

log = structlog.get_logger("concierge.llm")


@dataclass(frozen=True)
class ToolCall:
    id: str
    name: str
    arguments: dict[str, Any]


@dataclass(frozen=True)
class ModelReply:
    content: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    stop_reason: str | None = None


@dataclass
class Turn:
    """One entry of model context.

    ``assistant`` turns may carry tool calls; ``tool`` turns carry the JSON
    result for ``tool_call_id``.
    """

    role: Literal["user", "assistant", "tool"]
    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_call_id: str | None = None


class LanguageModel(Protocol):
    async def complete(
        self, system: str, turns: list[Turn], tools: list[dict[str, Any]]
    ) -> ModelReply: ...


def to_anthropic_messages(turns: list[Turn]) -> list[dict[str, Any]]:
    """Convert turns into Messages API format.

    Tool results travel as ``tool_result`` blocks in a user message. Adjacent
    messages with the same role are merged, and leading assistant messages are
    dropped because the conversation must open with a user message.
    """
    messages: list[dict[str, Any]] = []
    for turn in turns:
        if turn.role == "tool":
            role = "user"
            blocks: list[dict[str, Any]] = [
                {
                    "type": "tool_result",
                    "tool_use_id": turn.tool_call_id,
                    "content": turn.content,
                }
            ]
        elif turn.role == "assistant":
            role = "assistant"
            blocks = [{"type": "text", "text": turn.content}] if turn.content else []
            blocks += [
                {"type": "tool_use", "id": c.id, "name": c.name, "input": c.arguments}
                for c in turn.tool_calls
            ]
        else:
            role = "user"
            blocks = [{"type": "text", "text": turn.content}]

        if not blocks:
            continue
        if not messages and role == "assistant":
            continue
        if messages and messages[-1]["role"] == role:
            messages[-1]["content"].extend(blocks)
        else:
            messages.append({"role": role, "content": blocks})
    return messages


def parse_reply(response: anthropic.types.Message) -> ModelReply:
    text_parts: list[str] = []
    calls: list[ToolCall] = []
    for block in response.content:
        if block.type == "text":
            text_parts.append(block.text)
        elif block.type == "tool_use":
            arguments = block.input if isinstance(block.input, dict) else {}
            calls.append(ToolCall(id=block.id, name=block.name, arguments=arguments))
    content = "\n".join(p for p in text_parts if p.strip()) or None
    return ModelReply(content=content, tool_calls=calls, stop_reason=response.stop_reason)


class AnthropicModel:
    """Claude via the Messages API with tool use."""

    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        max_tokens: int,
        timeout: float,
        client: anthropic.AsyncAnthropic | None = None,
    ) -> None:
        self.model = model
        self.max_tokens = max_tokens
        self._client = client or anthropic.AsyncAnthropic(
            api_key=api_key, timeout=timeout, max_retries=1
        )

    async def complete(
        self, system: str, turns: list[Turn], tools: list[dict[str, Any]]
    ) -> ModelReply:
        messages = to_anthropic_messages(turns)
        try:
            response = await self._client.messages.create(  # type: ignore[call-overload]
                model=self.model,
                max_tokens=self.max_tokens,
                system=system,
                tools=tools,
                messages=messages,
            )
        except anthropic.APITimeoutError as e:
            log.warning("model_timeout", model=self.model)
            raise ModelTimeoutError(f"Claude request timed out: {e}") from e
        except anthropic.RateLimitError as e:
            log.warning("model_rate_limited", model=self.model)
            raise ModelError(f"Claude rate limited: {e}") from e
        except anthropic.APIStatusError as e:
            log.error("model_api_error", status=e.status_code, model=self.model)
            raise ModelError(f"Claude API error ({e.status_code}): {e}") from e
        except anthropic.APIConnectionError as e:
            log.error("model_connection_error", model=self.model)
            raise ModelError(f"Claude connection failed: {e}") from e

        log.info(
            "model_tokens",
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            stop_reason=response.stop_reason,
            model=self.model,
        )
        return parse_reply(response)


def dump_tool_result(result: dict[str, Any]) -> str:
    return json.dumps(result, ensure_ascii=False, default=str)
