"""Shared test helpers and stub classes.

Import from here instead of duplicating these fakes in individual test files.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable, Mapping, Sequence

from toolrounds.ai.orchestration.types import Message, ToolCallRequest


def make_call(name: str, call_id: str, arguments: Mapping[str, Any] | None = None) -> ToolCallRequest:
    return ToolCallRequest(id=call_id, name=name, arguments=json.dumps(arguments or {}))


def tool_reply(*calls: ToolCallRequest, content: str = "") -> Message:
    """Assistant reply requesting the given tool calls."""
    return Message.assistant(content, list(calls))


class FakeStreamingClient:
    """Streaming client stub returning scripted replies in order.

    Each scripted entry is a Message (streamed token by token, tool calls
    announced by name), an Exception (raised), or a zero-argument callable
    producing either. Once the script is exhausted, ``default`` is used.
    """

    def __init__(
        self,
        replies: Sequence[Message | BaseException | Callable[[], Message | BaseException]] = (),
        *,
        default: Message | Callable[[], Message] | None = None,
    ) -> None:
        self.replies = list(replies)
        self.default = default
        self.calls: list[dict[str, Any]] = []
        self.gate: asyncio.Event | None = None

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def stream_chat(
        self,
        messages: Sequence[Mapping[str, Any]],
        *,
        model: str,
        tools: Sequence[Mapping[str, Any]] | None = None,
        api_key: str | None = None,
        on_token: Callable[[str], None] | None = None,
        on_tool_call: Callable[[ToolCallRequest], None] | None = None,
    ) -> Message:
        self.calls.append(
            {"messages": list(messages), "model": model, "tools": tools, "api_key": api_key}
        )
        index = len(self.calls) - 1
        reply: Any = self.replies[index] if index < len(self.replies) else self.default
        if reply is None:
            reply = Message.assistant("Default response")
        if callable(reply) and not isinstance(reply, (Message, BaseException)):
            reply = reply()

        if self.gate is not None:
            await self.gate.wait()
        if isinstance(reply, BaseException):
            raise reply

        for token in reply.content.split(" ") if reply.content else ():
            if on_token is not None:
                on_token(token)
        for call in reply.tool_calls or ():
            if on_tool_call is not None:
                on_tool_call(call)
        return reply

    def sent_roles(self, index: int) -> list[str]:
        return [message["role"] for message in self.calls[index]["messages"]]


class RecordingExecutor:
    """Tool executor stub; results map tool names to values or exceptions."""

    def __init__(self, results: Mapping[str, Any] | None = None) -> None:
        self.results = dict(results or {})
        self.calls: list[ToolCallRequest] = []

    async def __call__(self, call: ToolCallRequest) -> Any:
        self.calls.append(call)
        result = self.results.get(call.name, {"success": True})
        if isinstance(result, BaseException):
            raise result
        return result
