"""Core type definitions for the tool-round loop.

This module defines the immutable dataclasses that flow between the
conversation state, the round runner, and the model/tool adapters.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Literal, Mapping, Sequence

from openai.types.chat import ChatCompletionMessageParam

__all__ = [
    "MessageRole",
    "ToolCallRequest",
    "Message",
    "RoundStatus",
    "RoundOutcome",
]


MessageRole = Literal["system", "user", "assistant", "tool"]


# -----------------------------------------------------------------------------
# Tool Call Request
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolCallRequest:
    """A model-issued instruction naming a tool and its arguments.

    Attributes:
        id: Provider-assigned call identifier.
        name: Name of the tool to invoke.
        arguments: Raw argument payload, usually a JSON object string.
        type: Tool type; only ``"function"`` is produced today.
    """

    id: str
    name: str
    arguments: str = ""
    type: str = "function"

    def to_chat_param(self) -> dict[str, Any]:
        """Convert to the OpenAI ``tool_calls`` entry format."""
        return {
            "id": self.id,
            "type": self.type,
            "function": {"name": self.name, "arguments": self.arguments},
        }

    @classmethod
    def from_chat_param(cls, param: Mapping[str, Any]) -> ToolCallRequest:
        """Create a request from an OpenAI ``tool_calls`` entry.

        Flat ``{"id", "name", "arguments"}`` mappings are accepted as well.
        """
        function = param.get("function") or {}
        name = function.get("name") if isinstance(function, Mapping) else None
        arguments = function.get("arguments") if isinstance(function, Mapping) else None
        return cls(
            id=str(param.get("id") or ""),
            name=str(name or param.get("name") or ""),
            arguments=str(arguments if arguments is not None else param.get("arguments") or ""),
            type=str(param.get("type") or "function"),
        )


# -----------------------------------------------------------------------------
# Message Type
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class Message:
    """Immutable chat message stored in the conversation log.

    Attributes:
        role: The role of the message sender.
        content: The text content; empty for tool-call-only assistant turns.
        name: Tool name for tool result messages.
        tool_call_id: ID linking a tool result to its call.
        tool_calls: Tool calls requested by an assistant message.
    """

    role: MessageRole
    content: str
    name: str | None = None
    tool_call_id: str | None = None
    tool_calls: tuple[ToolCallRequest, ...] | None = None

    @property
    def has_tool_calls(self) -> bool:
        """Whether this message requests at least one tool call."""
        return bool(self.tool_calls)

    def to_chat_param(self) -> ChatCompletionMessageParam:
        """Convert to OpenAI's ChatCompletionMessageParam format."""
        payload: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.name is not None:
            payload["name"] = self.name
        if self.tool_call_id is not None:
            payload["tool_call_id"] = self.tool_call_id
        if self.tool_calls:
            payload["tool_calls"] = [call.to_chat_param() for call in self.tool_calls]
        return payload  # type: ignore[return-value]

    @classmethod
    def from_chat_param(cls, param: Mapping[str, Any]) -> Message:
        """Create a Message from OpenAI's ChatCompletionMessageParam format."""
        raw_calls = param.get("tool_calls")
        tool_calls = None
        if raw_calls:
            tool_calls = tuple(
                call if isinstance(call, ToolCallRequest) else ToolCallRequest.from_chat_param(call)
                for call in raw_calls
            )
        return cls(
            role=param.get("role", "user"),  # type: ignore[arg-type]
            content=str(param.get("content") or ""),
            name=param.get("name"),
            tool_call_id=param.get("tool_call_id"),
            tool_calls=tool_calls,
        )

    @classmethod
    def system(cls, content: str) -> Message:
        """Create a system message."""
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str) -> Message:
        """Create a user message."""
        return cls(role="user", content=content)

    @classmethod
    def assistant(
        cls,
        content: str,
        tool_calls: Sequence[ToolCallRequest] | None = None,
    ) -> Message:
        """Create an assistant message."""
        return cls(
            role="assistant",
            content=content,
            tool_calls=tuple(tool_calls) if tool_calls else None,
        )

    @classmethod
    def tool(
        cls,
        content: str,
        tool_call_id: str,
        name: str | None = None,
    ) -> Message:
        """Create a tool result message."""
        return cls(
            role="tool",
            content=content,
            tool_call_id=tool_call_id,
            name=name,
        )


# -----------------------------------------------------------------------------
# Round Outcome
# -----------------------------------------------------------------------------


class RoundStatus(str, enum.Enum):
    """Terminal states of one round loop."""

    DONE = "done"
    ERRORED = "errored"
    LIMIT_REACHED = "limit_reached"
    ABANDONED = "abandoned"


@dataclass(slots=True, frozen=True)
class RoundOutcome:
    """Result of running the round loop to a terminal state.

    Attributes:
        status: Which terminal state the loop reached.
        rounds: Number of model requests made.
        error: User-facing error text; empty unless errored or limited.
    """

    status: RoundStatus
    rounds: int
    error: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status is RoundStatus.DONE
