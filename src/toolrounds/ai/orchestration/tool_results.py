"""Tool execution for one round of the loop.

This module runs the tool calls requested by a single assistant message,
strictly in the order the model emitted them, and turns each outcome into a
tool result message for the conversation log.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Protocol, Sequence, runtime_checkable

from .types import Message, ToolCallRequest

__all__ = [
    "ToolCallExecutor",
    "ToolExecutionResult",
    "TOOL_FAILURE_FALLBACK",
    "execute_tool_call",
    "execute_tool_calls",
    "format_tool_result_content",
    "failed_tools_notice",
]

LOGGER = logging.getLogger(__name__)

TOOL_FAILURE_FALLBACK = "Tool execution failed."


# -----------------------------------------------------------------------------
# Protocols
# -----------------------------------------------------------------------------


@runtime_checkable
class ToolCallExecutor(Protocol):
    """Protocol for the tool executor adapter.

    Implementations perform the side effect for one tool call. They may
    return any JSON-serializable value, including ``{"error": "..."}`` to
    report a recoverable failure, or raise to report an unexpected one.
    """

    def __call__(self, call: ToolCallRequest) -> Awaitable[Any]:
        ...


# -----------------------------------------------------------------------------
# Result Types
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolExecutionResult:
    """Outcome of a single tool call.

    Attributes:
        call: The tool call that was executed.
        content: Serialized result placed in the tool message.
        error: Error text when the tool failed (softly or by raising).
        duration_ms: Execution time in milliseconds.
    """

    call: ToolCallRequest
    content: str
    error: str | None = None
    duration_ms: float = 0.0

    @property
    def failed(self) -> bool:
        return self.error is not None

    def to_message(self) -> Message:
        """Build the tool result message for the conversation log."""
        return Message.tool(
            content=self.content,
            tool_call_id=self.call.id,
            name=self.call.name or None,
        )


# -----------------------------------------------------------------------------
# Helper Functions
# -----------------------------------------------------------------------------


def format_tool_result_content(result: Any) -> str:
    """Format a tool result for inclusion in a tool message.

    Strings pass through unchanged; everything else is serialized as JSON,
    falling back to ``str()`` for values JSON cannot represent.
    """
    if isinstance(result, str):
        return result

    if hasattr(result, "to_dict") and callable(result.to_dict):
        result = result.to_dict()

    try:
        return json.dumps(result, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(result)


def _soft_error(result: Any) -> str | None:
    if isinstance(result, Mapping) and result.get("error"):
        return str(result["error"])
    return None


def failed_tools_notice(names: Sequence[str]) -> Message:
    """System message telling the model which tools failed this round."""
    return Message.system(
        f"Some tool actions failed ({', '.join(names)}). "
        "Check the current state and retry with corrected parameters."
    )


# -----------------------------------------------------------------------------
# Tool Execution
# -----------------------------------------------------------------------------


async def execute_tool_call(
    call: ToolCallRequest,
    executor: ToolCallExecutor,
) -> ToolExecutionResult:
    """Execute a single tool call, capturing failures as results.

    Args:
        call: The tool call requested by the model.
        executor: The tool executor adapter.

    Returns:
        The execution result; never raises for tool failures.
    """
    start_time = time.perf_counter()

    try:
        raw_result = await executor(call)
    except Exception as exc:
        duration_ms = (time.perf_counter() - start_time) * 1000
        error_msg = str(exc) or TOOL_FAILURE_FALLBACK
        LOGGER.warning("Tool %s failed: %s", call.name, error_msg)
        return ToolExecutionResult(
            call=call,
            content=json.dumps({"error": error_msg}, ensure_ascii=False),
            error=error_msg,
            duration_ms=duration_ms,
        )

    duration_ms = (time.perf_counter() - start_time) * 1000
    soft_error = _soft_error(raw_result)
    if soft_error is not None:
        LOGGER.warning("Tool %s reported an error: %s", call.name, soft_error)
    else:
        LOGGER.debug("Tool %s finished in %.1fms", call.name, duration_ms)
    return ToolExecutionResult(
        call=call,
        content=format_tool_result_content(raw_result),
        error=soft_error,
        duration_ms=duration_ms,
    )


async def execute_tool_calls(
    calls: Sequence[ToolCallRequest],
    executor: ToolCallExecutor,
    *,
    on_result: Callable[[ToolExecutionResult], bool | None] | None = None,
) -> tuple[ToolExecutionResult, ...]:
    """Execute tool calls sequentially, in the order given.

    Args:
        calls: The tool calls from one assistant message.
        executor: The tool executor adapter.
        on_result: Invoked after each call completes, before the next one
            starts. Returning ``False`` stops the remaining calls.

    Returns:
        The results of the calls that ran, in order.
    """
    results: list[ToolExecutionResult] = []
    for call in calls:
        result = await execute_tool_call(call, executor)
        results.append(result)
        if on_result is not None and on_result(result) is False:
            break
    return tuple(results)
