"""Round Runner: drives the bounded multi-round tool loop.

This module provides the RoundRunner class. One run repeatedly requests an
assistant message from the streaming client, executes the tool calls that
message asks for, appends the results to the conversation log, and stops
when the model answers without tools, when the provider fails, or when the
round ceiling is reached.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Protocol, Sequence, runtime_checkable

from ..errors import PROVIDER_FALLBACK_MESSAGE
from .conversation_log import ConversationLog
from .normalizer import find_missing_tool_outputs, normalize_messages_for_tools
from .tool_results import (
    ToolCallExecutor,
    ToolExecutionResult,
    execute_tool_calls,
    failed_tools_notice,
)
from .types import Message, RoundOutcome, RoundStatus, ToolCallRequest

__all__ = [
    "DEFAULT_MAX_TOOL_ROUNDS",
    "StreamingClient",
    "TokenCallback",
    "ToolCallCallback",
    "RunnerConfig",
    "RoundRunner",
    "build_request_messages",
    "recovered_outputs_notice",
    "round_context_message",
    "tool_limit_message",
]

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_TOOL_ROUNDS = 8


# -----------------------------------------------------------------------------
# Callback Types
# -----------------------------------------------------------------------------

# Invoked with each streamed content fragment
TokenCallback = Callable[[str], None]

# Invoked with a (possibly partial) tool call as the model streams it
ToolCallCallback = Callable[[ToolCallRequest], None]

# Invoked with the 1-based round number before each model request
RoundStartCallback = Callable[[int], None]

# Invoked with the tool call ids that got placeholder results in a request
RecoveryCallback = Callable[[list[str]], None]


# -----------------------------------------------------------------------------
# Protocols
# -----------------------------------------------------------------------------


@runtime_checkable
class StreamingClient(Protocol):
    """Protocol for the streaming client adapter.

    One call performs one request/response cycle and resolves with the
    terminal assistant message. ``on_token`` and ``on_tool_call`` fire zero
    or more times strictly before the call returns. Transport and provider
    failures raise an exception with a human-readable message.
    """

    def stream_chat(
        self,
        messages: Sequence[Mapping[str, Any]],
        *,
        model: str,
        tools: Sequence[Mapping[str, Any]] | None = None,
        api_key: str | None = None,
        on_token: TokenCallback | None = None,
        on_tool_call: ToolCallCallback | None = None,
    ) -> Awaitable[Message]:
        ...


# -----------------------------------------------------------------------------
# Runner Configuration
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class RunnerConfig:
    """Configuration for the round runner.

    Attributes:
        max_tool_rounds: Round ceiling; the loop stops once this many rounds
            have executed tools and the model still asks for more.
        log_rounds: Whether to log each round at debug level.
    """

    max_tool_rounds: int = DEFAULT_MAX_TOOL_ROUNDS
    log_rounds: bool = True

    def __post_init__(self) -> None:
        if self.max_tool_rounds < 1:
            raise ValueError("max_tool_rounds must be at least 1")


# -----------------------------------------------------------------------------
# Message helpers
# -----------------------------------------------------------------------------


def build_request_messages(
    system_prompt: str | None,
    messages: Sequence[Message],
) -> list[Message]:
    """Prepend the system prompt, when it is not blank."""
    trimmed = (system_prompt or "").strip()
    prefix = [Message.system(trimmed)] if trimmed else []
    return [*prefix, *messages]


def round_context_message(round_number: int, max_rounds: int) -> Message:
    """System note telling the model it is mid-way through a tool loop."""
    remaining = max_rounds - (round_number - 1)
    return Message.system(
        f"[Tool round {round_number}/{max_rounds}. {remaining} rounds remaining. "
        "Continue with the task.]"
    )


def tool_limit_message(max_rounds: int) -> str:
    return f'Reached tool limit ({max_rounds} rounds). Type "continue" to proceed with more actions.'


def recovered_outputs_notice(call_ids: Sequence[str]) -> str:
    return f"Recovered missing tool outputs for {', '.join(call_ids)}."


# -----------------------------------------------------------------------------
# Round Runner
# -----------------------------------------------------------------------------


class RoundRunner:
    """Runs the request/tools loop for one send.

    States: requesting -> executing tools -> requesting ... until one of
    done, errored, limit reached, or abandoned (the log was reset while a
    request or tool call was pending).

    Example:
        >>> runner = RoundRunner(client, registry_executor, tools=registry.openai_tools())
        >>> outcome = await runner.run(log, model="openai/gpt-4o-mini", api_key=key)
        >>> outcome.status
        <RoundStatus.DONE: 'done'>
    """

    def __init__(
        self,
        client: StreamingClient,
        execute_tool_call: ToolCallExecutor,
        *,
        tools: Sequence[Mapping[str, Any]] | None = None,
        config: RunnerConfig | None = None,
    ) -> None:
        self._client = client
        self._execute_tool_call = execute_tool_call
        self._tools = tuple(tools) if tools else ()
        self._config = config or RunnerConfig()

    @property
    def config(self) -> RunnerConfig:
        return self._config

    @property
    def tools(self) -> tuple[Mapping[str, Any], ...]:
        return self._tools

    async def run(
        self,
        log: ConversationLog,
        *,
        model: str,
        api_key: str | None = None,
        system_prompt: str | None = None,
        on_token: TokenCallback | None = None,
        on_tool_call: ToolCallCallback | None = None,
        on_round_start: RoundStartCallback | None = None,
        on_recovered_outputs: RecoveryCallback | None = None,
    ) -> RoundOutcome:
        """Run rounds until a terminal state.

        Args:
            log: The conversation log; read before and appended during each round.
            model: Model identifier for every request.
            api_key: Provider API key passed through to the client.
            system_prompt: Optional prompt prepended to every request but
                never stored in the log.
            on_token: Receives streamed content fragments.
            on_tool_call: Receives tool calls as the model streams them.
            on_round_start: Receives the round number before each request.
            on_recovered_outputs: Receives the ids of unanswered tool calls
                that were sent with placeholder results.

        Returns:
            The terminal RoundOutcome.
        """
        max_rounds = self._config.max_tool_rounds
        rounds = 0

        while True:
            round_number = rounds + 1
            if self._config.log_rounds:
                LOGGER.debug("Tool round %d/%d requesting %s", round_number, max_rounds, model)

            request = self._build_request(log, round_number, system_prompt, on_recovered_outputs)
            _notify(on_round_start, round_number)

            try:
                reply = await self._client.stream_chat(
                    [message.to_chat_param() for message in request],
                    model=model,
                    tools=self._tools or None,
                    api_key=api_key,
                    on_token=_guarded(on_token),
                    on_tool_call=_guarded(on_tool_call),
                )
            except Exception as exc:
                if log.abandoned:
                    return RoundOutcome(RoundStatus.ABANDONED, round_number)
                error = str(exc) or PROVIDER_FALLBACK_MESSAGE
                LOGGER.warning("Model request failed in round %d: %s", round_number, error)
                return RoundOutcome(RoundStatus.ERRORED, round_number, error)
            rounds = round_number

            if not log.append(reply):
                return RoundOutcome(RoundStatus.ABANDONED, rounds)
            if not reply.tool_calls:
                LOGGER.debug("Round loop finished after %d round(s)", rounds)
                return RoundOutcome(RoundStatus.DONE, rounds)

            results = await self._execute_tools(log, reply.tool_calls)
            if log.abandoned:
                return RoundOutcome(RoundStatus.ABANDONED, rounds)

            failed = _failed_tool_names(results)
            if failed:
                log.append(failed_tools_notice(failed))

            if rounds >= max_rounds:
                LOGGER.warning("Reached tool round limit (%d)", max_rounds)
                return RoundOutcome(RoundStatus.LIMIT_REACHED, rounds, tool_limit_message(max_rounds))

    def _build_request(
        self,
        log: ConversationLog,
        round_number: int,
        system_prompt: str | None,
        on_recovered_outputs: RecoveryCallback | None = None,
    ) -> list[Message]:
        history = log.messages
        missing = find_missing_tool_outputs(history)
        if missing:
            LOGGER.warning("Recovered missing tool outputs for %s", ", ".join(missing))
            _notify(on_recovered_outputs, missing)
        messages = list(normalize_messages_for_tools(history))
        if round_number > 1:
            messages.append(round_context_message(round_number, self._config.max_tool_rounds))
        return build_request_messages(system_prompt, messages)

    async def _execute_tools(
        self,
        log: ConversationLog,
        calls: Sequence[ToolCallRequest],
    ) -> tuple[ToolExecutionResult, ...]:
        if self._config.log_rounds:
            LOGGER.debug("Executing %d tool call(s)", len(calls))

        def _record(result: ToolExecutionResult) -> bool:
            return log.append(result.to_message())

        return await execute_tool_calls(calls, self._execute_tool_call, on_result=_record)


def _failed_tool_names(results: Sequence[ToolExecutionResult]) -> list[str]:
    names: list[str] = []
    for result in results:
        name = result.call.name or result.call.id
        if result.failed and name not in names:
            names.append(name)
    return names


def _guarded(callback: Callable[[Any], None] | None) -> Callable[[Any], None] | None:
    if callback is None:
        return None

    def _invoke(value: Any) -> None:
        _notify(callback, value)

    return _invoke


def _notify(callback: Callable[[Any], None] | None, value: Any) -> None:
    if callback is None:
        return
    try:
        callback(value)
    except Exception:
        LOGGER.debug("Round callback raised exception", exc_info=True)
