"""Conversation state for the tool-calling assistant.

``ConversationState`` owns the message log, the input draft, the error slot
and the transient state of an in-flight send (busy flag, streamed text,
active tool names). Hosts read its properties and subscribe with
:meth:`ConversationState.add_listener` to re-render after each change.
"""

from __future__ import annotations

import logging
from functools import partial
from typing import Any, Callable, Mapping, Sequence

from ..ai.errors import (
    MISSING_API_KEY_MESSAGE,
    MISSING_MODEL_MESSAGE,
    PROVIDER_FALLBACK_MESSAGE,
    ConfigurationError,
)
from ..ai.orchestration.conversation_log import ConversationLog
from ..ai.orchestration.runner import (
    RoundRunner,
    RunnerConfig,
    StreamingClient,
    recovered_outputs_notice,
)
from ..ai.orchestration.tool_results import ToolCallExecutor
from ..ai.orchestration.types import Message, RoundOutcome, RoundStatus, ToolCallRequest
from ..services.settings import AssistantSettings

__all__ = [
    "CONTINUE_COMMAND",
    "CONTINUE_PROMPT",
    "ConversationState",
    "StateListener",
    "visible_messages",
]

LOGGER = logging.getLogger(__name__)

CONTINUE_COMMAND = "continue"
CONTINUE_PROMPT = "Continue with the previous task where you left off."

StateListener = Callable[[], None]
ToolSchemaSource = Callable[[], Sequence[Mapping[str, Any]]]


def visible_messages(messages: Sequence[Message]) -> tuple[Message, ...]:
    """Messages suitable for display: no tool results, no tool-call-only turns."""
    return tuple(
        message
        for message in messages
        if message.role != "tool"
        and not (message.role == "assistant" and not message.content.strip())
    )


def _require_configuration(settings: AssistantSettings) -> str:
    """Return the trimmed model id, or raise when the key or model is missing."""
    if not settings.api_key:
        raise ConfigurationError(MISSING_API_KEY_MESSAGE)
    model_id = (settings.model or "").strip()
    if not model_id:
        raise ConfigurationError(MISSING_MODEL_MESSAGE)
    return model_id


class ConversationState:
    """Single conversation driven by the bounded tool-round loop.

    Only one send runs at a time; :meth:`handle_send` is a no-op while
    :attr:`is_loading` is true. :meth:`handle_reset` may be called at any
    time; a send that is still awaiting the model or a tool afterwards
    leaves the fresh conversation untouched.
    """

    def __init__(
        self,
        settings: AssistantSettings,
        client: StreamingClient,
        execute_tool_call: ToolCallExecutor,
        *,
        tool_schemas: ToolSchemaSource | None = None,
        remember_model: Callable[[str], None] | None = None,
    ) -> None:
        self._settings = settings
        self._client = client
        self._execute_tool_call = execute_tool_call
        self._tool_schema_source = tool_schemas
        self._tools: tuple[Mapping[str, Any], ...] | None = None
        self._remember_model = remember_model
        self._listeners: list[StateListener] = []

        self._generation = 0
        self._log = self._new_log()
        self._draft = ""
        self._error = ""
        self._busy = False
        self._streaming_content = ""
        self._active_tool_calls: list[str] = []

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------
    @property
    def settings(self) -> AssistantSettings:
        return self._settings

    @settings.setter
    def settings(self, value: AssistantSettings) -> None:
        self._settings = value

    @property
    def messages(self) -> tuple[Message, ...]:
        return self._log.messages

    @property
    def visible_messages(self) -> tuple[Message, ...]:
        return visible_messages(self._log.messages)

    @property
    def draft(self) -> str:
        return self._draft

    def set_draft(self, text: str) -> None:
        self._draft = text
        self._notify()

    @property
    def error(self) -> str:
        return self._error

    def set_error(self, text: str) -> None:
        self._error = text
        self._notify()

    @property
    def is_loading(self) -> bool:
        return self._busy

    @property
    def streaming_content(self) -> str:
        return self._streaming_content

    @property
    def active_tool_calls(self) -> tuple[str, ...]:
        return tuple(self._active_tool_calls)

    def add_listener(self, listener: StateListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: StateListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------
    async def handle_send(self) -> RoundOutcome | None:
        """Send the current draft and run tool rounds until a stop.

        Returns:
            The loop's RoundOutcome, or None when nothing was sent (empty
            draft, busy, or missing configuration).
        """
        trimmed = self._draft.strip()
        if not trimmed or self._busy:
            return None

        settings = self._settings
        try:
            model_id = _require_configuration(settings)
        except ConfigurationError as exc:
            self.set_error(str(exc))
            return None

        if self._remember_model is not None:
            self._remember_model(model_id)

        generation = self._generation
        log = self._log
        self._error = ""
        self._draft = ""
        self._busy = True
        content = CONTINUE_PROMPT if trimmed.lower() == CONTINUE_COMMAND else trimmed
        log.append(Message.user(content))

        outcome: RoundOutcome | None = None
        try:
            runner = RoundRunner(
                self._client,
                self._execute_tool_call,
                tools=self._resolve_tools(),
                config=RunnerConfig(max_tool_rounds=self._max_tool_rounds(settings)),
            )
            outcome = await runner.run(
                log,
                model=model_id,
                api_key=settings.api_key,
                system_prompt=settings.system_prompt,
                on_token=partial(self._on_token, generation),
                on_tool_call=partial(self._on_tool_call, generation),
                on_round_start=partial(self._on_round_start, generation),
                on_recovered_outputs=partial(self._on_recovered_outputs, generation),
            )
        except Exception as exc:
            LOGGER.exception("Tool round loop failed unexpectedly")
            outcome = RoundOutcome(RoundStatus.ERRORED, 0, str(exc) or PROVIDER_FALLBACK_MESSAGE)
        finally:
            self._busy = False
            if generation == self._generation:
                self._streaming_content = ""
                self._active_tool_calls = []
                if outcome is not None and outcome.error:
                    self._error = outcome.error
            self._notify()
        return outcome

    def handle_reset(self) -> None:
        """Clear the conversation, draft, error and any in-flight round state.

        A send still awaiting the model or a tool keeps :attr:`is_loading`
        true until it unwinds, so a new send cannot start alongside it.
        """
        self._log.abandon()
        self._generation += 1
        self._log = self._new_log()
        self._draft = ""
        self._error = ""
        self._streaming_content = ""
        self._active_tool_calls = []
        LOGGER.debug("Conversation reset (generation %d)", self._generation)
        self._notify()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _new_log(self) -> ConversationLog:
        return ConversationLog(on_append=lambda _message: self._notify())

    def _resolve_tools(self) -> tuple[Mapping[str, Any], ...]:
        if self._tools is None:
            source = self._tool_schema_source
            self._tools = tuple(source()) if source is not None else ()
        return self._tools

    def _max_tool_rounds(self, settings: AssistantSettings) -> int:
        rounds = int(settings.max_tool_rounds)
        if rounds < 1:
            LOGGER.warning("max_tool_rounds=%s is below 1; using 1", rounds)
            return 1
        return rounds

    def _on_round_start(self, generation: int, round_number: int) -> None:
        if generation != self._generation:
            return
        self._streaming_content = ""
        self._active_tool_calls = []
        self._notify()

    def _on_recovered_outputs(self, generation: int, call_ids: list[str]) -> None:
        if generation != self._generation:
            return
        self._error = recovered_outputs_notice(call_ids)
        self._notify()

    def _on_token(self, generation: int, token: str) -> None:
        if generation != self._generation:
            return
        self._streaming_content += token
        self._notify()

    def _on_tool_call(self, generation: int, call: ToolCallRequest) -> None:
        if generation != self._generation or not call.name:
            return
        if call.name in self._active_tool_calls:
            return
        self._active_tool_calls.append(call.name)
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                LOGGER.debug("Conversation listener raised exception", exc_info=True)
