"""Tests for the conversation state manager."""

from __future__ import annotations

import asyncio
import json

import pytest

from toolrounds.ai.orchestration.types import Message, RoundStatus
from toolrounds.chat.conversation import CONTINUE_PROMPT, ConversationState, visible_messages
from toolrounds.services.settings import AssistantSettings

from tests.helpers import FakeStreamingClient, RecordingExecutor, make_call, tool_reply


def _settings(**overrides) -> AssistantSettings:
    overrides.setdefault("api_key", "sk-test")
    overrides.setdefault("model", "openai/gpt-4o-mini")
    return AssistantSettings(**overrides)


def _conversation(
    client: FakeStreamingClient | None = None,
    executor: RecordingExecutor | None = None,
    **kwargs,
) -> ConversationState:
    settings = kwargs.pop("settings", None) or _settings()
    return ConversationState(settings, client or FakeStreamingClient(), executor or RecordingExecutor(), **kwargs)


async def _send(conversation: ConversationState, text: str):
    conversation.set_draft(text)
    return await conversation.handle_send()


async def _until(predicate, *, attempts: int = 50) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


# ---------------------------------------------------------------------------
# Sending
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_send_appends_trimmed_user_message_and_reply() -> None:
    client = FakeStreamingClient([Message.assistant("Hello!")])
    conversation = _conversation(client)

    outcome = await _send(conversation, "  Hi there  ")

    assert outcome is not None and outcome.status is RoundStatus.DONE
    assert conversation.messages == (Message.user("Hi there"), Message.assistant("Hello!"))
    assert conversation.draft == ""
    assert conversation.error == ""
    assert not conversation.is_loading
    assert conversation.streaming_content == ""
    assert conversation.active_tool_calls == ()


@pytest.mark.asyncio
async def test_continue_is_replaced_by_continue_prompt() -> None:
    conversation = _conversation()

    await _send(conversation, "  Continue ")

    assert conversation.messages[0] == Message.user(CONTINUE_PROMPT)


@pytest.mark.asyncio
async def test_blank_draft_is_ignored() -> None:
    client = FakeStreamingClient()
    conversation = _conversation(client)

    assert await _send(conversation, "   ") is None

    assert client.call_count == 0
    assert conversation.messages == ()
    assert conversation.draft == "   "


@pytest.mark.asyncio
async def test_send_while_busy_is_a_no_op() -> None:
    client = FakeStreamingClient([Message.assistant("first reply")])
    client.gate = asyncio.Event()
    conversation = _conversation(client)

    conversation.set_draft("first")
    pending = asyncio.create_task(conversation.handle_send())
    await _until(lambda: client.call_count == 1)

    assert conversation.is_loading
    assert await _send(conversation, "second") is None
    assert conversation.draft == "second"

    client.gate.set()
    await pending

    assert client.call_count == 1
    assert [m.content for m in conversation.messages] == ["first", "first reply"]
    assert not conversation.is_loading


@pytest.mark.asyncio
async def test_missing_api_key_sets_error_without_calling_client() -> None:
    client = FakeStreamingClient()
    conversation = _conversation(client, settings=_settings(api_key=""))

    assert await _send(conversation, "hi") is None

    assert conversation.error == "Add an OpenRouter API key in Settings to use the assistant."
    assert client.call_count == 0
    assert conversation.messages == ()
    assert conversation.draft == "hi"


@pytest.mark.asyncio
async def test_blank_model_sets_error_without_calling_client() -> None:
    client = FakeStreamingClient()
    conversation = _conversation(client, settings=_settings(model="   "))

    await _send(conversation, "hi")

    assert conversation.error == "Add a model id before sending."
    assert client.call_count == 0


@pytest.mark.asyncio
async def test_successful_send_clears_previous_error() -> None:
    conversation = _conversation()
    conversation.set_error("old problem")

    await _send(conversation, "hi")

    assert conversation.error == ""


@pytest.mark.asyncio
async def test_remember_model_receives_trimmed_model() -> None:
    remembered: list[str] = []
    conversation = _conversation(
        settings=_settings(model="  openai/gpt-4o  "),
        remember_model=remembered.append,
    )

    await _send(conversation, "hi")

    assert remembered == ["openai/gpt-4o"]


@pytest.mark.asyncio
async def test_settings_are_read_at_send_time() -> None:
    client = FakeStreamingClient()
    conversation = _conversation(client, settings=_settings(api_key=""))

    conversation.settings = _settings(api_key="late-key", model="late-model")
    await _send(conversation, "hi")

    assert client.calls[0]["api_key"] == "late-key"
    assert client.calls[0]["model"] == "late-model"


@pytest.mark.asyncio
async def test_system_prompt_is_sent_but_not_stored() -> None:
    client = FakeStreamingClient()
    conversation = _conversation(client, settings=_settings(system_prompt="You build workflows."))

    await _send(conversation, "hi")

    assert client.calls[0]["messages"][0] == {"role": "system", "content": "You build workflows."}
    assert all(m.role != "system" for m in conversation.messages)


# ---------------------------------------------------------------------------
# Tool rounds
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_end_to_end_tool_round() -> None:
    client = FakeStreamingClient(
        [tool_reply(make_call("workflow_create", "call_1", {"name": "demo"})), Message.assistant("Done!")]
    )
    executor = RecordingExecutor({"workflow_create": {"success": True}})
    conversation = _conversation(client, executor)

    await _send(conversation, "Create a workflow")

    assert [m.role for m in conversation.messages] == ["user", "assistant", "tool", "assistant"]
    tool_message = conversation.messages[2]
    assert tool_message.tool_call_id == "call_1"
    assert json.loads(tool_message.content) == {"success": True}
    assert [m.content for m in conversation.visible_messages] == ["Create a workflow", "Done!"]
    assert json.loads(executor.calls[0].arguments) == {"name": "demo"}


@pytest.mark.asyncio
async def test_tool_calls_execute_in_order() -> None:
    client = FakeStreamingClient([tool_reply(make_call("A", "c1"), make_call("B", "c2")), Message.assistant("ok")])
    executor = RecordingExecutor()
    conversation = _conversation(client, executor)

    await _send(conversation, "go")

    assert [call.name for call in executor.calls] == ["A", "B"]
    assert [m.tool_call_id for m in conversation.messages if m.role == "tool"] == ["c1", "c2"]


@pytest.mark.asyncio
async def test_round_limit_then_continue() -> None:
    client = FakeStreamingClient(default=lambda: tool_reply(make_call("loop", f"id-{client.call_count}")))
    conversation = _conversation(client, settings=_settings(max_tool_rounds=2))

    outcome = await _send(conversation, "keep going")

    assert outcome is not None and outcome.status is RoundStatus.LIMIT_REACHED
    assert client.call_count == 2
    assert "Reached tool limit" in conversation.error
    assert not conversation.is_loading

    await _send(conversation, "continue")

    assert client.call_count == 4
    user_messages = [m.content for m in conversation.messages if m.role == "user"]
    assert user_messages == ["keep going", CONTINUE_PROMPT]


@pytest.mark.asyncio
async def test_zero_round_setting_is_clamped_to_one() -> None:
    client = FakeStreamingClient(default=lambda: tool_reply(make_call("loop", f"id-{client.call_count}")))
    conversation = _conversation(client, settings=_settings(max_tool_rounds=0))

    outcome = await _send(conversation, "go")

    assert outcome is not None and outcome.status is RoundStatus.LIMIT_REACHED
    assert client.call_count == 1


@pytest.mark.asyncio
async def test_provider_error_keeps_user_message() -> None:
    client = FakeStreamingClient([RuntimeError("OpenRouter error: rate limited")])
    conversation = _conversation(client)

    await _send(conversation, "hi")

    assert conversation.error == "OpenRouter error: rate limited"
    assert conversation.messages == (Message.user("hi"),)
    assert not conversation.is_loading


@pytest.mark.asyncio
async def test_provider_error_without_text_uses_fallback() -> None:
    conversation = _conversation(FakeStreamingClient([RuntimeError()]))

    await _send(conversation, "hi")

    assert conversation.error == "Failed to reach OpenRouter."


@pytest.mark.asyncio
async def test_tool_schemas_are_resolved_once() -> None:
    schema = {"type": "function", "function": {"name": "A", "parameters": {"type": "object"}}}
    calls = 0

    def _source():
        nonlocal calls
        calls += 1
        return [schema]

    client = FakeStreamingClient()
    conversation = _conversation(client, tool_schemas=_source)

    await _send(conversation, "one")
    await _send(conversation, "two")

    assert calls == 1
    assert client.calls[1]["tools"] == (schema,)


@pytest.mark.asyncio
async def test_streaming_state_is_observable_during_a_round() -> None:
    client = FakeStreamingClient(
        [tool_reply(make_call("A", "c1"), make_call("A", "c2"), make_call("B", "c3"), content="Working on it")]
        + [Message.assistant("ok")]
    )
    conversation = _conversation(client)
    snapshots: list[tuple[str, tuple[str, ...]]] = []
    conversation.add_listener(
        lambda: snapshots.append((conversation.streaming_content, conversation.active_tool_calls))
    )

    await _send(conversation, "go")

    assert ("Workingonit", ("A", "B")) in snapshots
    assert conversation.streaming_content == ""
    assert conversation.active_tool_calls == ()


# ---------------------------------------------------------------------------
# Reset
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_reset_starts_a_fresh_conversation() -> None:
    conversation = _conversation()
    await _send(conversation, "first")
    conversation.set_draft("unsent")
    conversation.set_error("stale")

    conversation.handle_reset()

    assert conversation.messages == ()
    assert conversation.draft == ""
    assert conversation.error == ""

    await _send(conversation, "second")

    assert [m.role for m in conversation.messages] == ["user", "assistant"]


@pytest.mark.asyncio
async def test_reset_during_request_discards_the_reply() -> None:
    client = FakeStreamingClient([tool_reply(make_call("A", "c1"))])
    client.gate = asyncio.Event()
    executor = RecordingExecutor()
    conversation = _conversation(client, executor)

    conversation.set_draft("go")
    pending = asyncio.create_task(conversation.handle_send())
    await _until(lambda: client.call_count == 1)

    conversation.handle_reset()
    assert conversation.is_loading

    client.gate.set()
    outcome = await pending

    assert outcome is not None and outcome.status is RoundStatus.ABANDONED
    assert conversation.messages == ()
    assert executor.calls == []
    assert conversation.error == ""
    assert not conversation.is_loading


@pytest.mark.asyncio
async def test_send_after_reset_waits_for_the_abandoned_request() -> None:
    client = FakeStreamingClient([Message.assistant("stale reply")], default=Message.assistant("fresh reply"))
    client.gate = asyncio.Event()
    conversation = _conversation(client)

    conversation.set_draft("first")
    pending = asyncio.create_task(conversation.handle_send())
    await _until(lambda: client.call_count == 1)

    conversation.handle_reset()
    assert await _send(conversation, "second") is None
    assert client.call_count == 1
    assert conversation.messages == ()
    assert conversation.draft == "second"

    client.gate.set()
    await pending
    outcome = await conversation.handle_send()

    assert outcome is not None and outcome.status is RoundStatus.DONE
    assert client.call_count == 2
    assert [m.content for m in conversation.messages] == ["second", "fresh reply"]


@pytest.mark.asyncio
async def test_unanswered_tool_call_in_history_is_reported() -> None:
    client = FakeStreamingClient([Message.assistant("All set.")])
    conversation = _conversation(client)
    conversation._log.append(tool_reply(make_call("notes_add", "call_lost")))

    outcome = await _send(conversation, "continue")

    assert outcome is not None and outcome.status is RoundStatus.DONE
    assert conversation.error == "Recovered missing tool outputs for call_lost."
    assert client.sent_roles(0) == ["assistant", "tool", "user"]
    assert len(conversation.messages) == 3


@pytest.mark.asyncio
async def test_answered_history_reports_nothing() -> None:
    client = FakeStreamingClient(default=Message.assistant("ok"))
    conversation = _conversation(client)
    conversation._log.append(tool_reply(make_call("notes_add", "call_lost")))
    conversation._log.append(Message.tool("{}", tool_call_id="call_lost"))

    await _send(conversation, "hi")

    assert conversation.error == ""


@pytest.mark.asyncio
async def test_listener_errors_are_ignored() -> None:
    conversation = _conversation()

    def _broken() -> None:
        raise RuntimeError("render failed")

    conversation.add_listener(_broken)
    outcome = await _send(conversation, "hi")

    assert outcome is not None and outcome.succeeded
    conversation.remove_listener(_broken)
    conversation.remove_listener(_broken)


def test_visible_messages_hides_tool_traffic() -> None:
    history = (
        Message.user("hi"),
        tool_reply(make_call("A", "c1")),
        Message.tool("{}", tool_call_id="c1"),
        tool_reply(make_call("B", "c2"), content="Checking the notes"),
        Message.tool("{}", tool_call_id="c2"),
        Message.assistant("done"),
    )

    assert [m.content for m in visible_messages(history)] == ["hi", "Checking the notes", "done"]
