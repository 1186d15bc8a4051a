"""Tool-call bookkeeping repair for outbound message histories.

Chat-completion providers reject a history in which an assistant message's
tool calls are not answered by tool messages before the next turn. Histories
can end up in that state when a previous run stopped early, so the outbound
copy is normalized before every request. The live conversation log is never
rewritten.
"""

from __future__ import annotations

import json
import logging
from typing import Sequence

from .types import Message

__all__ = [
    "MISSING_TOOL_OUTPUT_PLACEHOLDER",
    "normalize_messages_for_tools",
    "find_missing_tool_outputs",
]

LOGGER = logging.getLogger(__name__)

MISSING_TOOL_OUTPUT_PLACEHOLDER = json.dumps(
    {"error": "Missing tool output. Auto-inserted placeholder."}
)


def normalize_messages_for_tools(messages: Sequence[Message]) -> tuple[Message, ...]:
    """Return a copy of ``messages`` where every tool call has a paired result.

    Each assistant message first claims matching tool messages from its own
    block (the messages up to the next user or assistant turn), so a call id
    reused in a later round keeps its own result. Calls still unanswered
    then claim a displaced result with the same id from anywhere in the
    history that no block claimed. Whatever remains gets a placeholder.
    Claimed results are emitted directly after their assistant message, in
    call order. Tool messages answering no call are left where they are;
    extra answers to an already answered call are dropped.

    Args:
        messages: The conversation history as it will be sent.

    Returns:
        The normalized message tuple.
    """
    answered_ids: set[str] = set()
    claims: dict[int, list[int | None]] = {}
    claimed: set[int] = set()

    for index, message in enumerate(messages):
        if message.role != "assistant" or not message.tool_calls:
            continue
        block = _block_tool_indexes(messages, index)
        slots: list[int | None] = []
        for call in message.tool_calls:
            if not call.id:
                continue
            answered_ids.add(call.id)
            match = next(
                (i for i in block if i not in claimed and messages[i].tool_call_id == call.id),
                None,
            )
            if match is not None:
                claimed.add(match)
            slots.append(match)
        claims[index] = slots

    for index, slots in claims.items():
        calls = [call for call in messages[index].tool_calls or () if call.id]
        for position, call in enumerate(calls):
            if slots[position] is not None:
                continue
            displaced = next(
                (
                    i
                    for i, candidate in enumerate(messages)
                    if i not in claimed and candidate.role == "tool" and candidate.tool_call_id == call.id
                ),
                None,
            )
            if displaced is not None:
                claimed.add(displaced)
                slots[position] = displaced

    normalized: list[Message] = []
    for index, message in enumerate(messages):
        if message.role == "tool" and (index in claimed or message.tool_call_id in answered_ids):
            if index not in claimed:
                LOGGER.debug("Dropping duplicate result for tool call %s", message.tool_call_id)
            continue

        normalized.append(message)

        if index not in claims:
            continue
        calls = [call for call in message.tool_calls or () if call.id]
        for call, slot in zip(calls, claims[index]):
            if slot is not None:
                normalized.append(messages[slot])
                continue
            LOGGER.debug("Inserting placeholder result for tool call %s", call.id)
            normalized.append(
                Message.tool(
                    content=MISSING_TOOL_OUTPUT_PLACEHOLDER,
                    tool_call_id=call.id,
                    name=call.name or None,
                )
            )

    return tuple(normalized)


def _block_tool_indexes(messages: Sequence[Message], assistant_index: int) -> list[int]:
    indexes: list[int] = []
    for index in range(assistant_index + 1, len(messages)):
        role = messages[index].role
        if role in ("user", "assistant"):
            break
        if role == "tool":
            indexes.append(index)
    return indexes


def find_missing_tool_outputs(messages: Sequence[Message]) -> list[str]:
    """List tool call ids not answered before the next user/assistant turn."""
    missing: list[str] = []
    pending: list[str] = []

    for message in messages:
        if pending:
            if message.role == "tool":
                if message.tool_call_id in pending:
                    pending.remove(message.tool_call_id)
                continue
            if message.role in ("assistant", "user"):
                missing.extend(call_id for call_id in pending if call_id not in missing)
                pending = []

        if not pending and message.role == "assistant" and message.tool_calls:
            pending = [call.id for call in message.tool_calls if call.id]

    missing.extend(call_id for call_id in pending if call_id not in missing)
    return missing
