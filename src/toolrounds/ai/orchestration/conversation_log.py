"""Append-only message log shared by the conversation and the round runner."""

from __future__ import annotations

import logging
from typing import Callable, Iterable

from .types import Message

__all__ = ["ConversationLog"]

LOGGER = logging.getLogger(__name__)


class ConversationLog:
    """Ordered, append-only sequence of messages.

    The round runner reads and writes the log directly so it always sees the
    latest history. Clearing the conversation abandons the log object
    instead of emptying it: a run still holding the old log can no longer
    change anything visible, and it stops at its next suspension point.
    """

    def __init__(
        self,
        messages: Iterable[Message] = (),
        *,
        on_append: Callable[[Message], None] | None = None,
    ) -> None:
        self._messages: list[Message] = list(messages)
        self._on_append = on_append
        self._abandoned = False

    def __len__(self) -> int:
        return len(self._messages)

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    @property
    def abandoned(self) -> bool:
        return self._abandoned

    def append(self, message: Message) -> bool:
        """Append ``message``; returns ``False`` if the log was abandoned."""
        if self._abandoned:
            LOGGER.debug("Dropping %s message appended to an abandoned log", message.role)
            return False
        self._messages.append(message)
        if self._on_append is not None:
            self._on_append(message)
        return True

    def abandon(self) -> None:
        self._abandoned = True
        self._on_append = None
