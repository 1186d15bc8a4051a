"""Tool registry.

The registry is the host's catalogue of callable tools. It answers two
questions for the round loop: which tool definitions to advertise to the
model (:meth:`ToolRegistry.openai_tools`) and which implementation runs
when the model names a tool (:meth:`ToolRegistry.get`).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterator, Sequence

from .types import AsyncToolHandler, SimpleTool, Tool, ToolHandler, ToolSpec

__all__ = [
    "ToolRegistry",
    "ToolRegistration",
    "DuplicateToolError",
    "ToolNotFoundError",
]

LOGGER = logging.getLogger(__name__)


class DuplicateToolError(Exception):
    """A tool with this name is already registered."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Duplicate tool name: {name}")


class ToolNotFoundError(Exception):
    """No enabled tool is registered under this name."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Unknown tool: {name}")


@dataclass(slots=True)
class ToolRegistration:
    tool: Tool
    enabled: bool = True

    @property
    def name(self) -> str:
        return self.tool.name

    @property
    def spec(self) -> ToolSpec:
        return self.tool.spec


class ToolRegistry:
    """Ordered mapping of tool name to registration.

    Registration order is the order tools are advertised in, so the model
    sees a stable tool list across sends.

    Example:
        registry = ToolRegistry()
        registry.register_function(
            ToolSpec(name="notes_list", description="List saved notes."),
            lambda args: {"notes": notes},
        )
        conversation = ConversationState(..., tool_schemas=registry.openai_tools)
    """

    def __init__(self) -> None:
        self._entries: dict[str, ToolRegistration] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.has(name)

    def __iter__(self) -> Iterator[ToolRegistration]:
        return iter(list(self._entries.values()))

    def register(self, tool: Tool, *, enabled: bool = True, allow_override: bool = False) -> ToolRegistration:
        """Add ``tool`` under its spec name.

        Raises:
            DuplicateToolError: When the name is taken and ``allow_override``
                is false.
        """
        if tool.name in self._entries and not allow_override:
            raise DuplicateToolError(tool.name)
        entry = ToolRegistration(tool=tool, enabled=enabled)
        self._entries[tool.name] = entry
        LOGGER.debug("Tool %s registered (risk=%s, enabled=%s)", tool.name, tool.spec.risk, enabled)
        return entry

    def register_function(
        self,
        spec: ToolSpec,
        handler: ToolHandler | AsyncToolHandler,
        *,
        enabled: bool = True,
        allow_override: bool = False,
    ) -> ToolRegistration:
        """Wrap a sync or async callable in a SimpleTool and register it."""
        return self.register(SimpleTool(spec=spec, handler=handler), enabled=enabled, allow_override=allow_override)

    def unregister(self, name: str) -> bool:
        removed = self._entries.pop(name, None)
        if removed is not None:
            LOGGER.debug("Tool %s unregistered", name)
        return removed is not None

    def get(self, name: str) -> Tool | None:
        entry = self._entries.get(name)
        return entry.tool if entry is not None and entry.enabled else None

    def get_required(self, name: str) -> Tool:
        tool = self.get(name)
        if tool is None:
            raise ToolNotFoundError(name)
        return tool

    def has(self, name: str) -> bool:
        return self.get(name) is not None

    def list_specs(self, *, include_disabled: bool = False) -> list[ToolSpec]:
        return [entry.spec for entry in self._entries.values() if include_disabled or entry.enabled]

    def list_names(self, *, include_disabled: bool = False) -> list[str]:
        return [spec.name for spec in self.list_specs(include_disabled=include_disabled)]

    def openai_tools(self, *, filter_names: Sequence[str] | None = None) -> list[dict[str, Any]]:
        """Function-tool definitions for every enabled tool.

        Bound to a registry, this method is a zero-argument tool schema
        source for :class:`~toolrounds.chat.conversation.ConversationState`.
        """
        wanted = set(filter_names) if filter_names is not None else None
        return [
            spec.to_openai_tool()
            for spec in self.list_specs()
            if wanted is None or spec.name in wanted
        ]

    def enable(self, name: str) -> bool:
        return self._set_enabled(name, True)

    def disable(self, name: str) -> bool:
        return self._set_enabled(name, False)

    def _set_enabled(self, name: str, enabled: bool) -> bool:
        entry = self._entries.get(name)
        if entry is None:
            return False
        entry.enabled = enabled
        return True
