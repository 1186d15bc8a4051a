"""Tool definitions: what the model is told about a tool and how it runs."""

from __future__ import annotations

import enum
import inspect
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, Protocol, Union, runtime_checkable

__all__ = [
    "ToolRisk",
    "ToolSpec",
    "ToolHandler",
    "AsyncToolHandler",
    "Tool",
    "SimpleTool",
]

_EMPTY_OBJECT_SCHEMA: Mapping[str, Any] = {"type": "object", "properties": {}}


class ToolRisk(str, enum.Enum):
    """How far a tool can change host state."""

    READ = "read"
    WRITE = "write"
    DESTRUCTIVE = "destructive"


@dataclass(slots=True, frozen=True)
class ToolSpec:
    """Name, description and argument schema advertised to the model.

    ``parameters`` is a JSON Schema for the arguments object; an empty
    mapping means the tool takes no arguments.
    """

    name: str
    description: str
    parameters: Mapping[str, Any] = field(default_factory=dict)
    risk: ToolRisk = ToolRisk.READ

    def __post_init__(self) -> None:
        if not self.name.strip():
            raise ValueError("Tool name must not be empty")

    @property
    def schema(self) -> dict[str, Any]:
        return dict(self.parameters or _EMPTY_OBJECT_SCHEMA)

    def to_openai_tool(self) -> dict[str, Any]:
        function = {"name": self.name, "description": self.description, "parameters": self.schema}
        return {"type": "function", "function": function}


ToolHandler = Callable[[Mapping[str, Any]], Any]
AsyncToolHandler = Callable[[Mapping[str, Any]], Awaitable[Any]]


@runtime_checkable
class Tool(Protocol):
    """Anything the registry can run: a spec plus an async ``execute``."""

    @property
    def name(self) -> str:
        ...

    @property
    def spec(self) -> ToolSpec:
        ...

    async def execute(self, arguments: Mapping[str, Any]) -> Any:
        ...


@dataclass
class SimpleTool:
    """Adapts a plain function to the Tool protocol.

    The handler receives the parsed arguments mapping. Coroutine handlers
    are awaited; anything else is returned as-is.
    """

    spec: ToolSpec
    handler: Union[ToolHandler, AsyncToolHandler]

    @property
    def name(self) -> str:
        return self.spec.name

    async def execute(self, arguments: Mapping[str, Any]) -> Any:
        outcome = self.handler(arguments)
        return await outcome if inspect.isawaitable(outcome) else outcome
