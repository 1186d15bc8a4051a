"""Tool registry and executor adapter."""

from .types import SimpleTool, Tool, ToolRisk, ToolSpec
from .registry import DuplicateToolError, ToolNotFoundError, ToolRegistration, ToolRegistry
from .executor import RegistryToolExecutor, parse_tool_arguments

__all__ = [
    "SimpleTool",
    "Tool",
    "ToolRisk",
    "ToolSpec",
    "DuplicateToolError",
    "ToolNotFoundError",
    "ToolRegistration",
    "ToolRegistry",
    "RegistryToolExecutor",
    "parse_tool_arguments",
]
