"""Tool executor adapter backed by a ToolRegistry.

Bad requests from the model (unknown tool, malformed or schema-violating
arguments) come back as ``{"error": ...}`` results so the model can correct
itself on the next round. Exceptions raised by a tool handler propagate to
the caller.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping

from jsonschema import Draft7Validator, SchemaError, ValidationError

from ..orchestration.types import ToolCallRequest
from .registry import ToolRegistry

__all__ = ["RegistryToolExecutor", "parse_tool_arguments"]

LOGGER = logging.getLogger(__name__)


def parse_tool_arguments(arguments: str | Mapping[str, Any] | None) -> dict[str, Any]:
    """Parse tool arguments from a JSON object string.

    Raises:
        ValueError: If the payload is not valid JSON or not an object.
    """
    if isinstance(arguments, Mapping):
        return dict(arguments)
    if not arguments or not arguments.strip():
        return {}

    try:
        parsed = json.loads(arguments)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON in tool arguments: {exc}") from exc
    if not isinstance(parsed, dict):
        raise ValueError(f"Arguments must be a JSON object, got {type(parsed).__name__}")
    return parsed


class RegistryToolExecutor:
    """Callable tool executor dispatching calls to registered tools."""

    def __init__(self, registry: ToolRegistry, *, validate_arguments: bool = True) -> None:
        self._registry = registry
        self._validate_arguments = validate_arguments
        self._validators: dict[str, Draft7Validator] = {}

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    async def __call__(self, call: ToolCallRequest) -> Any:
        tool = self._registry.get(call.name)
        if tool is None:
            LOGGER.warning("Model requested unknown tool %r", call.name)
            return {"error": f"Unknown tool: {call.name}"}

        try:
            arguments = parse_tool_arguments(call.arguments)
        except ValueError as exc:
            return {"error": str(exc)}

        if self._validate_arguments:
            problem = self._validate(call.name, tool.spec.schema, arguments)
            if problem:
                return {"error": f"Invalid arguments for {call.name}: {problem}"}

        LOGGER.debug("Running tool %s (call %s)", call.name, call.id)
        return await tool.execute(arguments)

    def _validate(self, name: str, schema: Mapping[str, Any], arguments: Mapping[str, Any]) -> str | None:
        validator = self._validators.get(name)
        if validator is None:
            try:
                Draft7Validator.check_schema(schema)
            except SchemaError as exc:
                LOGGER.warning("Skipping argument validation for %s: invalid schema (%s)", name, exc.message)
                return None
            validator = self._validators[name] = Draft7Validator(schema)
        try:
            validator.validate(arguments)
        except ValidationError as error:
            return _format_validation_error(error)
        return None


def _format_validation_error(error: ValidationError) -> str:
    path = ".".join(str(part) for part in error.path)
    if path:
        return f"{path}: {error.message}"
    return error.message
