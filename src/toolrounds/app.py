"""Console host for the tool-calling assistant."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from typing import Any, Dict, Mapping, Sequence, TextIO

from .ai.client import OpenRouterClient
from .ai.tools import RegistryToolExecutor, ToolRegistry, ToolRisk, ToolSpec
from .chat.conversation import ConversationState
from .services.settings import AssistantSettings, parse_setting
from .utils import logging as logging_utils

_LOGGER = logging.getLogger(__name__)

RESET_COMMAND = "/reset"
QUIT_COMMANDS = {"/quit", "/exit"}


def configure_logging(debug: bool = False, *, force: bool = False) -> None:
    """Configure file + console logging for the console host."""

    level = logging.DEBUG if debug else logging.INFO
    log_path = logging_utils.setup_logging(level, force=force)
    _LOGGER.debug("Logging to %s (level=%s)", log_path, logging.getLevelName(level))


def build_notes_registry(notes: list[str] | None = None) -> ToolRegistry:
    """Registry with a small in-memory notes scratchpad for the console demo."""

    store = notes if notes is not None else []
    registry = ToolRegistry()

    def _add(args: Mapping[str, Any]) -> dict[str, Any]:
        store.append(str(args["text"]))
        return {"success": True, "count": len(store)}

    def _list(_args: Mapping[str, Any]) -> dict[str, Any]:
        return {"notes": list(store)}

    def _clear(args: Mapping[str, Any]) -> dict[str, Any]:
        if not args.get("confirm"):
            return {"error": "Set confirm=true to clear all notes."}
        removed = len(store)
        store.clear()
        return {"success": True, "removed": removed}

    registry.register_function(
        ToolSpec(
            name="notes_add",
            description="Save a short note.",
            parameters={
                "type": "object",
                "properties": {"text": {"type": "string", "description": "Note text."}},
                "required": ["text"],
            },
            risk=ToolRisk.WRITE,
        ),
        _add,
    )
    registry.register_function(
        ToolSpec(name="notes_list", description="List saved notes."),
        _list,
    )
    registry.register_function(
        ToolSpec(
            name="notes_clear",
            description="Delete every saved note.",
            parameters={
                "type": "object",
                "properties": {"confirm": {"type": "boolean"}},
                "required": ["confirm"],
            },
            risk=ToolRisk.DESTRUCTIVE,
        ),
        _clear,
    )
    return registry


def load_settings(args: argparse.Namespace, environ: Mapping[str, str] | None = None) -> AssistantSettings:
    """Defaults, then environment overrides, then command-line overrides."""

    settings = AssistantSettings.from_env(environ)
    cli: Dict[str, Any] = _coerce_cli_overrides(args.overrides or [])
    if args.model:
        cli["model"] = args.model
    if args.system_prompt:
        cli["system_prompt"] = args.system_prompt
    if args.max_tool_rounds is not None:
        cli["max_tool_rounds"] = args.max_tool_rounds
    return settings.with_overrides(cli, source="command-line")


class ConsoleView:
    """Prints streamed text and tool activity as the conversation changes."""

    def __init__(self, conversation: ConversationState, stream: TextIO | None = None) -> None:
        self._conversation = conversation
        self._stream = stream or sys.stdout
        self._printed = ""
        self._tools: tuple[str, ...] = ()

    def __call__(self) -> None:
        current = self._conversation.streaming_content
        if current.startswith(self._printed):
            self._stream.write(current[len(self._printed):])
        self._printed = current
        tools = self._conversation.active_tool_calls
        for name in tools[len(self._tools):]:
            self._stream.write(f"\n[tool: {name}]")
        self._tools = tools
        self._stream.flush()

    def finish(self) -> None:
        if self._conversation.error:
            self._stream.write(f"\n! {self._conversation.error}")
        self._stream.write("\n")
        self._stream.flush()
        self._printed = ""
        self._tools = ()


async def run_console(conversation: ConversationState, *, stdin: TextIO | None = None) -> None:
    """Read lines from stdin and send them until EOF or /quit."""

    source = stdin or sys.stdin
    view = ConsoleView(conversation)
    conversation.add_listener(view)
    try:
        while True:
            line = await asyncio.to_thread(source.readline)
            if not line:
                break
            text = line.strip()
            if text in QUIT_COMMANDS:
                break
            if text == RESET_COMMAND:
                conversation.handle_reset()
                print("(conversation cleared)")
                continue
            conversation.set_draft(text)
            await conversation.handle_send()
            view.finish()
    finally:
        conversation.remove_listener(view)


def main(argv: Sequence[str] | None = None) -> int:
    """Console script entry point; returns the process exit code."""

    args = _parse_cli_args(argv)
    configure_logging(args.debug or _env_flag("TOOLROUNDS_DEBUG"))

    try:
        settings = load_settings(args)
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        return 2

    if args.dump_settings:
        print(json.dumps(settings.describe(), indent=2))
        return 0

    registry = build_notes_registry()
    client = OpenRouterClient(settings.to_client_settings())
    conversation = ConversationState(
        settings,
        client,
        RegistryToolExecutor(registry),
        tool_schemas=registry.openai_tools,
        remember_model=lambda model_id: _LOGGER.info("Using model %s", model_id),
    )

    async def _session() -> None:
        try:
            await run_console(conversation)
        finally:
            await client.aclose()

    try:
        asyncio.run(_session())
    except KeyboardInterrupt:  # pragma: no cover - interactive exit
        _LOGGER.info("Interrupted; exiting.")
    return 0


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in {"1", "true", "yes", "on", "debug"}


def _parse_cli_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="toolrounds",
        description="Chat with a tool-calling assistant through OpenRouter.",
    )
    parser.add_argument("--model", help="Model id, e.g. openai/gpt-4o-mini.")
    parser.add_argument("--system-prompt", help="System prompt sent with every request.")
    parser.add_argument("--max-tool-rounds", type=int, help="Round ceiling per message.")
    parser.add_argument("--debug", action="store_true", help="Log at debug level.")
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings as JSON (API key redacted) and exit.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override any setting by field name; may be repeated.",
    )
    return parser.parse_args(argv)


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    for entry in items:
        key, sep, raw_value = entry.partition("=")
        key = key.strip()
        if not sep:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        if not key:
            raise ValueError("Override is missing a field name.")
        overrides[key] = parse_setting(key, raw_value)
    return overrides


if __name__ == "__main__":  # pragma: no cover - manual entry point
    raise SystemExit(main())
