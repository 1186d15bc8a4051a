"""Assistant settings and environment overrides."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, fields, replace
from functools import lru_cache
from typing import Any, Dict, Mapping, get_args, get_origin, get_type_hints

from ..ai.client import DEFAULT_APP_TITLE, OPENROUTER_BASE_URL, ClientSettings
from ..ai.orchestration.runner import DEFAULT_MAX_TOOL_ROUNDS

__all__ = [
    "AssistantSettings",
    "parse_setting",
    "redact_secret",
]

LOGGER = logging.getLogger(__name__)

# Later entries win when several variables map to the same field.
_ENV_OVERRIDES: Mapping[str, str] = {
    "OPENROUTER_API_KEY": "api_key",
    "TOOLROUNDS_API_KEY": "api_key",
    "TOOLROUNDS_BASE_URL": "base_url",
    "TOOLROUNDS_MODEL": "model",
    "TOOLROUNDS_SYSTEM_PROMPT": "system_prompt",
    "TOOLROUNDS_MAX_TOOL_ROUNDS": "max_tool_rounds",
    "TOOLROUNDS_REQUEST_TIMEOUT": "request_timeout",
    "TOOLROUNDS_APP_TITLE": "app_title",
    "TOOLROUNDS_REFERER": "referer",
    "TOOLROUNDS_DEBUG_LOGGING": "debug_logging",
}
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}


@dataclass(slots=True)
class AssistantSettings:
    """User-configurable settings read by the conversation at send time."""

    api_key: str = ""
    base_url: str = OPENROUTER_BASE_URL
    model: str = ""
    system_prompt: str = ""
    max_tool_rounds: int = DEFAULT_MAX_TOOL_ROUNDS
    request_timeout: float = 60.0
    app_title: str | None = DEFAULT_APP_TITLE
    referer: str | None = None
    default_headers: dict[str, str] = field(default_factory=dict)
    debug_logging: bool = False

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        *,
        base: AssistantSettings | None = None,
    ) -> AssistantSettings:
        """Return ``base`` (or defaults) with environment overrides applied.

        Values that do not parse as the field's type are skipped with a
        warning rather than failing startup.
        """
        env = os.environ if environ is None else environ
        overrides: Dict[str, Any] = {}
        for env_name, field_name in _ENV_OVERRIDES.items():
            raw = env.get(env_name)
            if raw is None:
                continue
            try:
                overrides[field_name] = parse_setting(field_name, raw)
            except ValueError as exc:
                LOGGER.warning("Ignoring environment override %s: %s", env_name, exc)
        return (base or cls()).with_overrides(overrides, source="environment")

    def with_overrides(self, overrides: Mapping[str, Any], *, source: str = "runtime") -> AssistantSettings:
        """Return a copy with known, non-None fields replaced."""
        known = _field_kinds()
        accepted = {key: value for key, value in overrides.items() if key in known and value is not None}
        unknown = sorted(key for key in overrides if key not in known)
        if unknown:
            LOGGER.warning("Ignoring unknown %s settings: %s", source, unknown)
        if not accepted:
            return self
        LOGGER.debug("Applying %s settings overrides: %s", source, sorted(accepted))
        return replace(self, **accepted)

    def to_client_settings(self) -> ClientSettings:
        return ClientSettings(
            api_key=self.api_key,
            base_url=self.base_url,
            request_timeout=self.request_timeout,
            app_title=self.app_title,
            referer=self.referer,
            default_headers=dict(self.default_headers),
            debug_logging=self.debug_logging,
        )

    def describe(self) -> dict[str, Any]:
        """Settings as a dict with the API key redacted, for logs and dumps."""
        payload = {item.name: getattr(self, item.name) for item in fields(self)}
        payload["api_key"] = redact_secret(self.api_key)
        return payload


def parse_setting(name: str, raw: str) -> Any:
    """Convert the text ``raw`` to the declared type of setting ``name``.

    Raises:
        ValueError: If ``name`` is not a setting or ``raw`` does not parse.
    """
    kind = _field_kinds().get(name)
    if kind is None:
        raise ValueError(f"Unknown setting '{name}'.")
    text = raw.strip()
    if kind is bool:
        lowered = text.lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
        raise ValueError(f"Cannot coerce '{raw}' to a boolean.")
    if kind is int:
        return int(text, 10)
    if kind is float:
        return float(text)
    if kind is dict:
        try:
            value = json.loads(text or "{}")
        except json.JSONDecodeError as exc:
            raise ValueError(f"{name} must be a JSON object") from exc
        if not isinstance(value, dict):
            raise ValueError(f"{name} must be a JSON object")
        return value
    return text


@lru_cache(maxsize=None)
def _field_kinds() -> Dict[str, type]:
    kinds: Dict[str, type] = {}
    for name, hint in get_type_hints(AssistantSettings).items():
        origin = get_origin(hint)
        if origin is dict:
            kinds[name] = dict
        elif origin is not None:
            # Optional[X] -> X
            kinds[name] = next(arg for arg in get_args(hint) if arg is not type(None))
        else:
            kinds[name] = hint
    return kinds


def redact_secret(value: str) -> str:
    stripped = (value or "").strip()
    if not stripped:
        return ""
    if len(stripped) <= 4:
        return "*" * len(stripped)
    return f"{stripped[:2]}{'*' * (len(stripped) - 4)}{stripped[-2:]}"
