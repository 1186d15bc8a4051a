"""Service layer helpers (settings)."""

from .settings import AssistantSettings, parse_setting, redact_secret

__all__ = ["AssistantSettings", "parse_setting", "redact_secret"]
