"""Error types raised by the assistant core.

Configuration and provider failures surface to the conversation's error
slot; per-tool failures are recorded in the conversation instead and never
raise out of the round loop.
"""

from __future__ import annotations

__all__ = [
    "AssistantError",
    "ConfigurationError",
    "ProviderError",
    "MISSING_API_KEY_MESSAGE",
    "MISSING_MODEL_MESSAGE",
    "PROVIDER_FALLBACK_MESSAGE",
]

MISSING_API_KEY_MESSAGE = "Add an OpenRouter API key in Settings to use the assistant."
MISSING_MODEL_MESSAGE = "Add a model id before sending."
PROVIDER_FALLBACK_MESSAGE = "Failed to reach OpenRouter."


class AssistantError(Exception):
    """Base class for assistant core errors."""


class ConfigurationError(AssistantError):
    """Raised when required configuration (API key, model id) is missing."""


class ProviderError(AssistantError):
    """Raised when the model provider rejects or fails a request.

    Attributes:
        status_code: HTTP status reported by the provider, when known.
    """

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
