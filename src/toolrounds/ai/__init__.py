"""AI client, round orchestration, and tool wiring."""

from .client import ClientSettings, OpenRouterClient
from .errors import AssistantError, ConfigurationError, ProviderError

__all__ = [
    "ClientSettings",
    "OpenRouterClient",
    "AssistantError",
    "ConfigurationError",
    "ProviderError",
]
