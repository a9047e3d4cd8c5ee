"""
LLM Provider configuration for Immortal Bard.

Provides provider-specific endpoints, default models and credentials, and
the `ProviderSpec` values the code generator selects between.
"""

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Optional, Union

from .errors import ConfigurationError

if TYPE_CHECKING:
    from .adapters import LLMAdapter


class Provider(str, Enum):
    """Supported LLM providers."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"


# Default endpoints for each provider
PROVIDER_ENDPOINTS = {
    Provider.OPENAI: "https://api.openai.com/v1",
    Provider.ANTHROPIC: "https://api.anthropic.com/v1",
    Provider.GOOGLE: "https://generativelanguage.googleapis.com/v1beta",
}

# Default models for each provider
PROVIDER_DEFAULT_MODELS = {
    Provider.OPENAI: "gpt-4.1",
    Provider.ANTHROPIC: "claude-sonnet-4-5",
    Provider.GOOGLE: "gemini-2.5-pro",
}

# Environment variable holding each provider's API key
PROVIDER_API_KEY_ENV = {
    Provider.OPENAI: "OPENAI_API_KEY",
    Provider.ANTHROPIC: "ANTHROPIC_API_KEY",
    Provider.GOOGLE: "GOOGLE_API_KEY",
}

# Provider display names
PROVIDER_DISPLAY_NAMES = {
    Provider.OPENAI: "OpenAI",
    Provider.ANTHROPIC: "Anthropic",
    Provider.GOOGLE: "Google",
}

# Model name fragments of reasoning models, which reject a custom temperature
REASONING_MODEL_MARKERS = ("o1", "gpt-5", "gpt5")


def is_reasoning_model(model: str) -> bool:
    """Check whether a model name identifies a reasoning model."""
    name = model.lower()
    return any(marker in name for marker in REASONING_MODEL_MARKERS)


def parse_provider(value: Union[str, Provider]) -> Provider:
    """Resolve a provider name to a Provider.

    Raises:
        ConfigurationError: If the provider is not supported
    """
    if isinstance(value, Provider):
        return value
    try:
        return Provider(str(value).lower())
    except ValueError:
        supported = ", ".join(p.value for p in Provider)
        raise ConfigurationError(
            f"Unknown provider: {value}. Supported providers: {supported}"
        ) from None


@dataclass
class ProviderConfig:
    """Configuration for an LLM provider."""

    provider: Provider = Provider.ANTHROPIC
    api_key: Optional[str] = None
    model: Optional[str] = None

    @property
    def endpoint(self) -> str:
        """Get the endpoint URL for this provider."""
        return PROVIDER_ENDPOINTS[self.provider]

    @property
    def effective_model(self) -> str:
        """Get the effective model name."""
        if self.model:
            return self.model
        return PROVIDER_DEFAULT_MODELS[self.provider]

    @property
    def display_name(self) -> str:
        """Get the display name for this provider."""
        return PROVIDER_DISPLAY_NAMES.get(self.provider, self.provider.value)


@dataclass(frozen=True)
class ProviderSpec:
    """Everything the code generator needs to know about one provider."""

    provider: Provider
    display_name: str
    default_model: str
    api_key_env: str

    @property
    def name(self) -> str:
        return self.provider.value

    def resolve_model(self, model: Optional[str] = None) -> str:
        return model or self.default_model

    def build_client(
        self,
        api_key: Optional[str],
        model: Optional[str] = None,
    ) -> "LLMAdapter":
        """Build a chat adapter for this provider.

        Raises:
            ConfigurationError: If no API key is available
        """
        if not api_key:
            raise ConfigurationError(
                f"{self.display_name} API key not found. "
                f"Set {self.api_key_env} or pass it to the constructor."
            )

        from .adapters import create_adapter

        return create_adapter(ProviderConfig(
            provider=self.provider,
            api_key=api_key,
            model=self.resolve_model(model),
        ))


PROVIDER_SPECS = {
    provider: ProviderSpec(
        provider=provider,
        display_name=PROVIDER_DISPLAY_NAMES[provider],
        default_model=PROVIDER_DEFAULT_MODELS[provider],
        api_key_env=PROVIDER_API_KEY_ENV[provider],
    )
    for provider in Provider
}


def get_provider_spec(value: Union[str, Provider]) -> ProviderSpec:
    """Look up the ProviderSpec for a provider name."""
    return PROVIDER_SPECS[parse_provider(value)]
