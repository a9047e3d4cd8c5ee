"""
Configuration management for Immortal Bard.

Provides the settings dataclass, environment variable loading and the
numeric limits shared by the pipeline.
"""

import math
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load environment variables from .env file if present
load_dotenv()


# Execution timeout bounds (seconds)
TIMEOUT_MIN = 1
TIMEOUT_MAX = 300
TIMEOUT_DEFAULT = 60

# Generation parameters
MAX_OUTPUT_TOKENS = 2000
DEFAULT_TEMPERATURE = 0.2

# Page context capture
DEFAULT_CONTEXT_MAX_TOKENS = 4000
DEFAULT_DOM_MAX_DEPTH = 5

DEFAULT_KERNEL_BASE_URL = "https://api.onkernel.com"


def get_base_dir() -> Path:
    """Get the base directory for Immortal Bard data."""
    return Path.home() / ".immortal_bard"


def get_runs_dir() -> Path:
    """Get the directory for run logs."""
    return get_base_dir() / "runs"


def validate_timeout(timeout: Optional[float] = None) -> int:
    """Clamp an execution timeout to the accepted range.

    Args:
        timeout: Requested timeout in seconds, or None for the default

    Returns:
        Timeout in whole seconds between TIMEOUT_MIN and TIMEOUT_MAX

    Raises:
        ValueError: If the timeout is not a number, or is NaN
    """
    if timeout is None:
        return TIMEOUT_DEFAULT
    seconds = float(timeout)
    if math.isnan(seconds):
        raise ValueError("timeout is NaN")
    # Bounds first, so infinities clamp instead of failing int()
    if seconds < TIMEOUT_MIN:
        return TIMEOUT_MIN
    if seconds > TIMEOUT_MAX:
        return TIMEOUT_MAX
    return int(seconds)


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").lower() in ("1", "true", "yes")


@dataclass
class BardSettings:
    """Credentials and endpoints, resolved from the environment by default.

    Explicit values always win over environment variables.
    """

    openai_api_key: Optional[str] = field(
        default_factory=lambda: os.getenv("OPENAI_API_KEY")
    )
    anthropic_api_key: Optional[str] = field(
        default_factory=lambda: os.getenv("ANTHROPIC_API_KEY")
    )
    google_api_key: Optional[str] = field(
        default_factory=lambda: os.getenv("GOOGLE_API_KEY")
    )

    # Kernel browser API
    kernel_api_key: Optional[str] = field(
        default_factory=lambda: os.getenv("KERNEL_API_KEY")
    )
    kernel_base_url: str = field(
        default_factory=lambda: os.getenv("KERNEL_BASE_URL", DEFAULT_KERNEL_BASE_URL)
    )

    # Debug mode - enables verbose logging (off by default)
    debug: bool = field(default_factory=lambda: _env_flag("IMMORTAL_BARD_DEBUG"))

    def api_key_for(self, provider: str) -> Optional[str]:
        """Get the API key for a provider name ("openai", "anthropic", "google")."""
        return getattr(self, f"{provider}_api_key", None)

    @classmethod
    def from_keys(
        cls,
        openai_api_key: Optional[str] = None,
        anthropic_api_key: Optional[str] = None,
        google_api_key: Optional[str] = None,
    ) -> "BardSettings":
        """Create settings, overriding environment keys with explicit ones."""
        settings = cls()
        if openai_api_key:
            settings.openai_api_key = openai_api_key
        if anthropic_api_key:
            settings.anthropic_api_key = anthropic_api_key
        if google_api_key:
            settings.google_api_key = google_api_key
        return settings


# Default configuration values for documentation
DEFAULTS = {
    "provider": "anthropic",
    "timeout": TIMEOUT_DEFAULT,
    "context_strategy": "accessibility",
    "context_max_tokens": DEFAULT_CONTEXT_MAX_TOKENS,
    "dom_max_depth": DEFAULT_DOM_MAX_DEPTH,
    "kernel_base_url": DEFAULT_KERNEL_BASE_URL,
}
