"""
Immortal Bard - natural-language browser automation.

Turns instructions into Playwright code with an LLM, runs the code in a
remote Kernel browser and returns what it produced.
"""

__version__ = "0.1.0"
__author__ = "Immortal Bard Contributors"

from .bard import BardState, ImmortalBard
from .errors import (
    BardError,
    ConfigurationError,
    ExecutionClientError,
    GenerationError,
    PreconditionError,
    RemoteTransportError,
    SceneNotSetError,
    SessionConflictError,
    TeardownError,
)
from .providers import Provider
from .types import BeseechResult, ContextCaptureOptions, SceneConfig

__all__ = [
    "BardError",
    "BardState",
    "BeseechResult",
    "ConfigurationError",
    "ContextCaptureOptions",
    "ExecutionClientError",
    "GenerationError",
    "ImmortalBard",
    "PreconditionError",
    "Provider",
    "RemoteTransportError",
    "SceneConfig",
    "SceneNotSetError",
    "SessionConflictError",
    "TeardownError",
]
