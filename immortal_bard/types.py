"""
Type definitions for Immortal Bard.

Provides typed dataclasses for the configuration handed to
`ImmortalBard.scene()` and the results handed back by the pipeline.
"""

from dataclasses import dataclass, fields, replace
from typing import Any, Optional, Union

from .config import DEFAULT_CONTEXT_MAX_TOKENS, DEFAULT_DOM_MAX_DEPTH
from .errors import ConfigurationError
from .providers import Provider, parse_provider


CAPTURE_STRATEGIES = ("accessibility", "dom")


@dataclass
class ContextCaptureOptions:
    """Page context capture settings.

    Attributes:
        enabled: Whether to capture page context before generating code
        strategy: "accessibility" (ARIA snapshot) or "dom" (simplified DOM tree)
        max_tokens: Approximate token budget for the formatted context
        max_depth: Recursion limit of the DOM strategy
    """
    enabled: bool = True
    strategy: str = "accessibility"
    max_tokens: Optional[int] = DEFAULT_CONTEXT_MAX_TOKENS
    max_depth: int = DEFAULT_DOM_MAX_DEPTH

    def __post_init__(self):
        if self.strategy not in CAPTURE_STRATEGIES:
            raise ConfigurationError(
                f"Unknown context capture strategy: {self.strategy}. "
                f"Use one of: {', '.join(CAPTURE_STRATEGIES)}"
            )

    def merged(self, overrides: dict[str, Any]) -> "ContextCaptureOptions":
        """Return a copy with the given fields replaced."""
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise ConfigurationError(
                f"Unknown context capture option(s): {', '.join(sorted(unknown))}"
            )
        return replace(self, **overrides)


@dataclass
class SceneConfig:
    """Configuration for `ImmortalBard.scene()`.

    A dict `context_capture` is merged over the current options; a
    ContextCaptureOptions instance replaces them.
    """
    provider: Union[Provider, str]
    model: Optional[str] = None
    context_capture: Optional[Union[ContextCaptureOptions, dict[str, Any]]] = None

    def __post_init__(self):
        self.provider = parse_provider(self.provider)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SceneConfig":
        """Create from dictionary."""
        if "provider" not in data:
            raise ConfigurationError("Scene configuration requires a provider")
        return cls(
            provider=data["provider"],
            model=data.get("model"),
            context_capture=data.get("context_capture"),
        )

    def apply_capture(self, current: ContextCaptureOptions) -> ContextCaptureOptions:
        """Resolve the capture options this scene asks for."""
        if self.context_capture is None:
            return current
        if isinstance(self.context_capture, ContextCaptureOptions):
            return self.context_capture
        return current.merged(self.context_capture)


@dataclass
class CaptureResult:
    """Outcome of a best-effort page context capture.

    Exactly one of `context` and `error` is set.
    """
    context: Optional[str] = None
    error: Optional[str] = None
    tag: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None and self.context is not None

    @classmethod
    def success(cls, context: str, tag: str) -> "CaptureResult":
        return cls(context=context, tag=tag)

    @classmethod
    def failure(cls, error: str) -> "CaptureResult":
        return cls(error=error)


@dataclass
class BeseechResult:
    """The uniform result of `ImmortalBard.beseech()`.

    Attributes:
        code: The generated code, empty when generation did not happen
        result: The value returned by the code on the remote browser
        error: None on success, otherwise a description of what failed
    """
    code: str = ""
    result: Any = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "code": self.code,
            "result": self.result,
            "error": self.error,
        }

