"""
Error types for Immortal Bard.

Configuration and precondition errors signal misuse and are always raised.
Remote transport errors come from the model providers or the Kernel API;
`ImmortalBard.beseech` folds them into its result instead of raising.
"""


class BardError(Exception):
    """Base class for all Immortal Bard errors."""


class ConfigurationError(BardError):
    """Missing credential, unknown provider, or scene not set."""


class PreconditionError(BardError):
    """An operation was called in the wrong state."""


class SessionConflictError(PreconditionError):
    """A browser session is already active."""


class RemoteTransportError(BardError):
    """A remote service (model provider or Kernel) failed."""


class GenerationError(RemoteTransportError):
    """The language model call failed."""


class ExecutionClientError(RemoteTransportError):
    """A Kernel API call failed."""


class TeardownError(RemoteTransportError):
    """Closing the browser session failed. The session is kept for a retry."""


class SceneNotSetError(ConfigurationError, PreconditionError):
    """`to_be()` was called before `scene()`."""
