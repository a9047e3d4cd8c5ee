"""
The Immortal Bard: natural-language browser automation.

Wires page context capture, code generation and remote execution together
and owns the lifecycle of the remote browser session.

Usage:
    bard = ImmortalBard()
    bard.scene({"provider": "anthropic"})

    with bard.performance():
        result = bard.beseech("Navigate to https://example.com")
        print(result.code, result.result, result.error)
"""

import atexit
import logging
from contextlib import contextmanager
from enum import Enum
from typing import Any, Iterator, Optional, Union

from .code_generator import DEFAULT_CONTEXT_TAG, CodeGenerator
from .config import BardSettings, validate_timeout
from .errors import (
    ConfigurationError,
    ExecutionClientError,
    RemoteTransportError,
    SceneNotSetError,
    SessionConflictError,
    TeardownError,
)
from .kernel_client import BrowserSession, KernelClient
from .logger import RunLogger
from .snapshot import SnapshotCapturer
from .types import BeseechResult, CaptureResult, ContextCaptureOptions, SceneConfig


# Get logger for this module
logger = logging.getLogger(__name__)


# Bards with a live session, closed at interpreter exit
_performing_bards: list["ImmortalBard"] = []


def _cleanup_all_bards():
    """Close the sessions of all performing bards on process exit.

    Runs on normal interpreter shutdown only; a killed process leaves its
    remote sessions to expire on the Kernel side.
    """
    for bard in _performing_bards[:]:  # Copy list to avoid modification during iteration
        try:
            bard.not_to_be()
        except Exception as e:
            logger.warning(f"Could not close browser session at exit: {e}")
    _performing_bards.clear()


# Register cleanup on exit
atexit.register(_cleanup_all_bards)


class BardState(str, Enum):
    """Lifecycle states of an ImmortalBard."""
    UNINITIALIZED = "uninitialized"
    SCENE_SET = "scene_set"
    PERFORMING = "performing"


class ImmortalBard:
    """Turns natural-language instructions into browser actions.

    Lifecycle: scene() -> to_be() -> beseech()... -> not_to_be().

    beseech() never raises for operational failures; inspect the `error` of
    the returned BeseechResult instead. Calling the lifecycle methods out of
    order raises.

    Calls on one instance must not overlap: the conversation history and
    the browser session are shared between beseech() calls.
    """

    def __init__(
        self,
        openai_api_key: Optional[str] = None,
        anthropic_api_key: Optional[str] = None,
        google_api_key: Optional[str] = None,
        kernel_api_key: Optional[str] = None,
        code_generator: Optional[CodeGenerator] = None,
        kernel_client: Optional[KernelClient] = None,
        run_logger: Optional[RunLogger] = None,
        cleanup_on_exit: bool = True,
    ):
        """Initialize the bard.

        Args:
            openai_api_key: OpenAI key (defaults to OPENAI_API_KEY)
            anthropic_api_key: Anthropic key (defaults to ANTHROPIC_API_KEY)
            google_api_key: Google key (defaults to GOOGLE_API_KEY)
            kernel_api_key: Kernel key (defaults to KERNEL_API_KEY)
            code_generator: Use this generator instead of building one
            kernel_client: Use this Kernel client instead of building one
            run_logger: Optional JSONL/console logger for each beseech
            cleanup_on_exit: Close a live session at interpreter exit
        """
        settings = BardSettings.from_keys(
            openai_api_key=openai_api_key,
            anthropic_api_key=anthropic_api_key,
            google_api_key=google_api_key,
        )
        self.code_generator = code_generator or CodeGenerator(settings=settings)
        self.kernel_client = kernel_client or KernelClient(api_key=kernel_api_key, settings=settings)
        self.capturer = SnapshotCapturer(self.kernel_client)
        self.capture_options = ContextCaptureOptions()
        self.run_logger = run_logger
        self.cleanup_on_exit = cleanup_on_exit

        self._session: Optional[BrowserSession] = None
        self._scene_set = False

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def state(self) -> BardState:
        if self._session is not None:
            return BardState.PERFORMING
        if self._scene_set:
            return BardState.SCENE_SET
        return BardState.UNINITIALIZED

    @property
    def session(self) -> Optional[BrowserSession]:
        return self._session

    def scene(self, config: Union[SceneConfig, dict[str, Any]]) -> None:
        """Configure the provider, model and page context capture.

        Can be called again at any time; switching provider clears the
        conversation.

        Raises:
            ConfigurationError: If the provider is unknown or has no API key
        """
        try:
            scene = config if isinstance(config, SceneConfig) else SceneConfig.from_dict(config)
            capture_options = scene.apply_capture(self.capture_options)
            self.code_generator.set_provider(scene.provider, scene.model)
        except ConfigurationError as e:
            raise ConfigurationError(f"Failed to set the scene: {e}") from e

        self.capture_options = capture_options
        self._scene_set = True
        logger.debug(
            f"Scene set: provider={scene.provider.value}, model={self.code_generator.model}, "
            f"capture={self.capture_options}"
        )

    def to_be(self) -> BrowserSession:
        """Launch the remote browser session.

        Raises:
            SceneNotSetError: If scene() has not been called
            SessionConflictError: If a session is already active
            ExecutionClientError: If the session could not be created
        """
        if not self._scene_set:
            raise SceneNotSetError("Scene not set. Call scene() before to_be().")

        if self._session is not None:
            raise SessionConflictError("Session already active. Call not_to_be() first.")

        try:
            session = self.kernel_client.launch_session()
        except RemoteTransportError as e:
            raise ExecutionClientError(f"Failed to enter the stage: {e}") from e

        self._session = session
        if self.cleanup_on_exit and self not in _performing_bards:
            _performing_bards.append(self)

        logger.info(f"Browser session {session.session_id} started")
        if session.browser_live_view_url:
            logger.info(f"Live view: {session.browser_live_view_url}")
        return session

    def not_to_be(self) -> None:
        """Close the remote browser session.

        Does nothing when no session is active. On failure the session is
        kept so the call can be retried.

        Raises:
            TeardownError: If the session could not be closed
        """
        if self._session is None:
            return

        session_id = self._session.session_id
        try:
            self.kernel_client.close_session(session_id)
        except RemoteTransportError as e:
            raise TeardownError(f"Failed to exit the stage: {e}") from e

        self._session = None
        if self in _performing_bards:
            _performing_bards.remove(self)
        logger.info(f"Browser session {session_id} closed")

    def is_performing(self) -> bool:
        """Check whether a browser session is active."""
        return self._session is not None

    @contextmanager
    def performance(self) -> Iterator["ImmortalBard"]:
        """Run a block inside a browser session, closing it afterwards."""
        self.to_be()
        try:
            yield self
        finally:
            self.not_to_be()

    def reset_context(self) -> None:
        """Forget earlier instructions (the conversation history)."""
        self.code_generator.reset_context()

    def close(self) -> None:
        """Close any live session and release HTTP clients.

        If the session cannot be closed it is left to expire remotely; the
        bard is no longer usable either way.
        """
        try:
            self.not_to_be()
        finally:
            # Closed clients cannot retry the teardown at exit
            if self in _performing_bards:
                _performing_bards.remove(self)
            self.code_generator.close()
            self.kernel_client.close()

    def __enter__(self) -> "ImmortalBard":
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit - ensures cleanup."""
        self.close()

    # =========================================================================
    # Instructions
    # =========================================================================

    def beseech(
        self,
        instruction: str,
        timeout: Optional[float] = None,
        capture_context: Optional[bool] = None,
    ) -> BeseechResult:
        """Carry out a natural-language instruction in the browser.

        Args:
            instruction: What to do, e.g. "Navigate to https://example.com"
            timeout: Execution timeout in seconds (clamped to 1..300, default 60)
            capture_context: Override the scene's page context capture setting

        Returns:
            BeseechResult with the generated code, the value it returned and
            an error description (None on success)
        """
        if self._session is None:
            return BeseechResult(
                code="",
                result=None,
                error="No active session. Call to_be() first.",
            )

        session_id = self._session.session_id

        try:
            validated_timeout = validate_timeout(timeout)
        except (TypeError, ValueError):
            return self._finish(
                instruction,
                BeseechResult(code="", result=None, error=f"Invalid timeout: {timeout!r}"),
            )

        capture = self._capture_context(session_id, capture_context)
        context: Optional[str] = None
        context_tag = DEFAULT_CONTEXT_TAG
        if capture is not None:
            if capture.ok:
                context, context_tag = capture.context, capture.tag
            else:
                logger.warning(f"Page context capture failed, continuing without it: {capture.error}")

        try:
            code = self.code_generator.generate(
                instruction,
                context=context,
                time_budget=validated_timeout,
                context_tag=context_tag,
            )
        except Exception as e:
            return self._finish(
                instruction,
                BeseechResult(code="", result=None, error=f"Code generation error: {e}"),
                used_context=context is not None,
                timeout=validated_timeout,
            )

        try:
            outcome = self.kernel_client.execute(session_id, code, validated_timeout)
        except Exception as e:
            return self._finish(
                instruction,
                BeseechResult(code=code, result=None, error=f"Execution error: {e}"),
                used_context=context is not None,
                timeout=validated_timeout,
            )

        result = BeseechResult(
            code=code,
            result=outcome.result,
            error=None if outcome.success else (outcome.error or "Execution failed"),
        )
        return self._finish(
            instruction,
            result,
            used_context=context is not None,
            timeout=validated_timeout,
        )

    def _capture_context(
        self,
        session_id: str,
        capture_context: Optional[bool],
    ) -> Optional[CaptureResult]:
        """Capture page context if enabled; None when capture is off."""
        enabled = self.capture_options.enabled if capture_context is None else capture_context
        if not enabled:
            return None
        return self.capturer.capture(session_id, self.capture_options)

    def _finish(
        self,
        instruction: str,
        result: BeseechResult,
        used_context: bool = False,
        timeout: Optional[int] = None,
    ) -> BeseechResult:
        if result.error:
            logger.debug(f"beseech failed: {result.error}")
        if self.run_logger:
            self.run_logger.log_line(instruction, result, used_context=used_context, timeout=timeout)
        return result
