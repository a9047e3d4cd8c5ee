"""
Kernel browser API client for Immortal Bard.

Launches remote headless browsers, runs Playwright code inside them and
deletes them again. Every failure surfaces as ExecutionClientError; this
layer never retries.
"""

import logging
from typing import Any, Optional

import httpx
from pydantic import BaseModel, ValidationError

from .config import BardSettings
from .errors import ConfigurationError, ExecutionClientError


logger = logging.getLogger(__name__)

# Added to the execution timeout for the local HTTP read timeout
NETWORK_TIMEOUT_BUFFER = 30.0

# Remote default used when no execution timeout is requested
REMOTE_DEFAULT_TIMEOUT = 60.0


class BrowserSession(BaseModel):
    """A live remote browser, as returned by the Kernel API."""

    session_id: str
    cdp_ws_url: Optional[str] = None
    browser_live_view_url: Optional[str] = None
    status: Optional[str] = None


class ExecutionOutcome(BaseModel):
    """Result of running code in a remote browser."""

    success: bool
    result: Any = None
    error: Optional[str] = None
    stdout: Optional[str] = None
    stderr: Optional[str] = None


class KernelClient:
    """Client for the Kernel browsers API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        settings: Optional[BardSettings] = None,
    ):
        """Initialize the Kernel client.

        Args:
            api_key: Kernel API key (defaults to KERNEL_API_KEY)
            base_url: API base URL (defaults to KERNEL_BASE_URL)
            settings: Settings to read defaults from
        """
        settings = settings or BardSettings()
        self.api_key = api_key or settings.kernel_api_key
        self.base_url = (base_url or settings.kernel_base_url).rstrip("/")

        self.headers = {"Content-Type": "application/json"}
        if self.api_key:
            self.headers["Authorization"] = f"Bearer {self.api_key}"

        self.client = httpx.Client(base_url=self.base_url, headers=self.headers, timeout=60.0)

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()

    def _require_api_key(self) -> None:
        if not self.api_key:
            raise ConfigurationError(
                "Kernel API key not found. Set KERNEL_API_KEY or pass it to the constructor."
            )

    def launch_session(self) -> BrowserSession:
        """Create a remote headless browser.

        Returns:
            The new browser session

        Raises:
            ExecutionClientError: If the API call fails
        """
        self._require_api_key()
        try:
            response = self.client.post("/browsers", json={"headless": True})
            response.raise_for_status()
            session = BrowserSession.model_validate(response.json())
        except (httpx.HTTPError, ValidationError, ValueError, RuntimeError) as e:
            raise ExecutionClientError(f"Kernel API error: {e}") from e

        logger.debug(f"Kernel session created: {session.session_id}")
        return session

    def execute(
        self,
        session_id: str,
        code: str,
        timeout_sec: Optional[int] = None,
    ) -> ExecutionOutcome:
        """Run Playwright code in a remote browser.

        Args:
            session_id: The browser session to run in
            code: Playwright code with `page`, `context` and `browser` in scope
            timeout_sec: Execution timeout, omitted to use the remote default

        Returns:
            The remote outcome, unmodified

        Raises:
            ExecutionClientError: If the API call fails
        """
        body: dict[str, Any] = {"code": code}
        if timeout_sec is not None:
            body["timeout_sec"] = timeout_sec

        read_timeout = float(timeout_sec or REMOTE_DEFAULT_TIMEOUT) + NETWORK_TIMEOUT_BUFFER

        try:
            response = self.client.post(
                f"/browsers/{session_id}/playwright/execute",
                json=body,
                timeout=read_timeout,
            )
            response.raise_for_status()
            outcome = ExecutionOutcome.model_validate(response.json())
        except (httpx.HTTPError, ValidationError, ValueError, RuntimeError) as e:
            raise ExecutionClientError(f"Kernel API error: {e}") from e

        logger.debug(f"Kernel execution in {session_id} finished (success={outcome.success})")
        return outcome

    def close_session(self, session_id: str) -> None:
        """Delete a remote browser.

        Raises:
            ExecutionClientError: If the API call fails
        """
        try:
            response = self.client.delete(f"/browsers/{session_id}")
            response.raise_for_status()
        except (httpx.HTTPError, RuntimeError) as e:
            raise ExecutionClientError(f"Kernel API error: {e}") from e

        logger.debug(f"Kernel session deleted: {session_id}")
