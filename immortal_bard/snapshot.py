"""
Page context capture for Immortal Bard.

The capture runs remotely: each strategy produces Playwright code that is
shipped through the Kernel client, and formats what the code returns into
prompt text that fits a token budget.

Two strategies are available:
- AccessibilitySnapshot: Playwright's ARIA snapshot for AI (compact YAML)
- DomSnapshot: a depth-bounded simplified DOM tree (JSON)
"""

import json
from abc import ABC, abstractmethod
from typing import Any, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .config import DEFAULT_DOM_MAX_DEPTH
from .types import CaptureResult, ContextCaptureOptions
from .utils import truncate_to_token_budget


class CodeExecutor(Protocol):
    """Anything that can run Playwright code in a session (KernelClient)."""

    def execute(self, session_id: str, code: str, timeout_sec: Optional[int] = None) -> Any:
        ...


# =============================================================================
# Payload models
# =============================================================================

class AccessibilityContext(BaseModel):
    """What the accessibility capture code returns."""

    url: str = ""
    title: str = ""
    snapshot: str

    @field_validator("snapshot", mode="before")
    @classmethod
    def _unwrap_snapshot(cls, value: Any) -> Any:
        # Newer Playwright releases return {"full": "...", "incremental": "..."}
        if isinstance(value, dict) and "full" in value:
            return value["full"]
        return value


class ElementAttributes(BaseModel):
    """Allow-listed element attributes."""

    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    type: Optional[str] = None
    placeholder: Optional[str] = None
    aria_label: Optional[str] = Field(default=None, alias="aria-label")
    data_testid: Optional[str] = Field(default=None, alias="data-testid")
    role: Optional[str] = None
    href: Optional[str] = None
    value: Optional[str] = None


class SimplifiedElement(BaseModel):
    """One node of the simplified DOM tree."""

    tag: str
    id: Optional[str] = None
    classes: Optional[list[str]] = None
    attributes: Optional[ElementAttributes] = None
    text: Optional[str] = None
    children: Optional[list["SimplifiedElement"]] = None


class DomContext(BaseModel):
    """What the DOM capture code returns."""

    url: str = ""
    title: str = ""
    body: Optional[SimplifiedElement] = None


# =============================================================================
# Strategies
# =============================================================================

class SnapshotStrategy(ABC):
    """A way of describing the current page to the model."""

    name: str = ""
    # Tag wrapping the formatted context in the user message
    tag: str = ""

    @abstractmethod
    def build_code(self) -> str:
        """Playwright code that returns the raw capture."""

    @abstractmethod
    def format(self, payload: Any, max_tokens: Optional[int] = None) -> str:
        """Format a raw capture for the prompt.

        Raises:
            ValidationError: If the payload has the wrong shape
        """


class AccessibilitySnapshot(SnapshotStrategy):
    """Captures the ARIA snapshot from Playwright's `_snapshotForAI()`.

    `_snapshotForAI()` is an internal Playwright API.
    """

    name = "accessibility"
    tag = "current_page_ai_snapshot"

    CODE = """
// Capture AI-optimized snapshot using Playwright's internal _snapshotForAI() method
const snapshot = await page._snapshotForAI();

// Get page metadata
const url = page.url();
const title = await page.title();

return {
  url: url,
  title: title,
  snapshot: snapshot
};
""".strip()

    def build_code(self) -> str:
        return self.CODE

    def format(self, payload: Any, max_tokens: Optional[int] = None) -> str:
        context = AccessibilityContext.model_validate(payload)
        formatted = (
            f"URL: {context.url}\n"
            f"Title: {context.title}\n\n"
            f"ARIA Snapshot:\n{context.snapshot}"
        )
        return truncate_to_token_budget(formatted, max_tokens)


class DomSnapshot(SnapshotStrategy):
    """Captures a simplified DOM tree of the page body."""

    name = "dom"
    tag = "current_page_dom"

    CODE_TEMPLATE = """
// Extract simplified DOM structure for AI context
return await page.evaluate((maxDepth) => {
  function simplifyElement(el, depth = 0) {
    if (depth > maxDepth || !el) {
      return null;
    }

    const skipTags = ['script', 'style', 'meta', 'link', 'noscript'];
    if (skipTags.includes(el.tagName.toLowerCase())) {
      return null;
    }

    // Direct text content, first 100 chars
    let text = '';
    if (el.childNodes.length > 0) {
      const textNodes = Array.from(el.childNodes)
        .filter(node => node.nodeType === Node.TEXT_NODE)
        .map(node => node.textContent?.trim())
        .filter(Boolean);
      if (textNodes.length > 0) {
        text = textNodes.join(' ').substring(0, 100);
      }
    }

    const simplified = {
      tag: el.tagName.toLowerCase(),
      id: el.id || undefined,
      classes: el.className && typeof el.className === 'string'
        ? el.className.split(/\\s+/).filter(Boolean)
        : undefined,
      attributes: {
        name: el.getAttribute('name') || undefined,
        type: el.getAttribute('type') || undefined,
        placeholder: el.getAttribute('placeholder') || undefined,
        'aria-label': el.getAttribute('aria-label') || undefined,
        'data-testid': el.getAttribute('data-testid') || undefined,
        role: el.getAttribute('role') || undefined,
        href: el.getAttribute('href') || undefined,
        value: el.getAttribute('value') || undefined,
      },
      text: text || undefined,
      children: undefined
    };

    if (Object.values(simplified.attributes).every(v => v === undefined)) {
      simplified.attributes = undefined;
    }
    if (simplified.classes && simplified.classes.length === 0) {
      simplified.classes = undefined;
    }

    const children = Array.from(el.children)
      .map(child => simplifyElement(child, depth + 1))
      .filter(Boolean);

    if (children.length > 0) {
      simplified.children = children;
    }

    return simplified;
  }

  return {
    url: window.location.href,
    title: document.title,
    body: simplifyElement(document.body, 0)
  };
}, %(max_depth)d);
""".strip()

    def __init__(self, max_depth: int = DEFAULT_DOM_MAX_DEPTH):
        self.max_depth = max_depth

    def build_code(self) -> str:
        return self.CODE_TEMPLATE % {"max_depth": self.max_depth}

    def format(self, payload: Any, max_tokens: Optional[int] = None) -> str:
        context = DomContext.model_validate(payload)
        formatted = json.dumps(
            context.model_dump(by_alias=True, exclude_none=True),
            indent=2,
            ensure_ascii=False,
        )
        return truncate_to_token_budget(formatted, max_tokens)


def create_strategy(options: ContextCaptureOptions) -> SnapshotStrategy:
    """Build the strategy selected by the capture options."""
    if options.strategy == DomSnapshot.name:
        return DomSnapshot(max_depth=options.max_depth or DEFAULT_DOM_MAX_DEPTH)
    return AccessibilitySnapshot()


# =============================================================================
# Capturer
# =============================================================================

class SnapshotCapturer:
    """Runs a capture strategy against a live session.

    `capture` reports failures in its result instead of raising, so callers
    can carry on without page context.
    """

    def __init__(self, executor: CodeExecutor):
        self.executor = executor

    def capture(self, session_id: str, options: ContextCaptureOptions) -> CaptureResult:
        strategy = create_strategy(options)

        try:
            outcome = self.executor.execute(session_id, strategy.build_code())
        except Exception as e:
            return CaptureResult.failure(f"{strategy.name} capture failed: {e}")

        if not outcome.success or not outcome.result:
            return CaptureResult.failure(
                f"{strategy.name} capture failed: {outcome.error or 'Unknown error'}"
            )

        try:
            formatted = strategy.format(outcome.result, options.max_tokens)
        except ValidationError as e:
            return CaptureResult.failure(
                f"{strategy.name} capture returned an unexpected payload: {e}"
            )

        return CaptureResult.success(formatted, strategy.tag)
