"""
Utility functions for Immortal Bard.

Provides helpers for cleaning model output and budgeting prompt context.
"""

import re
from typing import Optional


TRUNCATION_MARKER = "\n... (truncated)"

# Opening fences may carry a language tag
_FENCE_OPEN_PATTERN = re.compile(r"```(?:typescript|javascript|ts|js)?\n?")


def strip_code_fences(text: str) -> str:
    """Remove markdown code fences from generated code.

    Args:
        text: Raw model response

    Returns:
        The code with every fence marker removed and whitespace trimmed
    """
    code = text.strip()
    code = _FENCE_OPEN_PATTERN.sub("", code)
    code = code.replace("```", "")
    return code.strip()


def estimate_tokens(text: str) -> float:
    """Estimate the token count of a text (roughly 4 chars per token)."""
    return len(text) / 4


def truncate_to_token_budget(text: str, max_tokens: Optional[int]) -> str:
    """Truncate text to an approximate token budget.

    Args:
        text: Text to truncate
        max_tokens: Token budget, or None/0 for no limit

    Returns:
        The text unchanged when within budget, otherwise its first
        max_tokens * 4 characters followed by TRUNCATION_MARKER
    """
    if not max_tokens:
        return text
    if estimate_tokens(text) <= max_tokens:
        return text
    return text[:max_tokens * 4] + TRUNCATION_MARKER
