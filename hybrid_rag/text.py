"""Whitespace normalization and snippet helpers shared by every extractor."""

import re

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_whitespace(text: str | None) -> str:
    """Collapse every run of Unicode whitespace to a single space and trim the ends.

    Examples:
        - normalize_whitespace("a\\n\\n  b\\t\\tc") -> "a b c"
        - normalize_whitespace(None) -> ""
    """
    if not text:
        return ""
    return _WHITESPACE_RE.sub(" ", text).strip()


def truncate(text: str, max_chars: int) -> str:
    """Cut text to at most max_chars characters."""
    return text if len(text) <= max_chars else text[:max_chars]
