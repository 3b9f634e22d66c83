"""Tests for whitespace normalization and snippet helpers."""

import pytest

from hybrid_rag.text import normalize_whitespace, truncate


@pytest.mark.unit
class TestNormalizeWhitespace:
    def test_collapses_mixed_whitespace(self):
        assert normalize_whitespace("a\n\n  b\t\tc") == "a b c"

    def test_trims_ends(self):
        assert normalize_whitespace("  \n hello world \t ") == "hello world"

    def test_unicode_whitespace(self):
        """Non-breaking and ideographic spaces count as whitespace."""
        assert normalize_whitespace("a\u00a0\u00a0b\u3000c") == "a b c"

    def test_none_and_empty(self):
        assert normalize_whitespace(None) == ""
        assert normalize_whitespace("") == ""
        assert normalize_whitespace(" \n\t ") == ""


@pytest.mark.unit
class TestSnippets:
    def test_truncate_short_text_unchanged(self):
        assert truncate("abc", 10) == "abc"

    def test_truncate_cuts_to_limit(self):
        assert truncate("abcdef", 3) == "abc"
