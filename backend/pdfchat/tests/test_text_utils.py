"""
Unit tests for the text normalizer and similarity toolkit.

Run with: python -m pytest backend/pdfchat/tests/test_text_utils.py -v
"""

import pytest

from pdfchat.services.grounding.text_utils import (
    jaccard,
    normalize,
    repair_extraction_artifacts,
    split_sentences,
    tokenize,
)


class TestNormalize:
    """Tests for normalize()."""

    def test_lowercases_and_strips_punctuation(self):
        """Punctuation becomes whitespace, which is then collapsed."""
        assert normalize("Insulin, REGULATES   glucose!") == "insulin regulates glucose"

    def test_punctuation_between_words_separates_them(self):
        assert normalize("blood-glucose") == "blood glucose"

    def test_empty_and_whitespace(self):
        assert normalize("") == ""
        assert normalize("   \n\t ") == ""
        assert normalize(None) == ""

    @pytest.mark.parametrize("text", [
        "Hello, World!",
        "  multiple   spaces\nand\tlines  ",
        "Fig. 3-4 (see below)...",
        "“Curly” quotes — and dashes",
        "ﬁnancial ﬂows",
        "",
        "!!!",
        "Ünïcödé wörds",
    ])
    def test_idempotent(self, text):
        """normalize(normalize(s)) == normalize(s)."""
        once = normalize(text)
        assert normalize(once) == once


class TestTokenize:
    """Tests for tokenize()."""

    def test_drops_short_tokens(self):
        assert tokenize("It is in the body of a cat") == ["the", "body", "cat"]

    def test_uses_normalized_words(self):
        assert tokenize("Glucose-levels, rise.") == ["glucose", "levels", "rise"]


class TestSplitSentences:
    """Tests for split_sentences()."""

    def test_splits_after_terminal_punctuation(self):
        text = "First sentence. Second one! Third? Fourth"
        assert split_sentences(text) == ["First sentence.", "Second one!", "Third?", "Fourth"]

    def test_newlines_become_spaces(self):
        assert split_sentences("Line one\ncontinues. Next.") == ["Line one continues.", "Next."]

    def test_no_split_without_whitespace(self):
        assert split_sentences("Version 1.2 released.") == ["Version 1.2 released."]

    def test_empty(self):
        assert split_sentences("") == []
        assert split_sentences("   ") == []


class TestJaccard:
    """Tests for jaccard()."""

    def test_identical_sets(self):
        assert jaccard({"a", "b"}, {"a", "b"}) == 1.0

    def test_disjoint_sets(self):
        assert jaccard({"a"}, {"b"}) == 0.0

    def test_both_empty_is_zero(self):
        assert jaccard(set(), set()) == 0.0

    def test_partial_overlap(self):
        assert jaccard({"a", "b", "c"}, {"b", "c", "d"}) == pytest.approx(0.5)

    @pytest.mark.parametrize("a,b", [
        (set(), {"x"}),
        ({"x", "y"}, {"y"}),
        ({"one", "two", "three"}, {"four"}),
        ({"same"}, {"same"}),
    ])
    def test_bounds(self, a, b):
        assert 0.0 <= jaccard(a, b) <= 1.0


class TestRepairExtractionArtifacts:
    """Tests for repair_extraction_artifacts()."""

    def test_expands_ligatures(self):
        assert repair_extraction_artifacts("ﬁnal eﬀort ﬂows") == "final effort flows"

    def test_straightens_quotes_and_dashes(self):
        assert repair_extraction_artifacts("“a” – ‘b’ — c") == "\"a\" - 'b' - c"

    def test_joins_line_break_hyphenation(self):
        assert repair_extraction_artifacts("Insulin regu- lates glucose") == "Insulin regulates glucose"

    def test_keeps_regular_hyphens(self):
        assert repair_extraction_artifacts("well-known fact") == "well-known fact"
