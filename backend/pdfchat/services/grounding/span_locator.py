"""
Span Locator

Finds the run of text fragments on a rendered page that best matches a
candidate sentence, using escalating strategies:
1. Exact substring (single fragment, then shortest contiguous run)
2. Exact phrase window over significant words
3. Fuzzy word overlap above a floor
"""

import logging
from typing import Optional

from .errors import SpanNotFoundError
from .models import SpanMatch, TextFragment
from .text_utils import normalize, repair_extraction_artifacts

logger = logging.getLogger(__name__)


def _significant_words(normalized: str) -> list[str]:
    return [w for w in normalized.split(" ") if len(w) > 2]


def _fragment_text(fragments: list[TextFragment]) -> str:
    """Normalized text of a fragment run, joined the way the corpus is."""
    joined = " ".join(f.content for f in fragments)
    return normalize(repair_extraction_artifacts(joined))


class SpanLocator:
    """
    Locates a candidate string among a page's text fragments.

    The first strategy that succeeds wins, so a fragment containing the
    candidate verbatim is always returned by the exact path.
    """

    def __init__(self, fuzzy_floor: float = 0.4, max_run_length: int = 8):
        """
        Initialize the span locator.

        Args:
            fuzzy_floor: Fraction of candidate words a fragment must exceed
            max_run_length: Longest run of consecutive fragments tried for
                exact matches spanning several lines
        """
        self.fuzzy_floor = fuzzy_floor
        self.max_run_length = max_run_length

    def locate(self, fragments: list[TextFragment], candidate: str) -> SpanMatch:
        """
        Find the best matching fragment run.

        Args:
            fragments: Page fragments in extraction order
            candidate: Text to find (typically a full sentence)

        Returns:
            SpanMatch with the anchoring fragments

        Raises:
            SpanNotFoundError: if no strategy succeeds
        """
        target = normalize(repair_extraction_artifacts(candidate))
        if not target or not fragments:
            raise SpanNotFoundError("Nothing to match")

        page_number = fragments[0].page_number

        match = self._search_exact(fragments, target)
        if match:
            return SpanMatch(page_number, match, 1.0, "exact")

        match = self._search_phrase(fragments, target)
        if match:
            return SpanMatch(page_number, match, 1.0, "phrase")

        result = self._search_fuzzy(fragments, target)
        if result:
            fragment, score = result
            return SpanMatch(page_number, [fragment], score, "fuzzy")

        logger.debug(f"No span on page {page_number} for '{candidate[:60]}'")
        raise SpanNotFoundError(f"Text not found on page {page_number}")

    def _search_exact(self, fragments: list[TextFragment], target: str) -> Optional[list[TextFragment]]:
        for fragment in fragments:
            if target in _fragment_text([fragment]):
                return [fragment]

        # Sentences wrapping over lines: shortest run of consecutive fragments
        for length in range(2, min(self.max_run_length, len(fragments)) + 1):
            for start in range(len(fragments) - length + 1):
                run = fragments[start:start + length]
                if target in _fragment_text(run):
                    return run

        return None

    def _search_phrase(self, fragments: list[TextFragment], target: str) -> Optional[list[TextFragment]]:
        words = _significant_words(target)
        if not words:
            return None

        size = len(words)
        for fragment in fragments:
            fragment_words = _significant_words(_fragment_text([fragment]))
            for j in range(len(fragment_words) - size + 1):
                if fragment_words[j:j + size] == words:
                    return [fragment]

        return None

    def _search_fuzzy(self, fragments: list[TextFragment], target: str) -> Optional[tuple[TextFragment, float]]:
        words = _significant_words(target)
        if not words:
            return None

        best_fragment = None
        best_score = 0.0
        for fragment in fragments:
            text = _fragment_text([fragment])
            matching = sum(1 for w in words if w in text)
            score = matching / len(words)
            if score > best_score and score > self.fuzzy_floor:
                best_score = score
                best_fragment = fragment

        if best_fragment is None:
            return None
        return best_fragment, best_score
