"""
Phrase Page Locator

Finds the page (and, for partial matches, the sentence) of a document that
a quoted phrase comes from. Used to jump to the source of a phrase the
assistant cited.
"""

import logging
import math
import re
from dataclasses import dataclass
from typing import Optional

from .models import PageText
from .text_utils import normalize

logger = logging.getLogger(__name__)

QUOTED = re.compile(r'"([^"]+)"')


@dataclass
class PhraseLocation:
    """Where a phrase was found."""

    page: int
    text: str
    reason: str


def unwrap_quoted(phrase: str) -> str:
    """Return the first double-quoted part of a phrase, or the phrase itself."""
    match = QUOTED.search(phrase)
    return match.group(1) if match else phrase


def _required_matches(word_count: int) -> int:
    return max(2, math.ceil(word_count * 0.5))


def search_page(page_text: PageText, phrase: str) -> Optional[PhraseLocation]:
    """
    Match a phrase against one page.

    Returns the phrase itself on normalized containment, otherwise the first
    sentence sharing at least half (and at least two) of the phrase's words.
    """
    page_norm = normalize(page_text.text)
    phrase_norm = normalize(phrase)
    if not phrase_norm:
        return None

    if phrase_norm in page_norm:
        return PhraseLocation(
            page=page_text.page,
            text=phrase,
            reason=f"Found exact text match on page {page_text.page}",
        )

    words = [w for w in phrase_norm.split(" ") if len(w) > 2]
    required = _required_matches(len(words))

    page_hits = [w for w in words if w in page_norm]
    if len(page_hits) < required:
        return None

    for sentence in re.split(r"[.!?]+", page_text.text):
        if len(sentence.strip()) <= 10:
            continue
        sentence_norm = normalize(sentence)
        hits = [w for w in words if w in sentence_norm]
        if len(hits) >= required:
            return PhraseLocation(
                page=page_text.page,
                text=sentence.strip(),
                reason=(
                    f"Found related content on page {page_text.page} "
                    f"({len(hits)}/{len(words)} words matched)"
                ),
            )

    return None


def find_phrase_page(
    phrase: str,
    corpus: list[PageText],
    hint_page: Optional[int] = None,
    hint_text: Optional[str] = None
) -> Optional[PhraseLocation]:
    """
    Locate a phrase in a document corpus.

    Args:
        phrase: Phrase to find; a double-quoted part is used when present
        corpus: One PageText per page
        hint_page: Page suggested by the caller, tried first with hint_text
        hint_text: Text suggested for hint_page

    Returns:
        PhraseLocation of the first matching page, or None
    """
    pages = {p.page: p for p in corpus}

    if hint_page and hint_text and hint_page in pages:
        location = search_page(pages[hint_page], hint_text)
        if location:
            logger.info(location.reason)
            return location

    cleaned = unwrap_quoted(phrase)
    for page_text in corpus:
        location = search_page(page_text, cleaned)
        if location:
            logger.info(location.reason)
            return location

    logger.info(f"Could not locate phrase in {len(corpus)} pages")
    return None
