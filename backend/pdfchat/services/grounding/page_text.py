"""
Page Text Extractor

Thin caching layer over the rendering engine's text API. Provides the
per-page fragments used by the span locator and the page corpus used by
the candidate ranker.
"""

import logging

from .models import PageText, TextFragment
from .page_renderer import RenderingEngine
from .text_utils import repair_extraction_artifacts

logger = logging.getLogger(__name__)


class PageTextExtractor:
    """Fragment cache keyed by (page, render scale)."""

    def __init__(self, engine: RenderingEngine):
        self.engine = engine
        self._cache: dict[tuple[int, float], list[TextFragment]] = {}

    async def fragments(self, page_number: int) -> list[TextFragment]:
        key = (page_number, self.engine.scale)
        if key not in self._cache:
            self._cache[key] = await self.engine.get_text_content(page_number)
        return self._cache[key]

    async def build_corpus(self) -> list[PageText]:
        """
        Build the ranking corpus, one PageText per page.

        Page text is the page's fragments joined with single spaces, with
        ligatures, curly quotes and line-break hyphenation repaired.
        """
        corpus = []
        for page_number in range(1, self.engine.num_pages + 1):
            fragments = await self.fragments(page_number)
            text = repair_extraction_artifacts(" ".join(f.content for f in fragments))
            corpus.append(PageText(page=page_number, text=text))

        logger.info(f"Built text corpus for {len(corpus)} pages")
        return corpus

    def invalidate(self) -> None:
        self._cache = {}
