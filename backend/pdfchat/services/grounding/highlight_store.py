"""
Highlight Store

Ordered, append-only collection of the highlights of one document session.
Insertion order is render order: later highlights are drawn on top.
"""

from typing import Iterator

from .models import Highlight


class HighlightStore:
    """In-memory highlights for one viewing session. No deduplication here."""

    def __init__(self):
        self._highlights: list[Highlight] = []

    def add(self, highlight: Highlight) -> None:
        self._highlights.append(highlight)

    def extend(self, highlights: list[Highlight]) -> None:
        self._highlights.extend(highlights)

    def filter_by_page(self, page_number: int) -> list[Highlight]:
        return [h for h in self._highlights if h.page_number == page_number]

    def clear(self) -> None:
        self._highlights = []

    def ids(self) -> set[str]:
        return {h.id for h in self._highlights}

    def __len__(self) -> int:
        return len(self._highlights)

    def __iter__(self) -> Iterator[Highlight]:
        return iter(list(self._highlights))
