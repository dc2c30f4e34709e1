"""
Grounding errors.

Only RenderError is terminal for a document; every other error is local to
one answer, candidate or page and is recovered by the pipeline.
"""


class GroundingError(Exception):
    """Base class for grounding failures."""


class NoCandidateError(GroundingError):
    """No sentence in the document scored above the minimum threshold."""


class SpanNotFoundError(GroundingError):
    """The span locator exhausted exact, phrase and fuzzy matching."""


class TextLayerUnavailableError(GroundingError):
    """A page never finished rendering within the wait budget."""

    def __init__(self, page_number: int, waited: float = 0.0):
        super().__init__(f"Text layer for page {page_number} unavailable after {waited:.1f}s")
        self.page_number = page_number
        self.waited = waited


class PersistenceError(GroundingError):
    """Saving or listing annotations failed."""


class RenderError(GroundingError):
    """The rendering engine could not load or render the document."""
