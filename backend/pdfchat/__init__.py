"""
PDF Chat Grounding - grounds AI answers about a PDF in highlighted regions.

This package provides:
- Candidate ranking of document sentences against AI answers
- Span location and projection to page-relative rectangles
- Image circling for answers that refer to figures
- Annotation persistence with near-duplicate suppression
- REST + SSE API for viewing sessions
"""

__version__ = "1.0.0"
