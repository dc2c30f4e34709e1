"""
PDF Grounding Engine

This module grounds AI answers about a PDF in highlighted regions of its
rendered pages, and keeps those highlights across renders and reloads.

Components:
- text_utils: Normalization, tokenizing, sentence splitting, Jaccard overlap
- PageTextExtractor: Per-page text fragments and the ranking corpus
- CandidateRanker: Scores every sentence of the document against an answer
- SpanLocator: Finds a sentence among a page's fragments (exact/phrase/fuzzy)
- CoordinateProjector: Content space to page-relative rectangles
- HighlightStore: Ordered highlights of one viewing session
- AnnotationGateway: Persistence contract and highlight/record mapping
- ImageRegionDetector: Image rectangles captured while rendering
- PyMuPDFRenderer: Rendering engine over PyMuPDF
- AIHighlightPipeline: Main orchestrator that coordinates all components
"""

from .models import Rect, Viewport, TextFragment, PageText, Candidate, SpanMatch, Highlight, HighlightType, HighlightShape
from .errors import (
    GroundingError,
    NoCandidateError,
    SpanNotFoundError,
    TextLayerUnavailableError,
    PersistenceError,
    RenderError,
)
from .candidate_ranker import CandidateRanker
from .span_locator import SpanLocator
from .coordinate_projector import CoordinateProjector
from .highlight_store import HighlightStore
from .image_regions import ImageRegionDetector
from .page_renderer import RenderingEngine, PyMuPDFRenderer
from .page_text import PageTextExtractor
from .phrase_locator import PhraseLocation, find_phrase_page
from .annotation_gateway import (
    AnnotationGateway,
    AnnotationRecord,
    DatabaseAnnotationGateway,
    SaveResult,
    highlight_to_payload,
    map_record_to_highlight,
)
from .events import EventBus, HighlightAdded, NoMatchFound, DocumentLoaded, RenderFailed, event_to_dict
from .highlight_pipeline import AIHighlightPipeline, GroundingConfig

__all__ = [
    "Rect",
    "Viewport",
    "TextFragment",
    "PageText",
    "Candidate",
    "SpanMatch",
    "Highlight",
    "HighlightType",
    "HighlightShape",
    "GroundingError",
    "NoCandidateError",
    "SpanNotFoundError",
    "TextLayerUnavailableError",
    "PersistenceError",
    "RenderError",
    "CandidateRanker",
    "SpanLocator",
    "CoordinateProjector",
    "HighlightStore",
    "ImageRegionDetector",
    "RenderingEngine",
    "PyMuPDFRenderer",
    "PageTextExtractor",
    "PhraseLocation",
    "find_phrase_page",
    "AnnotationGateway",
    "AnnotationRecord",
    "DatabaseAnnotationGateway",
    "SaveResult",
    "highlight_to_payload",
    "map_record_to_highlight",
    "EventBus",
    "HighlightAdded",
    "NoMatchFound",
    "DocumentLoaded",
    "RenderFailed",
    "event_to_dict",
    "AIHighlightPipeline",
    "GroundingConfig",
]
