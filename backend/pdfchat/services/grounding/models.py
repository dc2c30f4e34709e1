"""
Grounding Models

Plain data types shared by the grounding pipeline: positioned text
fragments, ranked candidates, page-relative rectangles and highlights.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


DEFAULT_TEXT_COLOR = "#ffff00"
DEFAULT_IMAGE_COLOR = "#ff0000"
IMAGE_STROKE_WIDTH = 2


class HighlightType(str, Enum):
    """Origin of a highlight."""

    MANUAL = "manual"
    AI = "ai"
    IMAGE = "image"


class HighlightShape(str, Enum):
    """How a highlight is drawn."""

    RECT = "rect"
    CIRCLE = "circle"


@dataclass
class Rect:
    """Page-relative, scale-normalized, top-left-origin rectangle."""

    x: float
    y: float
    width: float
    height: float

    @property
    def is_renderable(self) -> bool:
        """Degenerate rectangles (<= 1 unit on either side) are never drawn."""
        return self.width > 1 and self.height > 1

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def center_y(self) -> float:
        return self.y + self.height / 2

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}

    @classmethod
    def union(cls, rects: list["Rect"]) -> "Rect":
        """Bounding rectangle of several rectangles."""
        if not rects:
            return cls(0.0, 0.0, 0.0, 0.0)

        x0 = min(r.x for r in rects)
        y0 = min(r.y for r in rects)
        x1 = max(r.right for r in rects)
        y1 = max(r.bottom for r in rects)

        return cls(x0, y0, x1 - x0, y1 - y0)


@dataclass
class Viewport:
    """Page size at the current render scale."""

    width: float
    height: float
    scale: float = 1.0

    @property
    def page_width(self) -> float:
        """Scale-normalized page width."""
        return self.width / self.scale

    @property
    def page_height(self) -> float:
        """Scale-normalized page height."""
        return self.height / self.scale


@dataclass
class TextFragment:
    """
    A single positioned run of text as produced by the rendering engine.

    Geometry is in content space at the current render scale: the origin is
    the baseline-left point and Y is measured from the bottom of the page.
    """

    content: str
    origin_x: float
    origin_y: float
    font_size: float
    width: float
    page_number: int

    @property
    def top(self) -> float:
        """Content-space Y of the top of the glyph box."""
        return self.origin_y + self.font_size


@dataclass
class PageText:
    """All fragment text of one page, in extraction order."""

    page: int
    text: str


@dataclass
class Candidate:
    """A scored (page, sentence) pair produced by the ranker."""

    page: int
    sentence: str
    score: float

    def __repr__(self):
        preview = self.sentence[:60] + ("..." if len(self.sentence) > 60 else "")
        return f"Candidate(page={self.page}, score={self.score:.3f}, sentence={preview!r})"


@dataclass
class SpanMatch:
    """Fragments on a page that anchor a located candidate."""

    page_number: int
    fragments: list[TextFragment]
    score: float
    method: str  # "exact", "phrase", "fuzzy"

    @property
    def matched_text(self) -> str:
        return " ".join(f.content for f in self.fragments)


@dataclass
class Highlight:
    """A highlighted region on one page."""

    id: str
    page_number: int
    text: str
    rects: list[Rect] = field(default_factory=list)
    color: str = DEFAULT_TEXT_COLOR
    type: HighlightType = HighlightType.MANUAL
    shape: HighlightShape = HighlightShape.RECT
    stroke_color: Optional[str] = None
    stroke_width: Optional[float] = None

    @property
    def renderable_rects(self) -> list[Rect]:
        return [r for r in self.rects if r.is_renderable]

    @classmethod
    def image_circle(cls, highlight_id: str, page_number: int, rect: Rect) -> "Highlight":
        """Red outline circle around a detected image region."""
        return cls(
            id=highlight_id,
            page_number=page_number,
            text="image",
            rects=[rect],
            color="transparent",
            type=HighlightType.IMAGE,
            shape=HighlightShape.CIRCLE,
            stroke_color=DEFAULT_IMAGE_COLOR,
            stroke_width=IMAGE_STROKE_WIDTH,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "page_number": self.page_number,
            "text": self.text,
            "rects": [r.to_dict() for r in self.rects],
            "color": self.color,
            "type": self.type.value,
            "shape": self.shape.value,
            "stroke_color": self.stroke_color,
            "stroke_width": self.stroke_width,
        }
