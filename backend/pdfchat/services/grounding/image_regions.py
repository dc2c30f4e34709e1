"""
Image-Region Detector

Collects the bounding boxes of images drawn while a page renders, plus
helpers for picking the figure an AI answer refers to.
"""

import logging
import re
from contextlib import contextmanager
from typing import Iterator, Optional

from .models import Rect

logger = logging.getLogger(__name__)

FIGURE_KEYWORDS = re.compile(r"(fig(?:ure)?\.?|image|diagram|chart|graph|table|photo|picture)", re.IGNORECASE)
FIGURE_NUMBER = re.compile(r"fig(?:ure)?\.?\s*(\d{1,3})(?:[-–]\s*(\d{1,3}))?", re.IGNORECASE)
CAPTION_LINE = re.compile(r"^(fig(?:ure)?\.?|image|diagram|chart|graph|table)\s*\d*[:).\-]?", re.IGNORECASE)

# Affine matrix (a, b, c, d, e, f): x' = a*x + c*y + e, y' = b*x + d*y + f
Matrix = tuple[float, float, float, float, float, float]


class DrawRecorder:
    """Receives image-draw calls for one page render."""

    def __init__(self, scale: float):
        self.scale = scale
        self.rects: list[Rect] = []

    def draw_image(self, matrix: Matrix, x: float, y: float, width: float, height: float) -> None:
        """
        Record the destination box of an image draw.

        The four corners are mapped through the active transform and the
        axis-aligned bounding box is kept (canvas pixels, render scale).
        """
        a, b, c, d, e, f = matrix
        corners = [(x, y), (x + width, y), (x, y + height), (x + width, y + height)]
        points = [(a * px + c * py + e, b * px + d * py + f) for px, py in corners]
        xs = [p[0] for p in points]
        ys = [p[1] for p in points]

        rect = Rect(min(xs), min(ys), max(xs) - min(xs), max(ys) - min(ys))
        if rect.width > 1 and rect.height > 1:
            self.rects.append(rect)


class ImageRegionDetector:
    """
    Per-page image rectangles gathered as a side channel of rendering.

    Pages that were never rendered have no rectangles.
    """

    def __init__(self):
        self._rects: dict[int, list[Rect]] = {}

    @contextmanager
    def intercept(self, page_number: int, scale: float = 1.0) -> Iterator[DrawRecorder]:
        """Capture image draws during one render of a page."""
        recorder = DrawRecorder(scale)
        yield recorder

        # A re-render replaces the previous capture
        self._rects[page_number] = [
            Rect(r.x / scale, r.y / scale, r.width / scale, r.height / scale)
            for r in recorder.rects
        ]
        logger.debug(f"Page {page_number}: captured {len(recorder.rects)} image rects")

    def get_rects(self, page_number: int) -> list[Rect]:
        return list(self._rects.get(page_number, []))

    def clear(self) -> None:
        self._rects = {}


def mentions_figure(text: str) -> bool:
    """True if the text talks about a figure, image, chart, table, ..."""
    return bool(FIGURE_KEYWORDS.search(text or ""))


def extract_figure_number(text: str) -> Optional[str]:
    """First figure number referenced ("Figure 2", "fig. 3-4" -> "3")."""
    match = FIGURE_NUMBER.search(text or "")
    return match.group(1) if match else None


def is_caption_line(text: str, figure_number: Optional[str] = None) -> bool:
    """True for caption-like lines, optionally for a specific figure number."""
    text = (text or "").strip()
    if not text or not CAPTION_LINE.match(text):
        return False
    if figure_number is None:
        return True
    return bool(re.search(rf"fig(?:ure)?\.?\s*{re.escape(figure_number)}\b", text, re.IGNORECASE))


def largest_rect(rects: list[Rect]) -> Optional[Rect]:
    """Largest rectangle by area; the first one wins ties."""
    best = None
    for rect in rects:
        if best is None or rect.area > best.area:
            best = rect
    return best


def nearest_to_caption(rects: list[Rect], caption_y: float) -> Optional[Rect]:
    """Rectangle whose vertical center is closest to the caption line."""
    best = None
    best_delta = float("inf")
    for rect in rects:
        delta = abs(rect.center_y - caption_y)
        if delta < best_delta:
            best_delta = delta
            best = rect
    return best


def coverage_ratio(rect: Rect, page_width: float, page_height: float) -> float:
    """Fraction of the page area covered by the rectangle."""
    page_area = page_width * page_height
    if page_area <= 0:
        return 0.0
    return rect.area / page_area
