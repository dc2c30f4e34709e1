"""
Coordinate Projector

Converts content-space geometry (bottom-left origin, render scale) into
page-relative, scale-normalized, top-left-origin rectangles.
"""

import logging

from .models import Rect, TextFragment, Viewport

logger = logging.getLogger(__name__)


class CoordinateProjector:
    """
    Projects located spans onto the page.

    The viewport is passed on every call: the render scale can change
    between renders, so projected rectangles are always re-derived.
    """

    # Fragments whose baselines differ by less than this fraction of the
    # font size are on the same visual line
    SAME_LINE_TOLERANCE = 0.5

    def to_screen(
        self,
        content_x: float,
        content_y: float,
        content_width: float,
        content_height: float,
        viewport: Viewport
    ) -> Rect:
        """Content-space box to a screen rectangle."""
        scale = viewport.scale
        return Rect(
            x=content_x / scale,
            y=(viewport.height - content_y - content_height) / scale,
            width=content_width / scale,
            height=content_height / scale,
        )

    def to_content(self, rect: Rect, viewport: Viewport) -> tuple[float, float, float, float]:
        """Inverse of to_screen: (content_x, content_y, width, height)."""
        scale = viewport.scale
        content_height = rect.height * scale
        content_y = viewport.height - rect.y * scale - content_height
        return rect.x * scale, content_y, rect.width * scale, content_height

    def project_fragments(
        self,
        fragments: list[TextFragment],
        viewport: Viewport,
        padding: float = 0.0
    ) -> list[Rect]:
        """
        Project a fragment run into one rectangle per visual line.

        Args:
            fragments: Located fragments, in extraction order
            viewport: Current viewport of the page
            padding: Extra screen units added around each rectangle

        Returns:
            Renderable rectangles, top to bottom
        """
        rects = []
        for line in self._group_lines(fragments):
            x0 = min(f.origin_x for f in line)
            x1 = max(f.origin_x + f.width for f in line)
            y0 = min(f.origin_y for f in line)
            height = max(f.font_size for f in line)

            rect = self.to_screen(x0, y0, x1 - x0, height, viewport)
            if padding:
                rect = Rect(
                    rect.x - padding,
                    rect.y - padding,
                    rect.width + 2 * padding,
                    rect.height + 2 * padding,
                )
            rects.append(rect)

        renderable = [r for r in rects if r.is_renderable]
        if len(renderable) < len(rects):
            logger.debug(f"Dropped {len(rects) - len(renderable)} degenerate rects")

        return sorted(renderable, key=lambda r: (r.y, r.x))

    def _group_lines(self, fragments: list[TextFragment]) -> list[list[TextFragment]]:
        lines: list[list[TextFragment]] = []
        for fragment in fragments:
            for line in lines:
                ref = line[0]
                tolerance = max(ref.font_size, fragment.font_size) * self.SAME_LINE_TOLERANCE
                if abs(ref.origin_y - fragment.origin_y) <= tolerance:
                    line.append(fragment)
                    break
            else:
                lines.append([fragment])
        return lines
