"""
Page Renderer

Rendering-engine contract used by the grounding pipeline, and its PyMuPDF
implementation. Rendering a page completes a per-page event that text
consumers await, and feeds image placements to the image-region detector.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional

import fitz  # PyMuPDF

from .errors import RenderError, TextLayerUnavailableError
from .image_regions import ImageRegionDetector
from .models import TextFragment, Viewport

logger = logging.getLogger(__name__)


class RenderingEngine(ABC):
    """
    Abstract rendering engine.

    Page numbers are 1-based. Subclasses implement the document specific
    parts; render bookkeeping and text-layer waiting live here.
    """

    def __init__(self, scale: float = 1.0):
        self.scale = scale
        self._rendered: dict[int, asyncio.Event] = {}
        self._rendering: set[int] = set()

    @property
    @abstractmethod
    def num_pages(self) -> int:
        pass

    @abstractmethod
    async def _render(self, page_number: int) -> None:
        """Render one page at the current scale."""
        pass

    @abstractmethod
    async def get_text_content(self, page_number: int) -> list[TextFragment]:
        """Positioned text fragments of a page, in extraction order."""
        pass

    @abstractmethod
    def get_viewport(self, page_number: int) -> Viewport:
        pass

    def _event(self, page_number: int) -> asyncio.Event:
        if page_number not in self._rendered:
            self._rendered[page_number] = asyncio.Event()
        return self._rendered[page_number]

    def _check_page(self, page_number: int) -> None:
        if not 1 <= page_number <= self.num_pages:
            raise RenderError(f"Page {page_number} out of range (1-{self.num_pages})")

    def is_rendered(self, page_number: int) -> bool:
        return page_number in self._rendered and self._rendered[page_number].is_set()

    async def render_page(self, page_number: int) -> None:
        """
        Render a page. Idempotent: no-op when rendered or rendering.

        Raises:
            RenderError: if the page does not exist or cannot be rendered
        """
        self._check_page(page_number)
        if self.is_rendered(page_number) or page_number in self._rendering:
            return

        self._rendering.add(page_number)
        try:
            await self._render(page_number)
        finally:
            self._rendering.discard(page_number)

        self._event(page_number).set()

    async def wait_for_text_layer(self, page_number: int, retries: int = 20, delay: float = 0.5) -> None:
        """
        Wait until the page has rendered, for at most retries x delay seconds.

        Raises:
            TextLayerUnavailableError: if the page did not render in time
        """
        timeout = retries * delay
        try:
            await asyncio.wait_for(self._event(page_number).wait(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Text layer for page {page_number} not ready after {timeout:.1f}s")
            raise TextLayerUnavailableError(page_number, waited=timeout)

    def set_scale(self, scale: float) -> None:
        """Change the render scale; every page must be rendered again."""
        if scale <= 0:
            raise ValueError(f"Scale must be positive, got {scale}")
        if scale == self.scale:
            return

        self.scale = scale
        for event in self._rendered.values():
            event.clear()
        logger.debug(f"Render scale set to {scale}")

    def close(self) -> None:
        pass


class PyMuPDFRenderer(RenderingEngine):
    """
    Rendering engine over a PyMuPDF document opened from bytes.

    Text fragments are lines from get_text("dict"), expressed in content
    space at the current scale (baseline-left origin, Y from page bottom).
    """

    def __init__(
        self,
        data: bytes,
        scale: float = 1.0,
        detector: Optional[ImageRegionDetector] = None
    ):
        super().__init__(scale)
        self.detector = detector

        try:
            self.doc = fitz.open(stream=data, filetype="pdf")
        except Exception as e:
            raise RenderError(f"Failed to open PDF: {e}") from e

        if self.doc.page_count == 0:
            self.doc.close()
            raise RenderError("PDF has no pages")

    @property
    def num_pages(self) -> int:
        return self.doc.page_count

    def _page(self, page_number: int) -> fitz.Page:
        self._check_page(page_number)
        return self.doc[page_number - 1]

    async def _render(self, page_number: int) -> None:
        page = self._page(page_number)
        matrix = fitz.Matrix(self.scale, self.scale)

        try:
            pix = page.get_pixmap(matrix=matrix)
        except Exception as e:
            raise RenderError(f"Failed to render page {page_number}: {e}") from e

        if self.detector is not None:
            with self.detector.intercept(page_number, self.scale) as recorder:
                # Each placement maps the unit square onto the page
                for info in page.get_image_info():
                    placement = fitz.Matrix(info["transform"]) * matrix
                    recorder.draw_image(tuple(placement), 0, 0, 1, 1)

        logger.debug(f"Rendered page {page_number} at {pix.width}x{pix.height}")

    async def get_text_content(self, page_number: int) -> list[TextFragment]:
        page = self._page(page_number)
        page_height = page.rect.height
        scale = self.scale

        fragments = []
        for block in page.get_text("dict")["blocks"]:
            if block.get("type") != 0:  # Text block
                continue

            for line in block.get("lines", []):
                spans = line.get("spans", [])
                content = "".join(span.get("text", "") for span in spans).strip()
                if not content:
                    continue

                x0, _, x1, _ = line["bbox"]
                baseline = spans[0]["origin"][1]
                fragments.append(TextFragment(
                    content=content,
                    origin_x=x0 * scale,
                    origin_y=(page_height - baseline) * scale,
                    font_size=max(span["size"] for span in spans) * scale,
                    width=(x1 - x0) * scale,
                    page_number=page_number,
                ))

        return fragments

    def get_viewport(self, page_number: int) -> Viewport:
        rect = self._page(page_number).rect
        return Viewport(width=rect.width * self.scale, height=rect.height * self.scale, scale=self.scale)

    def close(self) -> None:
        self.doc.close()
