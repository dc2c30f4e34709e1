"""
Shared fixtures for the grounding tests.

Provides a scriptable rendering engine, an in-memory annotation gateway,
an in-memory SQLite database and small generated PDFs.
"""

from typing import Optional

import fitz  # PyMuPDF
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from pdfchat.db import Base, Document
from pdfchat.services.grounding.annotation_gateway import AnnotationGateway, AnnotationRecord, SaveResult
from pdfchat.services.grounding.errors import PersistenceError, RenderError
from pdfchat.services.grounding.image_regions import ImageRegionDetector
from pdfchat.services.grounding.models import Rect, TextFragment, Viewport
from pdfchat.services.grounding.page_renderer import RenderingEngine

PAGE_WIDTH = 612.0
PAGE_HEIGHT = 792.0


def make_fragment(
    content: str,
    x: float = 72.0,
    baseline: float = 100.0,
    size: float = 12.0,
    page: int = 1,
    width: Optional[float] = None
) -> TextFragment:
    """Fragment at scale 1 whose baseline is `baseline` units from the page top."""
    return TextFragment(
        content=content,
        origin_x=x,
        origin_y=PAGE_HEIGHT - baseline,
        font_size=size,
        width=width if width is not None else len(content) * size * 0.5,
        page_number=page,
    )


class FakeRenderingEngine(RenderingEngine):
    """Engine over scripted fragments and image rectangles."""

    def __init__(
        self,
        pages: dict[int, list[TextFragment]],
        images: Optional[dict[int, list[Rect]]] = None,
        detector: Optional[ImageRegionDetector] = None,
        fail_text: bool = False,
        never_render: bool = False
    ):
        super().__init__(scale=1.0)
        self.pages = pages
        self.images = images or {}
        self.detector = detector
        self.fail_text = fail_text
        self.never_render = never_render
        self.render_calls: list[int] = []

    @property
    def num_pages(self) -> int:
        return len(self.pages)

    async def render_page(self, page_number: int) -> None:
        if self.never_render:
            self.render_calls.append(page_number)
            return
        await super().render_page(page_number)

    async def _render(self, page_number: int) -> None:
        self.render_calls.append(page_number)
        if self.detector is not None:
            with self.detector.intercept(page_number, self.scale) as recorder:
                for rect in self.images.get(page_number, []):
                    recorder.draw_image((1, 0, 0, 1, 0, 0), rect.x, rect.y, rect.width, rect.height)

    async def get_text_content(self, page_number: int) -> list[TextFragment]:
        if self.fail_text:
            raise RenderError("Corrupt document")
        return list(self.pages.get(page_number, []))

    def get_viewport(self, page_number: int) -> Viewport:
        return Viewport(width=PAGE_WIDTH * self.scale, height=PAGE_HEIGHT * self.scale, scale=self.scale)


class FakeGateway(AnnotationGateway):
    """Annotation gateway keeping payloads in memory."""

    def __init__(self, records: Optional[list[AnnotationRecord]] = None, fail_save: bool = False):
        self.records = list(records or [])
        self.saved: list[dict] = []
        self.fail_save = fail_save
        self.list_calls = 0

    async def save(self, payload: dict) -> SaveResult:
        if self.fail_save:
            raise PersistenceError("Database unavailable")

        self.saved.append(payload)
        record = AnnotationRecord(
            id=len(self.records) + 100,
            document_id=payload["document_id"],
            type=payload["type"],
            highlight_text=payload["highlight_text"],
            page_number=payload["page_number"],
            x=payload["x"],
            y=payload["y"],
            width=payload["width"],
            height=payload["height"],
            color=payload["color"],
            created_by=payload["created_by"],
        )
        self.records.append(record)
        return SaveResult(annotation=record, deduped=False)

    async def list(self, document_id: str) -> list[AnnotationRecord]:
        self.list_calls += 1
        return [r for r in self.records if r.document_id == document_id]


@pytest.fixture
def detector():
    """Fresh image-region detector."""
    return ImageRegionDetector()


@pytest.fixture
def session_factory():
    """Session factory over an in-memory SQLite database."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def db_session(session_factory):
    """Database session for one test."""
    session = session_factory()
    yield session
    session.close()


def build_pdf(pages: list[list[str]], image_rect: Optional[tuple] = None, image_page: int = 1) -> bytes:
    """
    Generate a PDF with one line of text per entry.

    Lines start at (72, 100) and are 20 points apart. An optional image
    is placed at image_rect on image_page.
    """
    doc = fitz.open()
    for index, lines in enumerate(pages, start=1):
        page = doc.new_page(width=PAGE_WIDTH, height=PAGE_HEIGHT)
        for i, line in enumerate(lines):
            page.insert_text((72, 100 + 20 * i), line, fontsize=12)

        if image_rect and index == image_page:
            pix = fitz.Pixmap(fitz.csRGB, fitz.IRect(0, 0, 16, 16), False)
            pix.clear_with(180)
            page.insert_image(fitz.Rect(*image_rect), pixmap=pix, keep_proportion=False)

    data = doc.tobytes()
    doc.close()
    return data


@pytest.fixture
def sample_pdf() -> bytes:
    """Three-page PDF; page 2 cites a figure and carries an image."""
    return build_pdf(
        [
            ["Preheat the oven and grease a baking tin."],
            [
                "Insulin regulates blood glucose levels in the body.",
                "Figure 2: Glucose uptake by muscle cells.",
            ],
            ["The pancreas releases glucagon when blood sugar falls."],
        ],
        image_rect=(100, 300, 400, 500),
        image_page=2,
    )


@pytest.fixture
def stored_document(db_session, sample_pdf):
    """The sample PDF stored for user-1."""
    document = Document(id="doc-1", user_id="user-1", filename="sample.pdf", file_data=sample_pdf, page_count=3)
    db_session.add(document)
    db_session.commit()
    return document
