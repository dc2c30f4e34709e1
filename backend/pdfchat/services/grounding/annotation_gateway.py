"""
Annotation Persistence Gateway

Contract between the highlight pipeline and annotation storage, plus the
mapping between client highlights and persisted annotation records.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError

from .errors import PersistenceError
from .models import (
    DEFAULT_IMAGE_COLOR,
    DEFAULT_TEXT_COLOR,
    IMAGE_STROKE_WIDTH,
    Highlight,
    HighlightShape,
    HighlightType,
    Rect,
)

logger = logging.getLogger(__name__)

ANNOTATION_ID_PREFIX = "ann-"

# Geometry used when a highlight has no rectangle yet
DEFAULT_GEOMETRY = Rect(0, 0, 100, 20)


@dataclass
class AnnotationRecord:
    """Persisted form of a highlight."""

    id: Any
    document_id: str
    type: str  # highlight, ai_highlight, image_highlight
    highlight_text: str
    page_number: int
    x: Optional[float] = None
    y: Optional[float] = None
    width: Optional[float] = None
    height: Optional[float] = None
    color: Optional[str] = None
    created_by: str = "user"  # user, ai
    content: Optional[str] = None
    user_id: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, row) -> "AnnotationRecord":
        """Build from an ORM row (or any object with the same attributes)."""
        return cls(
            id=row.id,
            document_id=row.document_id,
            type=row.type,
            highlight_text=row.highlight_text,
            page_number=row.page_number,
            x=row.x,
            y=row.y,
            width=row.width,
            height=row.height,
            color=row.color,
            created_by=row.created_by,
            content=row.content,
            user_id=row.user_id,
            created_at=row.created_at,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "type": self.type,
            "highlight_text": self.highlight_text,
            "content": self.content,
            "page_number": self.page_number,
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
            "color": self.color,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass
class SaveResult:
    """Outcome of a save; deduped and fresh records are used the same way."""

    annotation: AnnotationRecord
    deduped: bool = False


class AnnotationGateway(ABC):
    """Storage for a single user's annotations."""

    @abstractmethod
    async def save(self, payload: dict) -> SaveResult:
        """
        Save an annotation payload.

        Raises:
            PersistenceError: if the store rejects or fails the save
        """
        pass

    @abstractmethod
    async def list(self, document_id: str) -> list[AnnotationRecord]:
        """
        All annotations of a document, oldest first.

        Raises:
            PersistenceError: if the store cannot be read
        """
        pass


def annotation_highlight_id(annotation_id: Any) -> str:
    return f"{ANNOTATION_ID_PREFIX}{annotation_id}"


def map_record_to_highlight(record: AnnotationRecord) -> Highlight:
    """
    Rebuild a client highlight from a persisted record.

    Image records come back as red outline circles; text records keep their
    stored color (yellow by default) and are "ai" or "manual" by creator.
    """
    rect = Rect(record.x or 0, record.y or 0, record.width or 0, record.height or 0)
    rects = [rect] if rect.is_renderable else []

    if record.type == "image_highlight":
        return Highlight(
            id=annotation_highlight_id(record.id),
            page_number=record.page_number,
            text=record.highlight_text,
            rects=rects,
            color="transparent",
            type=HighlightType.IMAGE,
            shape=HighlightShape.CIRCLE,
            stroke_color=record.color or DEFAULT_IMAGE_COLOR,
            stroke_width=IMAGE_STROKE_WIDTH,
        )

    return Highlight(
        id=annotation_highlight_id(record.id),
        page_number=record.page_number,
        text=record.highlight_text,
        rects=rects,
        color=record.color or DEFAULT_TEXT_COLOR,
        type=HighlightType.AI if record.created_by == "ai" else HighlightType.MANUAL,
    )


def highlight_to_payload(
    highlight: Highlight,
    document_id: str,
    message_id: Optional[str] = None
) -> dict:
    """
    Build the save payload for a highlight.

    Geometry is the first rectangle; multi-line highlights are persisted by
    their leading line.
    """
    if highlight.shape == HighlightShape.CIRCLE:
        annotation_type = "image_highlight"
        color = DEFAULT_IMAGE_COLOR
    elif highlight.type == HighlightType.MANUAL:
        annotation_type = "highlight"
        color = highlight.color
    else:
        annotation_type = "ai_highlight"
        color = highlight.color

    rect = highlight.rects[0] if highlight.rects else DEFAULT_GEOMETRY

    payload = {
        "document_id": document_id,
        "type": annotation_type,
        "highlight_text": highlight.text,
        "page_number": highlight.page_number,
        "x": rect.x,
        "y": rect.y,
        "width": rect.width,
        "height": rect.height,
        "color": color,
        "created_by": "user" if highlight.type == HighlightType.MANUAL else "ai",
    }
    if message_id:
        payload["message_id"] = message_id
    return payload


class DatabaseAnnotationGateway(AnnotationGateway):
    """Gateway over AnnotationService for one user."""

    def __init__(self, service, user_id: str):
        """
        Args:
            service: AnnotationService bound to a database session
            user_id: Owner of every saved and listed annotation
        """
        self.service = service
        self.user_id = user_id

    async def save(self, payload: dict) -> SaveResult:
        try:
            annotation, deduped = self.service.save(self.user_id, payload)
        except (SQLAlchemyError, ValueError, LookupError, PermissionError) as e:
            self.service.db.rollback()
            raise PersistenceError(f"Failed to save annotation: {e}") from e

        return SaveResult(annotation=AnnotationRecord.from_model(annotation), deduped=deduped)

    async def list(self, document_id: str) -> list[AnnotationRecord]:
        try:
            rows = self.service.list(self.user_id, document_id)
        except (SQLAlchemyError, ValueError) as e:
            raise PersistenceError(f"Failed to list annotations: {e}") from e

        return [AnnotationRecord.from_model(row) for row in rows]
