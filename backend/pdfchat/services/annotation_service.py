"""
Annotation service for highlight persistence.

Provides:
- Save with near-duplicate suppression (geometry tolerance)
- Per-user, per-document listing in creation order
- Chat-message links with cascade and orphan cleanup
"""

import logging
from typing import Any, Optional

from sqlalchemy.orm import Session

from pdfchat.config import settings
from pdfchat.db import Annotation, Document, MessageHighlight

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("document_id", "type", "highlight_text", "page_number")
ANNOTATION_TYPES = ("highlight", "ai_highlight", "image_highlight")


class AnnotationService:
    """
    Server-side annotation logic.

    Raises ValueError for invalid input, PermissionError for records owned
    by another user and LookupError for missing records.
    """

    def __init__(self, db: Session, dedup_tolerance: Optional[float] = None):
        """Initialize with database session."""
        self.db = db
        self.dedup_tolerance = settings.dedup_tolerance if dedup_tolerance is None else dedup_tolerance

    def _get_owned_annotation(self, user_id: str, annotation_id: int) -> Annotation:
        annotation = self.db.query(Annotation).filter(Annotation.id == annotation_id).first()
        if not annotation:
            raise LookupError(f"Annotation not found: {annotation_id}")
        if annotation.user_id != user_id:
            raise PermissionError("Annotation belongs to another user")
        return annotation

    def _find_duplicate(self, user_id: str, values: dict) -> Optional[Annotation]:
        """Existing record equal on identity fields and within tolerance on geometry."""
        tol = self.dedup_tolerance
        return self.db.query(Annotation).filter(
            Annotation.document_id == values["document_id"],
            Annotation.user_id == user_id,
            Annotation.page_number == values["page_number"],
            Annotation.highlight_text == values["highlight_text"],
            Annotation.type == values["type"],
            Annotation.created_by == values["created_by"],
            Annotation.x.between(values["x"] - tol, values["x"] + tol),
            Annotation.y.between(values["y"] - tol, values["y"] + tol),
            Annotation.width.between(values["width"] - tol, values["width"] + tol),
            Annotation.height.between(values["height"] - tol, values["height"] + tol),
        ).order_by(Annotation.created_at, Annotation.id).first()

    def save(self, user_id: str, payload: dict[str, Any]) -> tuple[Annotation, bool]:
        """
        Save an annotation unless an equivalent one already exists.

        Args:
            user_id: Owner of the annotation
            payload: document_id, type, highlight_text, page_number and
                optional x, y, width, height, color, created_by, message_id

        Returns:
            (annotation, deduped) where deduped is True for an existing record
        """
        missing = [f for f in REQUIRED_FIELDS if not payload.get(f)]
        if missing:
            raise ValueError(f"Missing required fields: {', '.join(missing)}")
        if payload["type"] not in ANNOTATION_TYPES:
            raise ValueError(f"Unknown annotation type: {payload['type']}")

        document = self.db.query(Document).filter(Document.id == payload["document_id"]).first()
        if not document:
            raise LookupError(f"Document not found: {payload['document_id']}")
        if document.user_id != user_id:
            raise PermissionError("Document belongs to another user")

        values = {
            "document_id": payload["document_id"],
            "type": payload["type"],
            "highlight_text": payload["highlight_text"],
            "page_number": int(payload["page_number"]),
            "x": float(payload.get("x") or 0),
            "y": float(payload.get("y") or 0),
            "width": float(payload.get("width") or 100),
            "height": float(payload.get("height") or 20),
            "color": payload.get("color") or "#ffff00",
            "created_by": payload.get("created_by") or "user",
        }

        annotation = self._find_duplicate(user_id, values)
        deduped = annotation is not None

        if deduped:
            logger.debug(f"Deduplicated annotation {annotation.id} on page {values['page_number']}")
        else:
            annotation = Annotation(user_id=user_id, content=values["highlight_text"], **values)
            self.db.add(annotation)
            self.db.commit()
            self.db.refresh(annotation)
            logger.info(f"Saved {values['type']} annotation {annotation.id} on page {values['page_number']}")

        message_id = payload.get("message_id")
        if message_id:
            self._upsert_link(message_id, annotation.id)

        return annotation, deduped

    def list(self, user_id: str, document_id: str) -> list[Annotation]:
        """The user's annotations for a document, oldest first."""
        if not document_id:
            raise ValueError("document_id is required")

        return self.db.query(Annotation).filter(
            Annotation.document_id == document_id,
            Annotation.user_id == user_id,
        ).order_by(Annotation.created_at, Annotation.id).all()

    def _upsert_link(self, message_id: str, annotation_id: int) -> MessageHighlight:
        link = self.db.query(MessageHighlight).filter(
            MessageHighlight.message_id == message_id,
            MessageHighlight.annotation_id == annotation_id,
        ).first()
        if link:
            return link

        link = MessageHighlight(message_id=message_id, annotation_id=annotation_id)
        self.db.add(link)
        self.db.commit()
        self.db.refresh(link)
        return link

    def link_message(self, user_id: str, message_id: str, annotation_id: int) -> MessageHighlight:
        """Link a chat message to an annotation (no duplicate links)."""
        if not message_id or not annotation_id:
            raise ValueError("message_id and annotation_id are required")

        self._get_owned_annotation(user_id, annotation_id)
        return self._upsert_link(message_id, annotation_id)

    def unlink_message(self, user_id: str, message_id: str) -> dict[str, int]:
        """
        Remove a deleted message's links, then its orphaned AI annotations.

        Orphans are AI-created annotations of the same user and document(s)
        that are no longer linked to any message.

        Returns:
            Counts of deleted links and annotations
        """
        links = self.db.query(MessageHighlight).join(Annotation).filter(
            MessageHighlight.message_id == message_id,
        ).all()

        if any(link.annotation.user_id != user_id for link in links):
            raise PermissionError("Message highlights belong to another user")

        document_ids = {link.annotation.document_id for link in links}
        for link in links:
            self.db.delete(link)
        self.db.flush()

        orphans: list[Annotation] = []
        if document_ids:
            orphans = self.db.query(Annotation).filter(
                Annotation.created_by == "ai",
                Annotation.user_id == user_id,
                Annotation.document_id.in_(document_ids),
                ~Annotation.message_links.any(),
            ).all()

        for annotation in orphans:
            self.db.delete(annotation)
        self.db.commit()

        logger.info(f"Message {message_id}: removed {len(links)} links and {len(orphans)} orphaned annotations")
        return {"links_deleted": len(links), "annotations_deleted": len(orphans)}

    def unlink_annotation(self, user_id: str, annotation_id: int) -> int:
        """Remove every message link of one annotation."""
        self._get_owned_annotation(user_id, annotation_id)

        deleted = self.db.query(MessageHighlight).filter(
            MessageHighlight.annotation_id == annotation_id,
        ).delete(synchronize_session="fetch")
        self.db.commit()
        return deleted

    def clear_document(self, user_id: str, document_id: str) -> int:
        """Delete all of the user's annotations (and their links) for a document."""
        annotations = self.list(user_id, document_id)
        for annotation in annotations:
            self.db.delete(annotation)
        self.db.commit()

        logger.info(f"Cleared {len(annotations)} annotations for document {document_id}")
        return len(annotations)
