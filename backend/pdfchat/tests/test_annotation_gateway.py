"""
Unit tests for highlight/record mapping and the database gateway.
"""

from unittest.mock import MagicMock

import pytest

from pdfchat.services.annotation_service import AnnotationService
from pdfchat.services.grounding.annotation_gateway import (
    AnnotationRecord,
    DatabaseAnnotationGateway,
    highlight_to_payload,
    map_record_to_highlight,
)
from pdfchat.services.grounding.errors import PersistenceError
from pdfchat.services.grounding.models import Highlight, HighlightShape, HighlightType, Rect


def record(**overrides) -> AnnotationRecord:
    data = dict(
        id=7,
        document_id="doc-1",
        type="ai_highlight",
        highlight_text="Insulin regulates blood glucose levels in the body.",
        page_number=3,
        x=72.0,
        y=88.0,
        width=300.0,
        height=12.0,
        color=None,
        created_by="ai",
    )
    data.update(overrides)
    return AnnotationRecord(**data)


class TestMapRecordToHighlight:
    """Tests for rebuilding highlights from records."""

    def test_ai_text_highlight(self):
        highlight = map_record_to_highlight(record())

        assert highlight.id == "ann-7"
        assert highlight.page_number == 3
        assert highlight.type == HighlightType.AI
        assert highlight.shape == HighlightShape.RECT
        assert highlight.color == "#ffff00"
        assert highlight.rects == [Rect(72.0, 88.0, 300.0, 12.0)]

    def test_user_highlight_keeps_color(self):
        highlight = map_record_to_highlight(record(type="highlight", created_by="user", color="#00ff00"))

        assert highlight.type == HighlightType.MANUAL
        assert highlight.color == "#00ff00"

    def test_image_highlight_is_red_circle(self):
        highlight = map_record_to_highlight(record(type="image_highlight", color="#ff0000", highlight_text="image"))

        assert highlight.type == HighlightType.IMAGE
        assert highlight.shape == HighlightShape.CIRCLE
        assert highlight.color == "transparent"
        assert highlight.stroke_color == "#ff0000"
        assert highlight.stroke_width == 2

    def test_degenerate_geometry_dropped(self):
        assert map_record_to_highlight(record(width=1.0)).rects == []
        assert map_record_to_highlight(record(x=None, y=None, width=None, height=None)).rects == []


class TestHighlightToPayload:
    """Tests for building save payloads."""

    def test_ai_highlight(self):
        highlight = Highlight(
            id="ai-highlight-1-3", page_number=3, text="x",
            rects=[Rect(1, 2, 30, 40), Rect(1, 50, 30, 40)], type=HighlightType.AI,
        )
        data = highlight_to_payload(highlight, "doc-1", "msg-1")

        assert data["type"] == "ai_highlight"
        assert data["created_by"] == "ai"
        assert (data["x"], data["y"], data["width"], data["height"]) == (1, 2, 30, 40)
        assert data["message_id"] == "msg-1"

    def test_manual_highlight(self):
        highlight = Highlight(id="manual-highlight-1-1", page_number=1, text="x", rects=[Rect(1, 2, 30, 40)])
        data = highlight_to_payload(highlight, "doc-1")

        assert data["type"] == "highlight"
        assert data["created_by"] == "user"
        assert "message_id" not in data

    def test_image_circle(self):
        circle = Highlight.image_circle("image-highlight-2-2", 2, Rect(100, 300, 300, 200))
        data = highlight_to_payload(circle, "doc-1")

        assert data["type"] == "image_highlight"
        assert data["color"] == "#ff0000"
        assert data["created_by"] == "ai"

    def test_default_geometry_without_rects(self):
        highlight = Highlight(id="x", page_number=1, text="x", type=HighlightType.AI)
        data = highlight_to_payload(highlight, "doc-1")

        assert (data["x"], data["y"], data["width"], data["height"]) == (0, 0, 100, 20)

    def test_round_trip_through_record(self):
        """A saved highlight restores with the same page, type and geometry."""
        highlight = Highlight(
            id="ai-highlight-1-3", page_number=3, text="Insulin",
            rects=[Rect(72, 88, 60, 12)], type=HighlightType.AI,
        )
        data = highlight_to_payload(highlight, "doc-1")
        data.pop("document_id")
        restored = map_record_to_highlight(AnnotationRecord(id=1, document_id="doc-1", **data))

        assert restored.page_number == 3
        assert restored.type == HighlightType.AI
        assert restored.rects == highlight.rects


class TestDatabaseAnnotationGateway:
    """Tests for the gateway over AnnotationService."""

    @pytest.mark.asyncio
    async def test_save_and_list(self, db_session, stored_document):
        gateway = DatabaseAnnotationGateway(AnnotationService(db_session), "user-1")
        highlight = Highlight(id="ai-highlight-1-2", page_number=2, text="Insulin", rects=[Rect(72, 88, 60, 12)], type=HighlightType.AI)

        first = await gateway.save(highlight_to_payload(highlight, "doc-1"))
        second = await gateway.save(highlight_to_payload(highlight, "doc-1"))
        records = await gateway.list("doc-1")

        assert first.deduped is False
        assert second.deduped is True
        assert second.annotation.id == first.annotation.id
        assert [r.id for r in records] == [first.annotation.id]

    @pytest.mark.asyncio
    async def test_invalid_payload_raises_persistence_error(self, db_session, stored_document):
        gateway = DatabaseAnnotationGateway(AnnotationService(db_session), "user-1")

        with pytest.raises(PersistenceError):
            await gateway.save({"document_id": "doc-1"})

    @pytest.mark.asyncio
    async def test_database_failure_raises_persistence_error(self):
        from sqlalchemy.exc import OperationalError

        service = MagicMock()
        service.list.side_effect = OperationalError("SELECT", {}, Exception("connection lost"))
        gateway = DatabaseAnnotationGateway(service, "user-1")

        with pytest.raises(PersistenceError):
            await gateway.list("doc-1")
