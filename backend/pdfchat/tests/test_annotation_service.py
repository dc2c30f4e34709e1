"""
Unit tests for AnnotationService.

Tests:
- Required fields and defaults
- Near-duplicate suppression within the geometry tolerance
- Per-user listing in creation order
- Message links, cascade and orphan cleanup
"""

import pytest

from pdfchat.db import Annotation, Document, MessageHighlight
from pdfchat.services.annotation_service import AnnotationService


def payload(**overrides) -> dict:
    data = {
        "document_id": "doc-1",
        "type": "ai_highlight",
        "highlight_text": "Insulin regulates blood glucose levels in the body.",
        "page_number": 3,
        "x": 72.0,
        "y": 88.0,
        "width": 300.0,
        "height": 12.0,
        "color": "#ffff00",
        "created_by": "ai",
    }
    data.update(overrides)
    return data


@pytest.fixture
def service(db_session, stored_document):
    return AnnotationService(db_session, dedup_tolerance=2.0)


class TestSave:
    """Tests for save()."""

    def test_creates_annotation(self, service, db_session):
        annotation, deduped = service.save("user-1", payload())

        assert deduped is False
        assert annotation.id is not None
        assert annotation.user_id == "user-1"
        assert annotation.content == annotation.highlight_text
        assert db_session.query(Annotation).count() == 1

    def test_missing_fields_rejected(self, service):
        with pytest.raises(ValueError, match="highlight_text"):
            service.save("user-1", payload(highlight_text=""))
        with pytest.raises(ValueError, match="page_number"):
            service.save("user-1", payload(page_number=None))

    def test_unknown_type_rejected(self, service):
        with pytest.raises(ValueError):
            service.save("user-1", payload(type="sticky_note"))

    def test_defaults_applied(self, service):
        annotation, _ = service.save("user-1", {
            "document_id": "doc-1",
            "type": "highlight",
            "highlight_text": "manual text",
            "page_number": 1,
        })

        assert (annotation.x, annotation.y, annotation.width, annotation.height) == (0, 0, 100, 20)
        assert annotation.color == "#ffff00"
        assert annotation.created_by == "user"

    def test_unknown_document(self, service):
        with pytest.raises(LookupError):
            service.save("user-1", payload(document_id="missing"))

    def test_document_of_another_user(self, service):
        with pytest.raises(PermissionError):
            service.save("user-2", payload())


class TestDeduplication:
    """Tests for near-duplicate suppression."""

    def test_second_save_within_tolerance_is_deduped(self, service, db_session):
        first, first_deduped = service.save("user-1", payload())
        second, second_deduped = service.save("user-1", payload(x=73.5, y=86.0, width=302.0, height=13.9))

        assert first_deduped is False
        assert second_deduped is True
        assert second.id == first.id
        assert db_session.query(Annotation).count() == 1

    def test_geometry_outside_tolerance_creates_new_record(self, service, db_session):
        service.save("user-1", payload())
        _, deduped = service.save("user-1", payload(x=75.0))

        assert deduped is False
        assert db_session.query(Annotation).count() == 2

    @pytest.mark.parametrize("field,value", [
        ("page_number", 4),
        ("highlight_text", "Other text"),
        ("type", "highlight"),
        ("created_by", "user"),
    ])
    def test_identity_fields_must_match(self, service, db_session, field, value):
        service.save("user-1", payload())
        _, deduped = service.save("user-1", payload(**{field: value}))

        assert deduped is False
        assert db_session.query(Annotation).count() == 2

    def test_tolerance_is_configurable(self, db_session, stored_document):
        service = AnnotationService(db_session, dedup_tolerance=5.0)
        service.save("user-1", payload())
        _, deduped = service.save("user-1", payload(x=76.0))

        assert deduped is True

    def test_deduped_save_still_links_message(self, service, db_session):
        service.save("user-1", payload())
        annotation, deduped = service.save("user-1", payload(message_id="msg-1"))

        assert deduped is True
        links = db_session.query(MessageHighlight).filter_by(message_id="msg-1").all()
        assert [link.annotation_id for link in links] == [annotation.id]


class TestList:
    """Tests for list()."""

    def test_scoped_to_user_in_creation_order(self, service, db_session):
        db_session.add(Document(id="doc-2", user_id="user-2", filename="b.pdf"))
        db_session.commit()

        first, _ = service.save("user-1", payload(page_number=1))
        second, _ = service.save("user-1", payload(page_number=2))
        db_session.add(Annotation(
            document_id="doc-1", user_id="user-2", type="highlight",
            highlight_text="not mine", page_number=1,
        ))
        db_session.commit()

        listed = service.list("user-1", "doc-1")
        assert [a.id for a in listed] == [first.id, second.id]

    def test_requires_document_id(self, service):
        with pytest.raises(ValueError):
            service.list("user-1", "")


class TestMessageLinks:
    """Tests for message links and cascades."""

    def test_link_is_idempotent(self, service, db_session):
        annotation, _ = service.save("user-1", payload())
        first = service.link_message("user-1", "msg-1", annotation.id)
        second = service.link_message("user-1", "msg-1", annotation.id)

        assert first.id == second.id
        assert db_session.query(MessageHighlight).count() == 1

    def test_link_rejects_other_users_annotation(self, service):
        annotation, _ = service.save("user-1", payload())

        with pytest.raises(PermissionError):
            service.link_message("user-2", "msg-1", annotation.id)

    def test_link_unknown_annotation(self, service):
        with pytest.raises(LookupError):
            service.link_message("user-1", "msg-1", 999)

    def test_unlink_message_removes_orphaned_ai_annotations(self, service, db_session):
        ai_only, _ = service.save("user-1", payload(message_id="msg-1"))
        shared, _ = service.save("user-1", payload(page_number=4, message_id="msg-1"))
        service.link_message("user-1", "msg-2", shared.id)
        manual, _ = service.save("user-1", payload(type="highlight", created_by="user", message_id="msg-1"))
        shared_id = shared.id
        manual_id = manual.id

        result = service.unlink_message("user-1", "msg-1")

        assert result == {"links_deleted": 3, "annotations_deleted": 1}
        remaining = {a.id for a in db_session.query(Annotation).all()}
        assert remaining == {shared_id, manual_id}
        assert db_session.query(MessageHighlight).filter_by(message_id="msg-2").count() == 1

    def test_unlink_unknown_message_is_noop(self, service):
        service.save("user-1", payload())

        assert service.unlink_message("user-1", "msg-none") == {"links_deleted": 0, "annotations_deleted": 0}

    def test_unlink_message_of_another_user(self, service):
        service.save("user-1", payload(message_id="msg-1"))

        with pytest.raises(PermissionError):
            service.unlink_message("user-2", "msg-1")

    def test_unlink_annotation(self, service, db_session):
        annotation, _ = service.save("user-1", payload(message_id="msg-1"))
        service.link_message("user-1", "msg-2", annotation.id)

        assert service.unlink_annotation("user-1", annotation.id) == 2
        assert db_session.query(MessageHighlight).count() == 0
        assert db_session.query(Annotation).count() == 1


class TestClearDocument:
    """Tests for clear_document()."""

    def test_deletes_annotations_and_links(self, service, db_session):
        service.save("user-1", payload(message_id="msg-1"))
        service.save("user-1", payload(page_number=5))

        assert service.clear_document("user-1", "doc-1") == 2
        assert db_session.query(Annotation).count() == 0
        assert db_session.query(MessageHighlight).count() == 0
