"""
Annotations router for highlight persistence.

Endpoints:
- POST / - Save an annotation (deduplicated within geometry tolerance)
- GET / - List a document's annotations
- DELETE /document/{document_id} - Delete all annotations of a document
- POST /message-highlights - Link a chat message to an annotation
- DELETE /message-highlights - Remove links by message or by annotation
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from pdfchat.db import get_db
from pdfchat.services.annotation_service import AnnotationService
from pdfchat.services.grounding import AnnotationRecord

logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# Helper Functions
# =============================================================================

def get_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Caller identity, set by the authenticating proxy."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return x_user_id


def raise_http_error(e: Exception) -> None:
    """Translate service errors into HTTP errors."""
    if isinstance(e, PermissionError):
        raise HTTPException(status_code=403, detail=str(e) or "Forbidden")
    if isinstance(e, LookupError):
        raise HTTPException(status_code=404, detail=str(e) or "Not found")
    raise HTTPException(status_code=400, detail=str(e))


# =============================================================================
# Request/Response Models
# =============================================================================

class AnnotationCreate(BaseModel):
    """Save request. Required fields are validated by the service."""
    document_id: Optional[str] = None
    type: Optional[str] = None
    highlight_text: Optional[str] = None
    page_number: Optional[int] = None
    x: Optional[float] = None
    y: Optional[float] = None
    width: Optional[float] = None
    height: Optional[float] = None
    color: Optional[str] = None
    created_by: Optional[str] = None
    message_id: Optional[str] = None


class AnnotationSaveResponse(BaseModel):
    success: bool
    annotation_id: int
    deduped: bool
    annotation: dict


class MessageHighlightCreate(BaseModel):
    message_id: Optional[str] = None
    annotation_id: Optional[int] = None


# =============================================================================
# Endpoints
# =============================================================================

@router.post("", response_model=AnnotationSaveResponse)
async def save_annotation(
    request: AnnotationCreate,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    """Save an annotation, or return the equivalent one already saved."""
    service = AnnotationService(db)
    try:
        annotation, deduped = service.save(user_id, request.model_dump())
    except (ValueError, LookupError, PermissionError) as e:
        raise_http_error(e)

    return AnnotationSaveResponse(
        success=True,
        annotation_id=annotation.id,
        deduped=deduped,
        annotation=AnnotationRecord.from_model(annotation).to_dict(),
    )


@router.get("")
async def list_annotations(
    document_id: Optional[str] = Query(None, description="Document to list annotations for"),
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    """The caller's annotations for a document, oldest first."""
    service = AnnotationService(db)
    try:
        annotations = service.list(user_id, document_id)
    except ValueError as e:
        raise_http_error(e)

    return {"annotations": [AnnotationRecord.from_model(a).to_dict() for a in annotations]}


@router.delete("/document/{document_id}")
async def clear_document_annotations(
    document_id: str,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    """Delete all of the caller's annotations for a document."""
    deleted = AnnotationService(db).clear_document(user_id, document_id)
    return {"success": True, "deleted": deleted}


@router.post("/message-highlights")
async def link_message_highlight(
    request: MessageHighlightCreate,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    """Link a chat message to an annotation (idempotent)."""
    service = AnnotationService(db)
    try:
        link = service.link_message(user_id, request.message_id, request.annotation_id)
    except (ValueError, LookupError, PermissionError) as e:
        raise_http_error(e)

    return {"success": True, "id": link.id}


@router.delete("/message-highlights")
async def delete_message_highlights(
    message_id: Optional[str] = Query(None),
    annotation_id: Optional[int] = Query(None),
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    """
    Remove message links.

    By message: the message's links and then the orphaned AI annotations.
    By annotation: only that annotation's links.
    """
    if not message_id and not annotation_id:
        raise HTTPException(status_code=400, detail="Provide message_id or annotation_id for deletion")

    service = AnnotationService(db)
    try:
        if message_id:
            result = service.unlink_message(user_id, message_id)
        else:
            result = {"links_deleted": service.unlink_annotation(user_id, annotation_id)}
    except (LookupError, PermissionError) as e:
        raise_http_error(e)

    return {"success": True, **result}
