"""
Highlights router for AI answer grounding.

Endpoints (under /documents/{document_id}):
- POST /session - Open a viewing session (loads and restores highlights)
- DELETE /session - Close the viewing session
- POST /ai-highlights - Ground a batch of AI answers
- POST /highlights - Highlight a text on a page
- GET /highlights - Highlights of the session, optionally for one page
- DELETE /highlights - Clear the session's highlights
- GET /events - SSE stream of pipeline events
- POST /locate - Find the page a quoted phrase comes from
"""

import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sse_starlette.sse import EventSourceResponse

from pdfchat.routers.annotations import get_user_id
from pdfchat.services.grounding import (
    RenderError,
    event_to_dict,
    find_phrase_page,
)
from pdfchat.services.highlight_sessions import HighlightSession, HighlightSessionManager, get_session_manager

logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# Request/Response Models
# =============================================================================

class SessionResponse(BaseModel):
    document_id: str
    num_pages: int
    current_page: int
    highlight_count: int


class AIHighlightRequest(BaseModel):
    answers: list[str] = Field(..., description="AI answer strings, processed in order")
    message_id: Optional[str] = None


class ManualHighlightRequest(BaseModel):
    page_number: int
    text: str
    message_id: Optional[str] = None


class LocateRequest(BaseModel):
    phrase: str
    hint_page: Optional[int] = None
    hint_text: Optional[str] = None


# =============================================================================
# Helper Functions
# =============================================================================

def get_open_session(
    document_id: str,
    user_id: str = Depends(get_user_id),
    manager: HighlightSessionManager = Depends(get_session_manager),
) -> HighlightSession:
    try:
        return manager.get(user_id, document_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))


def session_summary(session: HighlightSession) -> SessionResponse:
    return SessionResponse(
        document_id=session.document_id,
        num_pages=session.engine.num_pages,
        current_page=session.pipeline.current_page,
        highlight_count=len(session.store),
    )


# =============================================================================
# Endpoints
# =============================================================================

@router.post("/{document_id}/session", response_model=SessionResponse)
async def open_session(
    document_id: str,
    user_id: str = Depends(get_user_id),
    manager: HighlightSessionManager = Depends(get_session_manager),
):
    """Open the document, build its text corpus and restore saved highlights."""
    try:
        session = await manager.open(user_id, document_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except RenderError as e:
        raise HTTPException(status_code=422, detail=f"Document could not be rendered: {e}")

    return session_summary(session)


@router.delete("/{document_id}/session")
async def close_session(
    document_id: str,
    user_id: str = Depends(get_user_id),
    manager: HighlightSessionManager = Depends(get_session_manager),
):
    """Close the viewing session (navigation away from the document)."""
    closed = manager.close(user_id, document_id)
    return {"success": True, "closed": closed}


@router.post("/{document_id}/ai-highlights")
async def create_ai_highlights(
    request: AIHighlightRequest,
    session: HighlightSession = Depends(get_open_session),
):
    """
    Ground a batch of AI answers.

    Returns the created highlights and one message per answer with no
    match. An identical repeat of the last batch creates nothing.
    """
    no_match: list[str] = []
    highlights = await session.pipeline.process_batch(request.answers, request.message_id, no_match=no_match)

    return {
        "highlights": [h.to_dict() for h in highlights],
        "no_match": no_match,
        "current_page": session.pipeline.current_page,
    }


@router.post("/{document_id}/highlights")
async def create_highlight(
    request: ManualHighlightRequest,
    session: HighlightSession = Depends(get_open_session),
):
    """Highlight a text on a page (placeholder rectangle when not found)."""
    try:
        highlight = await session.pipeline.highlight_text(
            request.page_number,
            request.text,
            message_id=request.message_id,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except RenderError as e:
        raise HTTPException(status_code=422, detail=str(e))

    return {"highlight": highlight.to_dict()}


@router.get("/{document_id}/highlights")
async def list_highlights(
    page: Optional[int] = Query(None, description="Only highlights of this page"),
    session: HighlightSession = Depends(get_open_session),
):
    """Highlights in render order (later ones drawn on top)."""
    highlights = session.store.filter_by_page(page) if page is not None else list(session.store)
    return {"highlights": [h.to_dict() for h in highlights]}


@router.delete("/{document_id}/highlights")
async def clear_highlights(
    session: HighlightSession = Depends(get_open_session),
):
    """Clear the session's highlights. Persisted annotations are kept."""
    session.pipeline.clear()
    return {"success": True}


@router.get("/{document_id}/events")
async def stream_events(
    session: HighlightSession = Depends(get_open_session),
):
    """
    SSE stream of pipeline events.

    Events: highlight_added, no_match_found, document_loaded, render_failed.
    """
    async def event_generator():
        """Generate SSE events."""
        async for event in session.events.stream():
            data = event_to_dict(event)
            yield {
                "event": data["event_type"],
                "data": json.dumps(data["payload"]),
            }

    return EventSourceResponse(event_generator())


@router.post("/{document_id}/locate")
async def locate_phrase(
    request: LocateRequest,
    session: HighlightSession = Depends(get_open_session),
):
    """Find the page (and sentence) a phrase comes from."""
    location = find_phrase_page(
        request.phrase,
        session.pipeline.corpus,
        hint_page=request.hint_page,
        hint_text=request.hint_text,
    )
    if location is None:
        return {
            "page_number": None,
            "actual_text": None,
            "reasoning": "Could not locate the text in the PDF",
        }

    return {
        "page_number": location.page,
        "actual_text": location.text,
        "reasoning": location.reason,
    }
