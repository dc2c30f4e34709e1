"""
Highlight session management.

One viewing session per (user, document): the rendered document, its
highlight store, event bus and pipeline. Sessions are discarded when the
user navigates away, so no batch state leaks between documents.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from functools import lru_cache
from typing import Callable, Optional

from sqlalchemy.orm import Session

from pdfchat.config import settings
from pdfchat.db import Document, get_session_factory
from pdfchat.services.annotation_service import AnnotationService
from pdfchat.services.grounding import (
    AIHighlightPipeline,
    DatabaseAnnotationGateway,
    EventBus,
    GroundingConfig,
    HighlightStore,
    ImageRegionDetector,
    PyMuPDFRenderer,
)

logger = logging.getLogger(__name__)


def load_grounding_config() -> GroundingConfig:
    """Pipeline knobs from GROUNDING_CONFIG when set, else from settings."""
    if settings.grounding_config:
        logger.info(f"Loading grounding config from {settings.grounding_config}")
        return GroundingConfig.from_yaml(settings.grounding_config)
    return GroundingConfig.from_settings(settings)


@dataclass
class HighlightSession:
    """Everything owned by one open document."""

    user_id: str
    document_id: str
    engine: PyMuPDFRenderer
    store: HighlightStore
    events: EventBus
    pipeline: AIHighlightPipeline
    db: Session
    opened_at: datetime = field(default_factory=datetime.utcnow)

    def close(self) -> None:
        self.pipeline.clear()
        self.engine.close()
        self.db.close()


class HighlightSessionManager:
    """Registry of open highlight sessions."""

    def __init__(
        self,
        session_factory: Optional[Callable[[], Session]] = None,
        config: Optional[GroundingConfig] = None,
        render_scale: Optional[float] = None
    ):
        """
        Args:
            session_factory: Creates the database session each viewing
                session owns (application default when omitted)
            config: Pipeline knobs (from settings when omitted)
            render_scale: Initial render scale (from settings when omitted)
        """
        self.session_factory = session_factory or get_session_factory()
        self.config = config or load_grounding_config()
        self.render_scale = render_scale or settings.render_scale

        problems = self.config.validate()
        if problems:
            raise ValueError(f"Invalid grounding configuration: {'; '.join(problems)}")
        self._sessions: dict[tuple[str, str], HighlightSession] = {}

    async def open(self, user_id: str, document_id: str) -> HighlightSession:
        """
        Open (or return the already open) session for a document.

        Raises:
            LookupError: if the document does not exist or has no PDF data
            PermissionError: if the document belongs to another user
            RenderError: if the PDF cannot be opened or read
        """
        key = (user_id, document_id)
        if key in self._sessions:
            return self._sessions[key]

        db = self.session_factory()
        try:
            document = db.query(Document).filter(Document.id == document_id).first()
            if not document or not document.file_data:
                raise LookupError(f"Document not found: {document_id}")
            if document.user_id != user_id:
                raise PermissionError("Document belongs to another user")

            detector = ImageRegionDetector()
            engine = PyMuPDFRenderer(document.file_data, scale=self.render_scale, detector=detector)
        except Exception:
            db.close()
            raise

        store = HighlightStore()
        events = EventBus()
        gateway = DatabaseAnnotationGateway(AnnotationService(db), user_id)
        pipeline = AIHighlightPipeline(
            engine=engine,
            gateway=gateway,
            store=store,
            events=events,
            config=self.config,
            document_id=document_id,
            detector=detector,
        )
        session = HighlightSession(
            user_id=user_id,
            document_id=document_id,
            engine=engine,
            store=store,
            events=events,
            pipeline=pipeline,
            db=db,
        )

        try:
            await pipeline.load()
        except Exception:
            session.close()
            raise

        await pipeline.restore()

        self._sessions[key] = session
        logger.info(f"Opened highlight session for document {document_id} ({engine.num_pages} pages)")
        return session

    def get(self, user_id: str, document_id: str) -> HighlightSession:
        """
        Raises:
            LookupError: if no session is open for the document
        """
        session = self._sessions.get((user_id, document_id))
        if session is None:
            raise LookupError(f"No open session for document {document_id}")
        return session

    def close(self, user_id: str, document_id: str) -> bool:
        session = self._sessions.pop((user_id, document_id), None)
        if session is None:
            return False

        session.close()
        logger.info(f"Closed highlight session for document {document_id}")
        return True

    def close_all(self) -> None:
        for key in list(self._sessions):
            self.close(*key)

    def __len__(self) -> int:
        return len(self._sessions)


@lru_cache()
def get_session_manager() -> HighlightSessionManager:
    """Get the process-wide session manager."""
    return HighlightSessionManager()
