"""
SQLAlchemy models for the PDF chat grounding service.

Documents are written by the upload service and only read here. Annotations
and their chat-message links are owned by this service.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Column, String, Text, Integer, Float, DateTime, LargeBinary,
    ForeignKey, Index, UniqueConstraint, create_engine, text
)
from sqlalchemy.orm import declarative_base, relationship, sessionmaker, Session
from sqlalchemy.pool import QueuePool

from pdfchat.config import settings


Base = declarative_base()


class Document(Base):
    """Uploaded PDF (populated by the upload service)."""

    __tablename__ = "documents"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(255), nullable=False)
    filename = Column(String(255), nullable=False)
    file_data = Column(LargeBinary, nullable=True)  # PDF bytes
    page_count = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    annotations = relationship("Annotation", back_populates="document", cascade="all, delete-orphan")


class Annotation(Base):
    """Persisted highlight, scoped to (document, user)."""

    __tablename__ = "annotations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    document_id = Column(String(36), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(255), nullable=False)
    type = Column(String(50), nullable=False)  # highlight, ai_highlight, image_highlight
    highlight_text = Column(Text, nullable=False)
    content = Column(Text, nullable=True)
    page_number = Column(Integer, nullable=False)
    x = Column(Float, default=0.0)
    y = Column(Float, default=0.0)
    width = Column(Float, default=100.0)
    height = Column(Float, default=20.0)
    color = Column(String(32), default="#ffff00")
    created_by = Column(String(16), default="user")  # user, ai
    created_at = Column(DateTime, default=datetime.utcnow)

    document = relationship("Document", back_populates="annotations")
    message_links = relationship("MessageHighlight", back_populates="annotation", cascade="all, delete-orphan")


class MessageHighlight(Base):
    """Link between a chat message and an annotation it produced."""

    __tablename__ = "message_highlights"
    __table_args__ = (
        UniqueConstraint("message_id", "annotation_id", name="uq_message_highlight"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    message_id = Column(String(255), nullable=False)
    annotation_id = Column(Integer, ForeignKey("annotations.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    annotation = relationship("Annotation", back_populates="message_links")


# Indexes
Index("idx_annotations_document_user", Annotation.document_id, Annotation.user_id)
Index("idx_annotations_page", Annotation.document_id, Annotation.page_number)
Index("idx_message_highlights_message_id", MessageHighlight.message_id)


# Database engine and session factory
_engine = None
_SessionLocal = None


def get_engine():
    """Get or create database engine."""
    global _engine
    if _engine is None:
        if settings.is_postgres:
            _engine = create_engine(
                settings.database_url,
                poolclass=QueuePool,
                pool_size=5,
                max_overflow=10,
                pool_timeout=30,
                pool_recycle=300,
                pool_pre_ping=True,
                echo=settings.debug,
            )
        else:
            _engine = create_engine(
                settings.database_url,
                echo=settings.debug,
                connect_args={"check_same_thread": False},
            )
    return _engine


def get_session_factory():
    """Get or create session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            bind=get_engine()
        )
    return _SessionLocal


def get_db() -> Session:
    """Get database session (dependency injection)."""
    SessionLocal = get_session_factory()
    db = SessionLocal()
    try:
        if settings.is_postgres:
            db.execute(text(f"SET search_path TO {settings.db_schema}"))
        yield db
    finally:
        db.close()


def init_schema():
    """Initialize database schema (create tables if not exist)."""
    engine = get_engine()

    if settings.is_postgres and settings.db_schema != "public":
        with engine.connect() as conn:
            conn.execute(text(f"CREATE SCHEMA IF NOT EXISTS {settings.db_schema}"))
            conn.commit()

    Base.metadata.create_all(bind=engine)
