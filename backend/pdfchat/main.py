"""
FastAPI application entry point for PDF chat grounding.

Provides REST API for:
- Annotation persistence and chat-message links
- AI answer grounding per document viewing session
- Real-time pipeline events via SSE
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from pdfchat import __version__
from pdfchat.config import settings
from pdfchat.db import init_schema
from pdfchat.routers import annotations, highlights
from pdfchat.services.highlight_sessions import get_session_manager


# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[
        logging.StreamHandler(),
    ]
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logger.info("Starting PDF chat grounding service...")

    try:
        init_schema()
        logger.info("Database schema initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database schema: {e}")
        raise

    logger.info("PDF chat grounding service started")
    yield

    # Shutdown
    logger.info("Shutting down PDF chat grounding service...")
    get_session_manager().close_all()


# Create FastAPI application
app = FastAPI(
    title="PDF Chat Grounding",
    description="Grounds AI answers about a PDF in highlighted page regions",
    version=__version__,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": __version__,
        "open_sessions": len(get_session_manager()),
    }


app.include_router(annotations.router, prefix="/api/v1/annotations", tags=["annotations"])
app.include_router(highlights.router, prefix="/api/v1/documents", tags=["highlights"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "pdfchat.main:app",
        host="0.0.0.0",
        port=8080,
        reload=settings.debug,
    )
