"""
Configuration settings for the PDF chat grounding service.

Reads settings from the environment and the project .env file.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Resolve paths
BACKEND_DIR = Path(__file__).parent.parent
PROJECT_ROOT = BACKEND_DIR.parent
ENV_FILE = PROJECT_ROOT / ".env"


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Database (documents table is shared with the upload service)
    database_url: str = Field(
        default="sqlite:///./pdfchat.db",
        alias="DATABASE_URL",
        description="SQLAlchemy connection URL"
    )
    db_schema: str = Field(
        default="public",
        alias="DB_SCHEMA",
        description="PostgreSQL schema used for the search path"
    )

    # Application settings
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Candidate ranking
    ai_top_k: int = Field(
        default=3,
        alias="AI_TOP_K",
        description="Max candidates highlighted per AI answer"
    )
    ai_min_score: float = Field(
        default=0.15,
        alias="AI_MIN_SCORE",
        description="Candidates must score strictly above this"
    )

    # Span location
    fuzzy_match_floor: float = Field(
        default=0.4,
        alias="FUZZY_MATCH_FLOOR",
        description="Word-overlap fraction a fuzzy match must exceed"
    )

    # Persistence
    dedup_tolerance: float = Field(
        default=2.0,
        alias="DEDUP_TOLERANCE",
        description="Geometry tolerance for near-duplicate annotations"
    )

    # Rendering and timing
    primary_settle_delay: float = Field(
        default=0.6,
        alias="PRIMARY_SETTLE_DELAY",
        description="Seconds to wait after rendering the best candidate's page"
    )
    secondary_settle_delay: float = Field(
        default=0.2,
        alias="SECONDARY_SETTLE_DELAY",
        description="Seconds to wait after rendering for later candidates"
    )
    text_layer_retries: int = Field(default=20, alias="TEXT_LAYER_RETRIES")
    text_layer_delay: float = Field(default=0.5, alias="TEXT_LAYER_DELAY")
    render_scale: float = Field(default=1.0, alias="RENDER_SCALE")

    # Image circling
    image_coverage_threshold: float = Field(
        default=0.12,
        alias="IMAGE_COVERAGE_THRESHOLD",
        description="Page-area fraction above which the largest image is circled"
    )

    # Optional YAML file whose `grounding:` section replaces the knobs above
    grounding_config: Optional[str] = Field(default=None, alias="GROUNDING_CONFIG")

    @property
    def is_postgres(self) -> bool:
        return self.database_url.startswith("postgresql")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience accessors
settings = get_settings()
