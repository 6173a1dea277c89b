"""
Configuration settings for the addenda conforming service.

Reads credentials from the project .env file and provides typed settings.
"""

from functools import lru_cache
from pathlib import Path

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
    )

    # Database (SQLite locally, PostgreSQL in deployment)
    database_url: str = Field(
        default=f"sqlite:///{PROJECT_ROOT / 'addenda_conform.db'}",
        alias="DATABASE_URL",
        description="SQLAlchemy database URL",
    )

    # Gemini API
    gemini_api_key: str = Field(
        default="",
        alias="GEMINI_API_KEY",
        description="Google Gemini API key",
    )
    gemini_model: str = Field(default="gemini-2.5-flash", description="Gemini model for all generative tasks")
    gemini_max_output_tokens: int = Field(default=65536, description="Max output tokens for Gemini")
    gemini_timeout_seconds: float = Field(default=300.0, description="Timeout per Gemini request")

    # Application settings
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # API retry settings (for transient errors like 503, 429, timeouts)
    api_retry_max_attempts: int = Field(
        default=3,
        description="Max retry attempts for transient API errors"
    )
    api_retry_base_delay: float = Field(
        default=2.0,
        description="Base delay in seconds for exponential backoff"
    )
    api_retry_max_delay: float = Field(
        default=60.0,
        description="Maximum delay in seconds between retries"
    )

    # Locator tuning
    locator_exact_score: float = Field(default=100.0, description="Score when the term equals the whole normalized page text")
    locator_substring_base: float = Field(default=50.0, description="Base score for a substring match")
    locator_start_bonus: float = Field(default=20.0, description="Fixed bonus when the term starts at position 0 of the page text")
    locator_density_weight: float = Field(default=30.0, description="Weight of term length over page length")
    locator_min_score: float = Field(default=15.0, description="Best page must score strictly above this")
    locator_index_page_penalty: float = Field(
        default=0.1,
        description="Multiplier applied to index/TOC pages for text changes"
    )
    index_page_token_threshold: int = Field(
        default=12,
        description="Distinct sheet-number tokens above which a page counts as an index page"
    )

    # Annotation layout
    annotation_margin_x_fraction: float = Field(default=0.76, description="Left edge of the note column")
    annotation_margin_width_fraction: float = Field(default=0.22, description="Width of the note column")
    annotation_margin_top: float = Field(default=50.0, description="First note offset from the top, in points")
    annotation_note_spacing: float = Field(default=10.0, description="Vertical gap between notes, in points")
    annotation_font_size: float = Field(default=9.0, description="Note body font size, in points")

    # Rendering
    render_scale: float = Field(default=1.5, description="Scale for page previews and pixel diffs")
    pixel_diff_threshold: float = Field(
        default=0.1,
        description="Per-pixel intensity difference (0.0-1.0) below which pixels match"
    )

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience accessors
settings = get_settings()
