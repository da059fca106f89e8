"""Configuration management with pydantic-settings and validation."""

from pydantic_settings import BaseSettings
from pydantic import field_validator


# Fields that are optional (service works without them)
OPTIONAL_FIELDS = {
    "anthropic_api_key",
}

DEFAULT_ALLOWED_MIME_TYPES = [
    "text/plain",
    "application/json",
    "application/pdf",
    "image/png",
    "image/jpeg",
]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration
    database_url: str

    # Anthropic Configuration (optional; document analysis is disabled without it)
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-5-20250929"
    ai_max_tokens: int = 4096
    ai_timeout_seconds: float = 60.0

    # Document upload limits
    doc_upload_max_bytes: int = 10 * 1024 * 1024
    doc_upload_max_suggestions: int = 25
    doc_upload_allowed_mime_types: list[str] = DEFAULT_ALLOWED_MIME_TYPES

    log_level: str = "INFO"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @field_validator("database_url", mode="before")
    @classmethod
    def fix_database_url(cls, v):
        """Heroku-style URLs use postgres:// but SQLAlchemy requires postgresql://."""
        if isinstance(v, str) and v.startswith("postgres://"):
            return v.replace("postgres://", "postgresql://", 1)
        return v

    @field_validator("database_url", "anthropic_model", "log_level", mode="before")
    @classmethod
    def check_not_empty(cls, v, info):
        """Validate that required environment variables are not empty."""
        if info.field_name in OPTIONAL_FIELDS:
            return v if v is not None else ""
        if v is None:
            raise ValueError("Required environment variable is not set")
        if isinstance(v, str) and v.strip() == "":
            raise ValueError("Required environment variable is empty")
        return v

    @field_validator("doc_upload_max_bytes", "doc_upload_max_suggestions")
    @classmethod
    def check_positive(cls, v):
        if v <= 0:
            raise ValueError("Must be a positive integer")
        return v

    @property
    def ai_configured(self) -> bool:
        """Whether an Anthropic API key is available."""
        return bool(self.anthropic_api_key)


def get_settings() -> Settings:
    """Load and validate settings from environment.

    Raises:
        ValidationError: If required environment variables are missing or invalid.
    """
    return Settings()
