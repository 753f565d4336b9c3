"""Configuration management for tasktree."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Application Constants
class Constants:
    """Application-wide constants."""

    # API Configuration
    API_TIMEOUT_SECONDS: int = 30
    TASKS_ENDPOINT: str = "/api/tasks"
    TAGS_ENDPOINT: str = "/api/tags"
    CONFLICT_RESOLUTION_HEADER: str = "x-conflict-resolution"

    # HTTP Status Codes
    HTTP_NOT_FOUND: int = 404

    # History
    UNDO_HISTORY_LIMIT: int = 50

    # Pagination Defaults
    DEFAULT_PER_PAGE_LIMIT: int = 500  # Tasks are loaded in one page to build the tree


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # SQLite Configuration
    sqlite_db_path: str = Field(default="tasktree.db", description="Path to the local SQLite task store")

    # Remote Task API Configuration
    task_api_url: str = Field(default="http://127.0.0.1:3000", description="Base URL of the remote task API")
    task_api_key: str | None = Field(default=None, description="Bearer token for the remote task API (optional)")

    # Pydantic Logfire Configuration (optional)
    logfire_token: str | None = Field(default=None, description="Pydantic Logfire token for observability")
    environment: str = Field(default="development", description="Deployment environment name")

    # History Configuration
    undo_history_limit: int = Field(
        default=Constants.UNDO_HISTORY_LIMIT,
        ge=1,
        description="Maximum number of undoable actions kept",
    )


def get_settings() -> Settings:
    """Get application settings (singleton pattern)."""
    return Settings()


# Global settings instance
settings = get_settings()
constants = Constants()
