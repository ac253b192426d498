from __future__ import annotations

from typing import Literal, Optional

from pydantic import Field  # type: ignore[import]
from pydantic_settings import BaseSettings, SettingsConfigDict  # type: ignore[import]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    port: int = Field(default=3000, alias="PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    svn_repo_url: str = Field(default="", alias="SVN_REPO_URL", description="URL of the SVN repository to browse")
    svn_username: Optional[str] = Field(default=None, alias="SVN_USERNAME")
    svn_password: Optional[str] = Field(default=None, alias="SVN_PASSWORD")
    svn_timeout_ms: int = Field(default=30000, ge=1, alias="SVN_TIMEOUT_MS")

    default_page_size: int = Field(default=20, ge=1, alias="DEFAULT_PAGE_SIZE")
    max_page_size: int = Field(default=100, ge=1, alias="MAX_PAGE_SIZE")

    ai_provider: Literal["openai", "mock"] = Field(default="openai", alias="AI_PROVIDER")
    use_mock_ai: bool = Field(default=False, alias="USE_MOCK_AI")
    openai_api_key: Optional[str] = Field(default=None, alias="OPENAI_API_KEY")
    openai_api_base_url: str = Field(default="https://api.openai.com/v1", alias="OPENAI_API_BASE_URL")
    openai_model: str = Field(default="gpt-4", alias="OPENAI_MODEL")
    ai_request_timeout: int = Field(default=30000, ge=1, alias="AI_REQUEST_TIMEOUT")

    rate_limit_max_requests: int = Field(default=10, ge=1, alias="RATE_LIMIT_MAX_REQUESTS")
    rate_limit_window_ms: int = Field(default=60000, ge=1, alias="RATE_LIMIT_WINDOW_MS")
    rate_limit_sweep_ms: int = Field(default=60000, ge=1, alias="RATE_LIMIT_SWEEP_MS")

    console_width: Optional[int] = Field(default=None, description="Override console width for Rich output")

    database_path: Optional[str] = Field(
        default=None,
        alias="DATABASE_PATH",
        description="SQLite file for review history; in-memory storage when unset",
    )


def validate_settings(cfg: Settings) -> None:
    """Reject configurations the service cannot start with."""
    if not cfg.use_mock_ai and cfg.ai_provider == "openai" and not cfg.openai_api_key:
        raise ValueError("OPENAI_API_KEY is required when using OpenAI provider")


settings = Settings()
