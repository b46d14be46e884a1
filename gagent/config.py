"""Configuration management for GAgent."""

import logging
from pathlib import Path

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# Templates shipped with the package
BUNDLED_TEMPLATES_DIR = Path(__file__).parent / "game" / "template_files"

PROJECT_STORE_KINDS = ("memory", "sql")


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="GAGENT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # App
    app_name: str = "GAgent"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: str = "http://localhost:3000"  # Comma-separated

    # Persistence
    database_url: str = "sqlite+aiosqlite:///./data/gagent.db"
    project_store: str = "memory"  # memory | sql

    # Paths
    artifact_root: Path = Field(default_factory=lambda: Path("./data/generated_games"))
    templates_dir: Path = Field(default_factory=lambda: BUNDLED_TEMPLATES_DIR)
    preview_url_prefix: str = "/previews"

    # LLM
    gemini_api_key: str | None = None
    gemini_model: str = "gemini-2.5-pro"
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    llm_proxy_url: str | None = None
    llm_timeout: int = 60  # seconds

    # Agent state bounds
    max_log_entries: int = 100
    max_thought_steps: int = 50

    # Simulated work for step types without a concrete handler (seconds)
    step_delay_min: float = 0.5
    step_delay_max: float = 1.5

    # Template selection: fail instead of falling back to the first template
    strict_template_match: bool = False

    # Per-subscriber event buffer
    event_queue_size: int = 1000

    # Rate limiting
    rate_limit_enabled: bool = True
    rate_limit_default: str = "100/minute"

    @field_validator("project_store")
    @classmethod
    def validate_project_store(cls, v: str) -> str:
        """Validate the project store backend name."""
        v = v.lower()
        if v not in PROJECT_STORE_KINDS:
            raise ValueError(f"project_store must be one of {', '.join(PROJECT_STORE_KINDS)}")
        return v

    @field_validator("preview_url_prefix")
    @classmethod
    def validate_preview_prefix(cls, v: str) -> str:
        """Preview prefix must be an absolute URL path without trailing slash."""
        if not v.startswith("/"):
            raise ValueError("preview_url_prefix must start with '/'")
        return v.rstrip("/") or "/previews"

    @field_validator("rate_limit_default")
    @classmethod
    def validate_rate_limit(cls, v: str) -> str:
        """Validate rate limit format (e.g., '100/minute')."""
        if "/" not in v:
            raise ValueError("Rate limit must be in format 'N/period' (e.g., '100/minute')")
        return v

    @model_validator(mode="after")
    def validate_step_delays(self) -> "Settings":
        if self.step_delay_min < 0 or self.step_delay_max < self.step_delay_min:
            raise ValueError("step delays must satisfy 0 <= step_delay_min <= step_delay_max")
        return self

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


settings = Settings()
