from functools import lru_cache
from typing import ClassVar

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    database_path: str

    # Oracle LLM (optional, no key means analysis runs with the null oracle)
    llm_provider: str = "openai"  # "openai" | "anthropic"
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    openai_base_url: str = ""  # Optional OpenAI-compatible proxy URL
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-20250514"

    # Per-call timeouts for external I/O
    prometheus_timeout_seconds: float = 15.0
    kubernetes_timeout_seconds: float = 15.0
    oracle_timeout_seconds: float = 60.0
    notification_timeout_seconds: float = 10.0

    # Refresh current_value/severity on an already-open threshold alert
    threshold_refresh_on_duplicate: bool = True

    # Scheduler intervals (0 disables the job)
    monitor_interval_seconds: int = 60
    analysis_interval_seconds: int = 300

    # Link rendered in Slack notifications (empty = no button)
    dashboard_url: str = ""

    # SMTP for email channels (optional, empty host disables email delivery)
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_sender: str = ""

    log_level: str = "INFO"

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Lazily load and cache settings. Fails at first call, not at import time."""
    return Settings()  # type: ignore[call-arg]  # pyright: ignore[reportCallIssue]
