from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = "Approvals"
    app_version: str = "0.1.0"
    debug: bool = False
    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "postgresql+asyncpg://approvals:approvals@db:5432/approvals"
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:8000"]
    log_level: str = "INFO"

    # Leave policy
    leave_earn_fallback: bool = True
    leave_excludes_holidays: bool = False
    unlimited_leave_types: list[str] = ["UNPAID"]

    # Quota allocated when a balance account is first touched
    default_leave_quota: dict[str, float] = {
        "EARN": 15,
        "SICK": 10,
        "CASUAL": 8,
        "PERSONAL": 5,
        "UNPAID": 0,
    }
    default_expense_quota: float = 50000
    default_discount_quota: float = 100

    # Auto-reject sweep
    auto_reject_after_hours: int = 72
    auto_reject_interval_seconds: int = 3600


_settings: Settings | None = None


def get_settings() -> Settings:
    """Return cached settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def set_settings(settings: Settings | None) -> None:
    """Replace the cached settings (None resets to environment defaults)."""
    global _settings
    _settings = settings
