from typing import List, Union
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Application
    ENVIRONMENT: str = "development"
    NAME: str = "Task Reminder Engine"
    VERSION: str = "1.0.0"
    API_PREFIX: str = "/api/v1"
    """Pydantic v2 doesn't support parsing List[str] from a plain comma-separated string by default anymore."""
    ALLOWED_HOSTS: Union[str, List[str]] = "http://localhost:3000"
    LOG_LEVEL: str = "info"

    # Database
    DATABASE_URL: str = "sqlite:///./reminders.db"
    # Upper bound for acquiring a pooled connection and for the driver itself
    STORE_TIMEOUT_SECONDS: int = 10

    # Redis & Celery
    REDIS_PASSWORD: str = ""
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0

    # Notifications
    NOTIFICATION_TIMEZONE: str = "UTC"
    NOTIFICATION_UPCOMING_WINDOW_DAYS: int = 4
    NOTIFICATION_DEFAULT_LOCALE: str = "en"
    RECONCILIATION_CRON_HOUR: int = 0
    RECONCILIATION_CRON_MINUTE: int = 5

    @field_validator("ALLOWED_HOSTS", mode="before")
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if not v:
            return []
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",")]
        return v

    @field_validator("NOTIFICATION_UPCOMING_WINDOW_DAYS")
    def validate_upcoming_window(cls, v: int) -> int:
        # Days 0 and 1 belong to the "due today" and "due tomorrow" tiers
        if v < 2:
            raise ValueError("NOTIFICATION_UPCOMING_WINDOW_DAYS must be at least 2")
        return v

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )


settings = Settings()
