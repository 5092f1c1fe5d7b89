from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_name: str = "CredGuard API"
    database_url: str = (
        "postgresql+psycopg2://credguard:credguard@db:5432/credguard"  # pragma: allowlist secret
    )
    redis_url: str = "redis://redis:6379/0"
    cors_origins: list[str] = ["http://localhost:3000"]
    rate_limit_requests: int = 120
    rate_limit_window_seconds: int = 60

    suspension_termination_threshold: int = 6
    rejection_blacklist_threshold: int = 3
    default_suspension_days: int = 30
    ledger_max_retries: int = 5
    phone_country_code: str = "92"
    password_hash_rounds: int = 12

    notifications_enabled: bool = False
    notification_webhook_url: str = "http://localhost:8080/notifications"
    notification_api_key: str = ""
    notification_mock_mode: bool = False

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()


settings = get_settings()
