from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_name: str = "Wellovis API"
    log_level: str = "INFO"
    database_url: str = (
        "postgresql+psycopg2://wellovis:wellovis@db:5432/wellovis"  # pragma: allowlist secret
    )
    redis_url: str = "redis://redis:6379/0"
    timezone: str = "America/Toronto"
    cors_origins: list[str] = ["http://localhost:3000"]
    rate_limit_requests: int = 120
    rate_limit_window_seconds: int = 60

    field_encryption_key: str = ""
    blind_index_key: str = ""

    stripe_webhook_secret: str = ""
    stripe_webhook_tolerance_seconds: int = 300

    mail_api_base_url: str = "http://localhost:8025"
    mail_api_key: str = ""
    mail_from_address: str = "no-reply@wellovis.local"
    mail_mock_mode: bool = False

    google_client_id: str = ""
    google_client_secret: str = ""

    video_base_url: str = "https://video.wellovis.local"

    invitation_ttl_days: int = 7
    waitlist_offer_hours: int = 24
    clinic_commission_percentage: float = 10.0
    default_currency: str = "CAD"
    invoice_prefix: str = "INV"
    trial_days: int = 14
    developer_mode: bool = False

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()


settings = get_settings()
