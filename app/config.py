"""Application configuration using Pydantic Settings."""
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Storage
    storage_backend: str = "mongo"  # mongo or memory
    mongodb_url: str = "mongodb://localhost:27017"
    mongodb_db_name: str = "goal_progress"

    # JWT (tokens are issued by the auth service, verified here)
    jwt_secret: str
    jwt_algorithm: str = "HS256"
    jwt_expiration_minutes: int = 10080  # 7 days

    # Ledger
    ledger_conflict_retries: int = 3
    store_timeout_seconds: float = 5.0
    persistence_retry_attempts: int = 3
    persistence_retry_max_wait: float = 2.0

    # ETA
    eta_window_days: int = 30

    # Collaborators
    notification_webhook_url: Optional[str] = None
    activity_feed_webhook_url: Optional[str] = None
    publisher_timeout_seconds: float = 3.0

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    debug: bool = False
    log_level: str = "INFO"

    # CORS
    cors_origins: str = "http://localhost:3000,http://localhost:8000"

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def publisher_urls(self) -> list[str]:
        """Collaborator webhook URLs that are configured."""
        return [
            url
            for url in (self.notification_webhook_url, self.activity_feed_webhook_url)
            if url
        ]


settings = Settings()
