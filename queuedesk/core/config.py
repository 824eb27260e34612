"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "0.01.00"

    # Database
    DATABASE_URL: str
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"

    # Error Tracking (optional, set in production)
    SENTRY_DSN: str = ""

    # Logging
    LOG_LEVEL: str = "INFO"

    # Queue engine
    QUEUE_MAX_WRITE_ATTEMPTS: int = 3  # Optimistic write attempts before surfacing a conflict
    QUEUE_MAX_NO_SHOWS: int = 0  # 0 = unlimited requeues; N = Nth no-show is terminal
    QUEUE_AVERAGE_SERVICE_MINUTES: int = 10
    QUEUE_NOTIFY_NEXT_IN_LINE: bool = True

    # Notifications
    NOTIFICATIONS_ENABLED: bool = True

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS into a list."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]


settings = Settings()
