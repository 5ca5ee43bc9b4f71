"""Application configuration."""
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings."""

    # App
    APP_NAME: str = "FG_Dispatch_Workflow"
    ENV: str = "development"
    DEBUG: bool = True
    ALLOWED_ORIGINS: str = "http://localhost:3000,http://localhost:5173"
    LOG_LEVEL: str = "INFO"

    # Database (ledger documents live in a single table)
    DATABASE_URL: str = "sqlite:///./fgflow.db"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10

    # Ledger backend: "sql" for the database table, "memory" for local demos.
    LEDGER_BACKEND: str = "sql"

    # Celery
    CELERY_BROKER_URL: str = "redis://localhost:6379/1"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/2"

    # Pricing
    DEFAULT_UNIT_PRICE: float = 100
    DEFAULT_CURRENCY: str = "LKR"
    DEFAULT_PRICE_TYPE: str = "retail"

    # Release codes are stamped with the factory's wall clock.
    RELEASE_CODE_TIMEZONE: str = "Asia/Colombo"

    # Retries for version-checked writes (tracking aggregates, inventory stock)
    OPTIMISTIC_WRITE_RETRIES: int = 5

    # Notification outbox
    NOTIFICATION_MAX_ATTEMPTS: int = 3
    NOTIFICATION_BACKOFF_BASE_SECONDS: int = 60
    NOTIFICATION_BATCH_SIZE: int = 100
    NOTIFICATION_CLAIM_TIMEOUT_SECONDS: int = 300

    # Optional HTTP push gateway for the shop mobile app
    MOBILE_PUSH_URL: str | None = None
    MOBILE_PUSH_TOKEN: str | None = None
    MOBILE_PUSH_TIMEOUT_SECONDS: int = 10

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True)

    @property
    def cors_origins(self) -> list[str]:
        """Get CORS origins as list."""
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
