from pydantic_settings import BaseSettings
from pydantic import field_validator
from functools import lru_cache
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./delivery.db"

    # Database Connection Pool Settings
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes

    # App Settings
    APP_NAME: str = "Delivery Fulfillment Service"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # CORS - accepts JSON string, comma-separated, or list
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Sequential codes
    DELIVERY_CODE_PREFIX: str = "ENT"  # ENT-2024-001
    EXPENSE_CODE_PREFIX: str = "GAS"  # GAS-0001
    CODE_SEQUENCE_PADDING: int = 3
    EXPENSE_CODE_PADDING: int = 4

    # Carrier ledger
    LEDGER_SUMMARY_LIMIT: int = 100  # Entries folded into an account summary
    LEDGER_RECENT_ENTRIES: int = 10  # Entries echoed back in the summary

    # Delivery lifecycle
    RELEASE_UNITS_ON_CANCEL: bool = True  # Return reserved units to stock on cancel

    # Bookkeeping retry (outbox) settings
    BOOKKEEPING_RETRY_ENABLED: bool = True
    BOOKKEEPING_RETRY_INTERVAL_MINUTES: int = 5
    BOOKKEEPING_MAX_ATTEMPTS: int = 5
    BUSINESS_TIMEZONE: str = "America/Lima"

    @field_validator('CORS_ORIGINS', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [origin.strip() for origin in v.split(',')]
        return v

    @property
    def cors_origins_list(self) -> list[str]:
        return self.CORS_ORIGINS

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
