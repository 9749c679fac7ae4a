from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from functools import lru_cache
from typing import List

from apscheduler.triggers.cron import CronTrigger


class Settings(BaseSettings):
    # Environment
    environment: str = Field(default="development", alias="ENVIRONMENT")

    # Database - PostgreSQL for production, SQLite for development
    database_url: str = Field(
        default="sqlite:///./rental_sync.db",
        alias="DATABASE_URL"
    )

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=False, alias="LOG_JSON")

    # CORS - Frontend URLs from environment (comma-separated)
    allowed_origins: str = Field(
        default="http://localhost:3000,http://127.0.0.1:3000,http://localhost:5173,http://127.0.0.1:5173",
        alias="ALLOWED_ORIGINS"
    )

    # ==============================================
    # Feed Sync Settings
    # ==============================================
    # Background auto-sync (runs inside FastAPI process)
    sync_enabled: bool = Field(default=True, alias="SYNC_ENABLED")
    sync_cron: str = Field(default="0 * * * *", alias="SYNC_CRON")
    sync_timezone: str = Field(default="UTC", alias="SYNC_TIMEZONE")

    # Scheduled sync horizon (days after tomorrow)
    sync_days_ahead: int = Field(default=365, alias="SYNC_DAYS_AHEAD")

    # Rolling window used by on-demand sync and the booking list
    default_days_ahead: int = Field(default=35, alias="DEFAULT_DAYS_AHEAD")

    # HTTP limits for external calendar feeds
    feed_timeout_seconds: float = Field(default=30.0, alias="FEED_TIMEOUT_SECONDS")
    feed_max_redirects: int = Field(default=5, alias="FEED_MAX_REDIRECTS")
    feed_user_agent: str = Field(default="RentalSync/1.0", alias="FEED_USER_AGENT")

    # Timezone whose calendar days are used for adjacency/changeover checks.
    # All-day feed values are stored at UTC midnight and keep their own date
    # in any zone; only timestamped values are converted.
    calendar_timezone: str = Field(default="UTC", alias="CALENDAR_TIMEZONE")

    # Guests annotation bounds
    guests_max: int = Field(default=20, alias="GUESTS_MAX")

    # iCal export
    export_calendar_prodid: str = Field(
        default="-//rental-sync//calendar//EN",
        alias="EXPORT_CALENDAR_PRODID"
    )

    @field_validator('feed_timeout_seconds')
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("FEED_TIMEOUT_SECONDS must be positive")
        return v

    @field_validator('sync_cron')
    @classmethod
    def validate_cron(cls, v: str) -> str:
        """Reject cron expressions APScheduler cannot parse"""
        try:
            CronTrigger.from_crontab(v)
        except ValueError as e:
            raise ValueError(f"Invalid SYNC_CRON expression '{v}': {e}")
        return v

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def cors_origins(self) -> List[str]:
        """
        Parse allowed origins from comma-separated string.
        Returns a list suitable for CORSMiddleware.
        """
        if not self.allowed_origins:
            return ["http://localhost:5173"]

        origins = []
        for origin in self.allowed_origins.split(","):
            origin = origin.strip().rstrip("/")
            if origin and origin not in origins:
                origins.append(origin)

        return origins if origins else ["http://localhost:5173"]

    class Config:
        env_file = ".env"
        extra = "ignore"
        populate_by_name = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


# Initialize settings on module load
settings = get_settings()
