"""Application settings and configuration"""

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Application
    APP_NAME: str = "LinkRefresh"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite:///./linkrefresh.db"

    # Refresh cadence
    REFRESH_INTERVAL_DAYS: int = Field(default=30, ge=1)
    REFRESH_JITTER_PERCENT: int = Field(default=20, ge=0, le=100)
    REFRESH_BATCH_MULTIPLIER: float = Field(default=2.0, gt=0)
    REFRESH_FAILURE_THRESHOLD: int = Field(default=3, ge=1)

    # Scheduler loop
    REFRESH_SCHEDULER_ENABLED: bool = True
    REFRESH_TICK_SECONDS: float = Field(default=3600.0, gt=0)
    REFRESH_MAX_CONCURRENCY: int = Field(default=4, ge=1)
    REFRESH_RECORD_TIMEOUT_SECONDS: float = Field(default=60.0, gt=0)
    REFRESH_SKIP_ARCHIVED: bool = True

    # Primary URL fetching
    FETCH_MAX_BYTES: int = Field(default=2 * 1024 * 1024, ge=1024)
    FETCH_TIMEOUT_SECONDS: float = Field(default=10.0, gt=0)
    FETCH_MAX_REDIRECTS: int = Field(default=5, ge=0)
    FETCH_MAX_META_REFRESH: int = Field(default=3, ge=0)

    # GitHub API (unauthenticated)
    GITHUB_API_BASE_URL: str = "https://api.github.com"
    GITHUB_TIMEOUT_SECONDS: float = Field(default=10.0, gt=0)
    GITHUB_MAX_RETRIES: int = Field(default=2, ge=1)
    GITHUB_BACKOFF_BASE_SECONDS: float = 0.5
    GITHUB_BACKOFF_MAX_SECONDS: float = 4.0

    USER_AGENT: str = "LinkRefresh/1.0 (+bookmark metadata refresh)"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields in .env


settings = Settings()
