"""Application configuration."""

from os import getenv

from pydantic import BaseModel


def _csv(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


class Settings(BaseModel):
    """Runtime settings for the application."""

    app_name: str = "canteen API"
    app_env: str = getenv("APP_ENV", "dev")
    debug: bool = getenv("DEBUG", "0") == "1"
    log_level: str = getenv("LOG_LEVEL", "INFO")
    database_url: str = getenv("DATABASE_URL", "sqlite:///./canteen.db")
    jwt_secret_key: str = getenv("JWT_SECRET_KEY", "dev-only-change-me-to-a-long-random-secret")
    jwt_algorithm: str = getenv("JWT_ALGORITHM", "HS256")
    jwt_expire_minutes: int = int(getenv("JWT_EXPIRE_MINUTES", "60"))
    app_timezone: str = getenv("APP_TIMEZONE", "Asia/Jakarta")
    time_api_urls: list[str] = _csv(
        getenv(
            "TIME_API_URLS",
            "https://worldtimeapi.org/api/timezone/Etc/UTC,https://timeapi.io/api/Time/current/zone?timeZone=UTC",
        )
    )
    time_api_timeout_seconds: float = float(getenv("TIME_API_TIMEOUT_SECONDS", "10"))
    clock_sync_interval_seconds: int = int(getenv("CLOCK_SYNC_INTERVAL_SECONDS", "3600"))
    noshow_grace_minutes: int = int(getenv("NOSHOW_GRACE_MINUTES", "5"))
    background_jobs_enabled: bool = getenv("BACKGROUND_JOBS_ENABLED", "1") == "1"


settings: Settings = Settings()
