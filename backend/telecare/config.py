from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import List
import os


class Settings(BaseSettings):
    """Global app settings loaded from environment.
    - Keep defaults light for dev.
    - Override via .env or real env vars.
    """

    APP_NAME: str = "telecare_api"
    APP_ENV: str = "dev"
    APP_DEBUG: bool = True

    MONGODB_URI: str = "mongodb://localhost:27017/telecare"

    # JWT settings (issued by the identity service, verified here)
    JWT_SECRET: str = "telecare_dev_secret"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60  # 1 hour

    # Raw CORS string from env (comma-separated); parsed via cors_origins property
    CORS_ORIGINS: str | None = None

    # Where the OAuth callback sends the doctor back to
    FRONTEND_URL: str = "http://localhost:5173"

    # Google OAuth / Calendar
    GOOGLE_CLIENT_ID: str | None = None
    GOOGLE_CLIENT_SECRET: str | None = None
    GOOGLE_REDIRECT_URI: str = "http://localhost:8000/meetings/google/callback"
    GOOGLE_API_TIMEOUT_SECONDS: float = 10.0
    # Degraded mode: one shared credential for every doctor. Off unless asked for.
    GOOGLE_SHARED_TOKEN_FALLBACK: bool = False
    OAUTH_STATE_TTL_MINUTES: int = 15

    # Wall-clock zone used for appointment dates and time slots
    CLINIC_TIMEZONE: str = "Asia/Kolkata"

    # Meeting rules
    MEETING_JOIN_EARLY_MINUTES: int = 15
    MEETING_JOIN_LATE_MINUTES: int = 60
    MEETING_GENERATION_LOCK_SECONDS: int = 120
    CANCELLATION_MIN_NOTICE_HOURS: int = 24

    # Reminder job: notify patients this many minutes before the slot
    REMINDER_LEAD_MINUTES: int = 60

    # Rotating log files live here (app.log + errors.log)
    LOG_DIR: str = "logs"

    # Firebase Admin SDK service account
    FIREBASE_CREDENTIALS_FILE: str | None = None

    class Config:
        env_file = ".env"
        case_sensitive = False

    @property
    def cors_origins(self) -> List[str]:
        """Return CORS origins as a list, parsing comma-separated env string."""
        raw = self.CORS_ORIGINS or os.getenv("CORS_ORIGINS", "") or ""
        return [o.strip() for o in raw.split(",") if o.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance."""
    return Settings()
