from beanie import Document, Indexed
from beanie import PydanticObjectId as OID
from pydantic import BaseModel
from datetime import datetime


class GoogleTokens(BaseModel):
    """OAuth credentials for the doctor's Google Calendar."""
    access_token: str | None = None
    refresh_token: str | None = None
    expiry_date: datetime | None = None
    token_type: str | None = "Bearer"
    scope: str | None = None


class Doctor(Document):
    """ملف الطبيب (يرتبط بمستخدم)."""
    user_id: Indexed(OID, unique=True)
    first_name: str | None = None
    last_name: str | None = None
    email: str
    specialization: str | None = None
    is_active: bool = True

    # Google Calendar authorization (per doctor)
    google_tokens: GoogleTokens | None = None
    google_calendar_authorized: bool = False
    google_tokens_updated_at: datetime | None = None

    class Settings:
        name = "doctors"

    @property
    def display_name(self) -> str:
        name = " ".join(p for p in (self.first_name, self.last_name) if p)
        return f"Dr. {name}" if name else self.email
