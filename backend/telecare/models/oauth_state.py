from beanie import Document, Indexed
from beanie import PydanticObjectId as OID
from pydantic import Field
from datetime import datetime, timezone


class OAuthState(Document):
    """Pending Google authorization, keyed by the `state` sent to the consent screen.

    The callback only receives `code` and `state`; this record is how it finds
    which doctor started the flow.
    """
    state: Indexed(str, unique=True)
    doctor_id: OID
    appointment_id: str | None = None
    expires_at: datetime
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Settings:
        name = "oauth_states"
