from beanie import Document, Indexed
from beanie import PydanticObjectId as OID
from pydantic import BaseModel, Field
from datetime import datetime, timezone
from typing import List

from telecare.constants import ActorKind, MeetingStatus, ParticipantStatus


class Participant(BaseModel):
    # Doctor id for doctors, User id for patients
    user_id: OID
    kind: ActorKind
    join_time: datetime | None = None
    leave_time: datetime | None = None
    status: ParticipantStatus = ParticipantStatus.INVITED


class Meeting(Document):
    """Video session backing a confirmed appointment.

    Not unique per appointment at storage level: test meetings may coexist
    with the real one (see `is_test`).
    """
    appointment_id: Indexed(OID)
    patient_email: str
    doctor_email: str
    summary: str | None = None
    description: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    google_meet_link: str | None = None
    google_calendar_event_id: str | None = None
    conference_id: str | None = None
    meeting_id: str
    access_code: str
    status: str = MeetingStatus.SCHEDULED.value
    is_test: bool = False
    participants: List[Participant] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Settings:
        name = "meetings"

    def find_participant(self, user_id: OID, kind: ActorKind) -> Participant | None:
        for p in self.participants:
            if p.user_id == user_id and p.kind == kind:
                return p
        return None
