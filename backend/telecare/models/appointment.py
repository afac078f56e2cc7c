from beanie import Document, Indexed
from beanie import PydanticObjectId as OID
from pydantic import BaseModel, Field
from datetime import datetime, time, timezone
from typing import List, Optional
from zoneinfo import ZoneInfo

from telecare.constants import (
    ActivityAction,
    ActorKind,
    AppointmentMode,
    AppointmentStatus,
    ConsultationType,
)


class TimeSlot(BaseModel):
    """Local wall-clock slot, "HH:MM" strings."""
    start: str
    end: str


class Medication(BaseModel):
    name: str
    dosage: str | None = None
    frequency: str | None = None
    duration: str | None = None


class Prescription(BaseModel):
    medications: List[Medication] = Field(default_factory=list)
    instructions: str | None = None
    issued_at: datetime | None = None


class MeetingSummary(BaseModel):
    """Copy of the generated meeting kept on the appointment for quick reads."""
    link: str | None = None
    access_code: str | None = None
    meeting_id: str | None = None
    is_generated: bool = False
    generated_at: datetime | None = None
    # set while a generation call holds the appointment (compare-and-swap claim)
    generation_started_at: datetime | None = None


class ActivityEntry(BaseModel):
    action: ActivityAction
    performed_by: OID | None = None
    performer_kind: ActorKind = ActorKind.PATIENT
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    details: str | None = None


def parse_hhmm(value: str) -> time:
    """Parse "9:05" or "09:05" into time(9, 5); ValueError for anything else."""
    hours, minutes = value.strip().split(":")
    if not (hours.isdigit() and minutes.isdigit()) or len(minutes) != 2 or len(hours) > 2:
        raise ValueError(f"invalid time {value!r}")
    return time(int(hours), int(minutes))


class Appointment(Document):
    """موعد استشارة بين ولي أمر المريض والطبيب."""
    patient_id: Indexed(OID)
    doctor_id: Indexed(OID)
    # calendar day only; the time component is always midnight
    appointment_date: Indexed(datetime)
    time_slot: TimeSlot
    type: ConsultationType
    mode: AppointmentMode = AppointmentMode.VIDEO_CALL
    status: Indexed(str) = AppointmentStatus.REQUESTED.value
    notes: str | None = None
    prescription: Optional[Prescription] = None
    meeting: MeetingSummary = Field(default_factory=MeetingSummary)
    activity_log: List[ActivityEntry] = Field(default_factory=list)
    reminder_sent: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Settings:
        name = "appointments"

    def log_activity(
        self,
        action: ActivityAction,
        *,
        actor_id: OID | None,
        actor_kind: ActorKind,
        details: str | None = None,
        at: datetime | None = None,
    ) -> ActivityEntry:
        now = at or datetime.now(timezone.utc)
        entry = ActivityEntry(
            action=action,
            performed_by=actor_id,
            performer_kind=actor_kind,
            timestamp=now,
            details=details,
        )
        self.activity_log.append(entry)
        self.updated_at = now
        return entry

    def local_day(self):
        return self.appointment_date.date()

    def slot_start(self, tz: ZoneInfo) -> datetime:
        """Aware datetime of the slot start on the appointment day."""
        return datetime.combine(self.local_day(), parse_hhmm(self.time_slot.start), tzinfo=tz)

    def slot_end(self, tz: ZoneInfo) -> datetime:
        return datetime.combine(self.local_day(), parse_hhmm(self.time_slot.end), tzinfo=tz)
