from datetime import date, datetime
from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Dict, Any

from telecare.constants import AppointmentMode, ConsultationType
from telecare.models import Appointment, Doctor, Meeting
from telecare.models.appointment import parse_hhmm

# -------------------- Appointment Schemas --------------------


class TimeSlotIn(BaseModel):
    start: str = Field(..., description="HH:MM (clinic local time)")
    end: str = Field(..., description="HH:MM (clinic local time)")

    @field_validator("start", "end")
    @classmethod
    def _hhmm(cls, v: str) -> str:
        try:
            parse_hhmm(v)
        except (ValueError, AttributeError):
            raise ValueError("Time must be in HH:MM format")
        return v.strip()


class AppointmentRequestIn(BaseModel):
    doctorId: str
    appointmentDate: date
    timeSlot: TimeSlotIn
    type: ConsultationType
    mode: Optional[AppointmentMode] = None
    notes: Optional[str] = Field(None, max_length=2000)


class DeclineIn(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class CompleteIn(BaseModel):
    notes: Optional[str] = Field(None, max_length=2000)


class NotesIn(BaseModel):
    notes: str = Field(..., max_length=5000)


class MedicationIn(BaseModel):
    name: str
    dosage: Optional[str] = None
    frequency: Optional[str] = None
    duration: Optional[str] = None


class PrescriptionIn(BaseModel):
    medications: List[MedicationIn] = Field(default_factory=list)
    instructions: Optional[str] = None


class ActivityOut(BaseModel):
    action: str
    performedBy: Optional[str] = None
    performerKind: str
    timestamp: datetime
    details: Optional[str] = None


class MeetingSummaryOut(BaseModel):
    link: Optional[str] = None
    accessCode: Optional[str] = None
    meetingId: Optional[str] = None
    isGenerated: bool = False
    generatedAt: Optional[datetime] = None


class AppointmentOut(BaseModel):
    id: str
    patientId: str
    doctorId: str
    appointmentDate: date
    timeSlot: Dict[str, str]
    type: str
    mode: str
    status: str
    notes: Optional[str] = None
    prescription: Optional[Dict[str, Any]] = None
    meeting: MeetingSummaryOut
    activityLog: List[ActivityOut] = Field(default_factory=list)
    createdAt: datetime
    updatedAt: datetime

    @classmethod
    def from_document(cls, a: Appointment) -> "AppointmentOut":
        return cls(
            id=str(a.id),
            patientId=str(a.patient_id),
            doctorId=str(a.doctor_id),
            appointmentDate=a.local_day(),
            timeSlot={"start": a.time_slot.start, "end": a.time_slot.end},
            type=a.type.value,
            mode=a.mode.value,
            status=a.status,
            notes=a.notes,
            prescription=a.prescription.model_dump() if a.prescription else None,
            meeting=MeetingSummaryOut(
                link=a.meeting.link,
                accessCode=a.meeting.access_code,
                meetingId=a.meeting.meeting_id,
                isGenerated=a.meeting.is_generated,
                generatedAt=a.meeting.generated_at,
            ),
            activityLog=[
                ActivityOut(
                    action=e.action.value,
                    performedBy=str(e.performed_by) if e.performed_by else None,
                    performerKind=e.performer_kind.value,
                    timestamp=e.timestamp,
                    details=e.details,
                )
                for e in a.activity_log
            ],
            createdAt=a.created_at,
            updatedAt=a.updated_at,
        )


class DoctorOut(BaseModel):
    id: str
    name: str
    email: str
    specialization: Optional[str] = None
    googleCalendarAuthorized: bool = False

    @classmethod
    def from_document(cls, d: Doctor) -> "DoctorOut":
        return cls(
            id=str(d.id),
            name=d.display_name,
            email=d.email,
            specialization=d.specialization,
            googleCalendarAuthorized=d.google_calendar_authorized,
        )


# -------------------- Meeting Schemas --------------------


class ParticipantOut(BaseModel):
    userId: str
    kind: str
    status: str
    joinTime: Optional[datetime] = None
    leaveTime: Optional[datetime] = None


class MeetingOut(BaseModel):
    id: str
    appointmentId: str
    meetingId: str
    accessCode: str
    meetingLink: Optional[str] = None
    calendarEventId: Optional[str] = None
    summary: Optional[str] = None
    status: str
    isTest: bool = False
    startTime: Optional[datetime] = None
    endTime: Optional[datetime] = None
    participants: List[ParticipantOut] = Field(default_factory=list)
    createdAt: datetime

    @classmethod
    def from_document(cls, m: Meeting) -> "MeetingOut":
        return cls(
            id=str(m.id),
            appointmentId=str(m.appointment_id),
            meetingId=m.meeting_id,
            accessCode=m.access_code,
            meetingLink=m.google_meet_link,
            calendarEventId=m.google_calendar_event_id,
            summary=m.summary,
            status=m.status,
            isTest=m.is_test,
            startTime=m.start_time,
            endTime=m.end_time,
            participants=[
                ParticipantOut(
                    userId=str(p.user_id),
                    kind=p.kind.value,
                    status=p.status.value,
                    joinTime=p.join_time,
                    leaveTime=p.leave_time,
                )
                for p in m.participants
            ],
            createdAt=m.created_at,
        )


class OAuthStatusOut(BaseModel):
    success: bool = True
    hasRefreshToken: bool
    isAuthorized: bool
    hasValidTokens: bool
    isExpired: bool
    authSource: str
    tokenAge: Optional[int] = None
    lastUpdated: Optional[datetime] = None


# -------------------- Notification Schemas --------------------


class DeviceTokenIn(BaseModel):
    token: str
    platform: Optional[str] = Field(None, description="ios|android|web")
