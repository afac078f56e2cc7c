from enum import Enum


class Role(str, Enum):
    """System roles for RBAC."""
    ADMIN = "admin"
    DOCTOR = "doctor"
    PATIENT = "patient"


class AppointmentStatus(str, Enum):
    REQUESTED = "Requested"
    SCHEDULED = "Scheduled"  # legacy, kept so old documents still load
    CONFIRMED = "Confirmed"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    NO_SHOW = "No Show"


# لا يمكن تغيير هذه الحالات بعد الوصول إليها
TERMINAL_STATUSES = (
    AppointmentStatus.COMPLETED,
    AppointmentStatus.CANCELLED,
    AppointmentStatus.NO_SHOW,
)


class ConsultationType(str, Enum):
    INITIAL_CONSULTATION = "Initial Consultation"
    FOLLOW_UP = "Follow Up"
    THERAPY_SESSION = "Therapy Session"
    ASSESSMENT = "Assessment"


class AppointmentMode(str, Enum):
    IN_PERSON = "In-person"
    VIDEO_CALL = "Video Call"
    PHONE_CALL = "Phone Call"


class ActivityAction(str, Enum):
    CREATED = "Created"
    UPDATED = "Updated"
    CONFIRMED = "Confirmed"
    CANCELLED = "Cancelled"
    RESCHEDULED = "Rescheduled"
    COMPLETED = "Completed"
    NO_SHOW = "No Show"
    REMINDER_SENT = "Reminder Sent"
    NOTES_ADDED = "Notes Added"
    PRESCRIPTION_ADDED = "Prescription Added"
    MEETING_LINK_GENERATED = "Meeting Link Generated"


class ActorKind(str, Enum):
    PATIENT = "patient"
    DOCTOR = "doctor"
    ADMIN = "admin"
    SYSTEM = "system"


class MeetingStatus(str, Enum):
    SCHEDULED = "scheduled"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    TEST = "test"


class ParticipantStatus(str, Enum):
    INVITED = "invited"
    JOINED = "joined"
    LEFT = "left"
