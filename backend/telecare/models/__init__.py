# Re-export Beanie documents
from .user import User
from .doctor import Doctor, GoogleTokens
from .appointment import (
    Appointment,
    ActivityEntry,
    MeetingSummary,
    Medication,
    Prescription,
    TimeSlot,
)
from .meeting import Meeting, Participant
from .oauth_state import OAuthState
from .notification import DeviceToken, Notification
