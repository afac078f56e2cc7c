"""
Meeting activation: join eligibility, idempotent Google Meet generation and
participant tracking for confirmed appointments.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from beanie.operators import In, Push, Set

from telecare.config import get_settings
from telecare.constants import (
    ActivityAction,
    ActorKind,
    AppointmentStatus,
    MeetingStatus,
    ParticipantStatus,
)
from telecare.errors import Forbidden, InvalidState, NotFound
from telecare.models import ActivityEntry, Appointment, Doctor, Meeting, Participant, User
from telecare.services import appointment_service, google_calendar, token_store
from telecare.services.actors import Actor, require_party
from telecare.services.notification_service import notify_user
from telecare.utils.clock import clinic_tz, to_utc, utcnow
from telecare.utils.logger import get_logger

logger = get_logger("meetings")


@dataclass
class JoinEligibility:
    is_today: bool
    can_join: bool
    minutes_from_start: Optional[int] = None


def check_eligibility(appointment: Appointment, now: Optional[datetime] = None) -> JoinEligibility:
    """Can the meeting for this appointment be joined right now?

    Only Confirmed appointments, only on the appointment's own (clinic-local)
    day, and only from MEETING_JOIN_EARLY_MINUTES before the slot start until
    MEETING_JOIN_LATE_MINUTES after it, both ends inclusive.
    """
    if appointment.status != AppointmentStatus.CONFIRMED:
        return JoinEligibility(is_today=False, can_join=False)

    tz = clinic_tz()
    now = now or utcnow()
    is_today = appointment.local_day() == now.astimezone(tz).date()
    if not is_today:
        return JoinEligibility(is_today=False, can_join=False)

    settings = get_settings()
    offset = now - appointment.slot_start(tz)
    early = timedelta(minutes=settings.MEETING_JOIN_EARLY_MINUTES)
    late = timedelta(minutes=settings.MEETING_JOIN_LATE_MINUTES)
    return JoinEligibility(
        is_today=True,
        can_join=-early <= offset <= late,
        minutes_from_start=int(offset.total_seconds() // 60),
    )


def can_join(appointment: Appointment, now: Optional[datetime] = None) -> bool:
    return check_eligibility(appointment, now).can_join


async def find_meeting(appointment_id) -> Optional[Meeting]:
    """The real (non-test) meeting of an appointment, if one was generated."""
    return await Meeting.find_one(Meeting.appointment_id == appointment_id, Meeting.is_test == False)  # noqa: E712


async def check_meeting(*, appointment_id: str, actor: Actor, now: Optional[datetime] = None) -> dict:
    appointment = await appointment_service.get_appointment(appointment_id)
    require_party(appointment, actor, "You are not part of this appointment")
    eligibility = check_eligibility(appointment, now)
    meeting = await find_meeting(appointment.id)
    has_link = bool(meeting and meeting.google_meet_link)

    if appointment.status != AppointmentStatus.CONFIRMED:
        message = f"Appointment is {appointment.status}"
    elif not eligibility.is_today:
        message = "Meeting is only available on the appointment day"
    elif not eligibility.can_join:
        settings = get_settings()
        message = (
            f"Meeting can be joined from {settings.MEETING_JOIN_EARLY_MINUTES} minutes before "
            f"until {settings.MEETING_JOIN_LATE_MINUTES} minutes after the start time"
        )
    elif not has_link:
        message = "Meeting link has not been generated yet"
    else:
        message = "Meeting is ready to join"

    return {
        "isToday": eligibility.is_today,
        "canJoin": eligibility.can_join,
        "hasLink": has_link,
        "message": message,
        "meetingLink": meeting.google_meet_link if has_link else None,
        "accessCode": meeting.access_code if has_link else None,
    }


# ---------------------- Generation ----------------------

def _naive_utc(dt: datetime) -> datetime:
    # stored datetimes come back naive UTC; compare like with like
    return to_utc(dt).replace(tzinfo=None)


async def _claim_generation(appointment: Appointment, now: datetime) -> bool:
    """Compare-and-swap the generation claim; False if another call holds a live one."""
    cutoff = now - timedelta(seconds=get_settings().MEETING_GENERATION_LOCK_SECONDS)
    result = await Appointment.find_one(
        {
            "_id": appointment.id,
            "$or": [
                {"meeting.generation_started_at": None},
                {"meeting.generation_started_at": {"$lt": _naive_utc(cutoff)}},
            ],
        }
    ).update(Set({"meeting.generation_started_at": _naive_utc(now)}))
    return bool(getattr(result, "modified_count", 0))


async def _release_generation(appointment: Appointment) -> None:
    await Appointment.find_one(Appointment.id == appointment.id).update(
        Set({"meeting.generation_started_at": None})
    )


async def generate_meeting(
    *,
    appointment_id: str,
    doctor: Doctor,
    test: bool = False,
    now: Optional[datetime] = None,
) -> Tuple[Meeting, bool]:
    """Create (or return the existing) Google Meet for a confirmed appointment.

    Returns (meeting, created). A second call for the same appointment returns
    the stored meeting without reaching Google. `test=True` always creates a
    separate throwaway meeting that the appointment never points at.
    """
    now = now or utcnow()
    appointment = await appointment_service.get_appointment(appointment_id)
    if appointment.doctor_id != doctor.id:
        raise Forbidden("Only the assigned doctor can generate meeting links")
    if appointment.status != AppointmentStatus.CONFIRMED:
        raise InvalidState(f"Meeting links can only be generated for confirmed appointments (current: {appointment.status})")

    if not test:
        existing = await find_meeting(appointment.id)
        if existing and existing.google_meet_link:
            logger.info(f"Reusing meeting {existing.meeting_id} for appointment {appointment.id}")
            return existing, False

        if not await _claim_generation(appointment, now):
            existing = await find_meeting(appointment.id)
            if existing and existing.google_meet_link:
                return existing, False
            raise InvalidState("Meeting generation already in progress, try again shortly")

    try:
        meeting = await _create_meeting(appointment, doctor, test=test, now=now)
    except Exception:
        if not test:
            await _release_generation(appointment)
        raise

    if not test:
        await _record_on_appointment(appointment, meeting, doctor, now)
        await _notify_patient(appointment, meeting, doctor)
    return meeting, True


async def _create_meeting(appointment: Appointment, doctor: Doctor, *, test: bool, now: datetime) -> Meeting:
    tokens = await token_store.get_valid_tokens(doctor.id, now=now)
    patient = await User.get(appointment.patient_id)
    if not patient:
        raise NotFound("Patient not found")

    tz = clinic_tz()
    start = appointment.slot_start(tz)
    end = appointment.slot_end(tz)
    summary = f"Medical Consultation - {patient.full_name}"
    description = (
        f"{appointment.type.value} with {doctor.display_name}\n"
        f"Date: {appointment.local_day().isoformat()} {appointment.time_slot.start}-{appointment.time_slot.end}"
    )
    if appointment.notes:
        description += f"\nNotes: {appointment.notes}"
    if test:
        summary = f"[TEST] {summary}"

    conference = await google_calendar.create_meet_event(
        tokens,
        google_calendar.CalendarEventRequest(
            summary=summary,
            description=description,
            start=start,
            end=end,
            timezone=get_settings().CLINIC_TIMEZONE,
            attendees=[patient.email, doctor.email],
        ),
    )

    meeting = Meeting(
        appointment_id=appointment.id,
        patient_email=patient.email,
        doctor_email=doctor.email,
        summary=summary,
        description=description,
        start_time=start,
        end_time=end,
        google_meet_link=conference.link,
        google_calendar_event_id=conference.event_id,
        conference_id=conference.conference_id,
        meeting_id=conference.meeting_id,
        access_code=conference.access_code,
        status=(MeetingStatus.TEST if test else MeetingStatus.SCHEDULED).value,
        is_test=test,
        participants=[
            Participant(user_id=doctor.id, kind=ActorKind.DOCTOR),
            Participant(user_id=patient.id, kind=ActorKind.PATIENT),
        ],
        created_at=now,
        updated_at=now,
    )
    await meeting.insert()
    logger.info(f"✅ Meeting {meeting.meeting_id} created for appointment {appointment.id}{' (test)' if test else ''}")
    return meeting


async def _record_on_appointment(appointment: Appointment, meeting: Meeting, doctor: Doctor, now: datetime) -> None:
    entry = ActivityEntry(
        action=ActivityAction.MEETING_LINK_GENERATED,
        performed_by=doctor.id,
        performer_kind=ActorKind.DOCTOR,
        timestamp=now,
        details=f"Google Meet link generated ({meeting.meeting_id})",
    )
    await Appointment.find_one(Appointment.id == appointment.id).update(
        Set(
            {
                "meeting.link": meeting.google_meet_link,
                "meeting.access_code": meeting.access_code,
                "meeting.meeting_id": meeting.meeting_id,
                "meeting.is_generated": True,
                "meeting.generated_at": now,
                "meeting.generation_started_at": None,
                Appointment.updated_at: now,
            }
        ),
        Push({Appointment.activity_log: entry}),
    )
    appointment.meeting.link = meeting.google_meet_link
    appointment.meeting.access_code = meeting.access_code
    appointment.meeting.meeting_id = meeting.meeting_id
    appointment.meeting.is_generated = True
    appointment.meeting.generated_at = now
    appointment.meeting.generation_started_at = None
    appointment.activity_log.append(entry)


async def _notify_patient(appointment: Appointment, meeting: Meeting, doctor: Doctor) -> None:
    try:
        await notify_user(
            user_id=appointment.patient_id,
            title="رابط الاستشارة جاهز",
            body=(
                f"{doctor.display_name} shared the video link for your "
                f"{appointment.local_day().isoformat()} {appointment.time_slot.start} consultation. "
                f"Access code: {meeting.access_code}"
            ),
            appointment_id=appointment.id,
        )
    except Exception as e:
        # the meeting exists either way; the patient can still see it in the app
        logger.error(f"❌ Failed to notify patient {appointment.patient_id} about meeting {meeting.meeting_id}: {e}")


# ---------------------- Participation ----------------------

async def _load_for_party(appointment_id: str, actor: Actor) -> Tuple[Appointment, Meeting]:
    appointment = await appointment_service.get_appointment(appointment_id)
    meeting = await find_meeting(appointment.id)
    if not meeting:
        raise NotFound("Meeting not found for this appointment")
    require_party(appointment, actor, "You are not a participant of this meeting")
    return appointment, meeting


async def join_meeting(*, appointment_id: str, actor: Actor, now: Optional[datetime] = None) -> Meeting:
    now = now or utcnow()
    appointment, meeting = await _load_for_party(appointment_id, actor)
    if meeting.status in (MeetingStatus.COMPLETED, MeetingStatus.CANCELLED):
        raise InvalidState(f"Meeting is already {meeting.status}")
    if appointment.status != AppointmentStatus.CONFIRMED:
        raise InvalidState(f"Cannot join a meeting for an appointment that is {appointment.status}")

    participant = meeting.find_participant(actor.id, actor.kind)
    if participant is None:
        participant = Participant(user_id=actor.id, kind=actor.kind)
        meeting.participants.append(participant)
    participant.join_time = now
    participant.leave_time = None
    participant.status = ParticipantStatus.JOINED

    if meeting.status == MeetingStatus.SCHEDULED:
        # first one in starts the clock
        meeting.status = MeetingStatus.ACTIVE.value
        meeting.start_time = now
        logger.info(f"Meeting {meeting.meeting_id} is now active")
    meeting.updated_at = now
    await meeting.save()
    logger.info(f"{actor.kind.value} {actor.id} joined meeting {meeting.meeting_id}")
    return meeting


async def leave_meeting(*, appointment_id: str, actor: Actor, now: Optional[datetime] = None) -> Meeting:
    now = now or utcnow()
    appointment, meeting = await _load_for_party(appointment_id, actor)

    participant = meeting.find_participant(actor.id, actor.kind)
    if participant is None:
        raise InvalidState("You have not joined this meeting")
    participant.leave_time = now
    participant.status = ParticipantStatus.LEFT

    # completed once nobody is left inside; invited-only parties never block it
    statuses = [p.status for p in meeting.participants]
    finished = (
        meeting.status == MeetingStatus.ACTIVE
        and ParticipantStatus.JOINED not in statuses
        and ParticipantStatus.LEFT in statuses
    )
    if finished:
        meeting.status = MeetingStatus.COMPLETED.value
        meeting.end_time = now
    meeting.updated_at = now
    await meeting.save()
    logger.info(f"{actor.kind.value} {actor.id} left meeting {meeting.meeting_id}")

    if finished:
        logger.info(f"Meeting {meeting.meeting_id} completed")
        await _complete_appointment(appointment, actor, now)
    return meeting


async def _complete_appointment(appointment: Appointment, actor: Actor, now: datetime) -> None:
    if appointment.status != AppointmentStatus.CONFIRMED:
        return
    try:
        await appointment_service.apply_transition(
            appointment,
            "complete",
            actor_id=actor.id,
            actor_kind=actor.kind,
            details="Consultation completed (meeting ended)",
            now=now,
        )
    except InvalidState as e:
        # the doctor may have closed it by hand in the meantime
        logger.warning(f"Appointment {appointment.id} not completed after meeting end: {e.message}")


# ---------------------- Queries ----------------------

async def get_meeting_details(*, appointment_id: str, actor: Actor) -> Tuple[Meeting, Appointment]:
    appointment, meeting = await _load_for_party(appointment_id, actor)
    return meeting, appointment


async def list_doctor_meetings(*, doctor: Doctor, include_test: bool = False) -> List[Meeting]:
    appointment_ids = [
        a.id for a in await Appointment.find(Appointment.doctor_id == doctor.id).to_list()
    ]
    if not appointment_ids:
        return []
    query = Meeting.find(In(Meeting.appointment_id, appointment_ids))
    if not include_test:
        query = query.find(Meeting.is_test == False)  # noqa: E712
    return await query.sort(-Meeting.created_at).to_list()
