"""
Appointment lifecycle.

    Requested --accept--> Confirmed --complete--> Completed
    Requested --decline-> Cancelled
    Requested/Confirmed --cancel (patient, >=24h notice)--> Cancelled
    Confirmed --no_show--> No Show

Every transition is written with a conditional update on the current status,
so two concurrent transitions out of the same state cannot both succeed.
"""
from datetime import date, datetime, time, timedelta
from typing import List, Optional

from beanie import PydanticObjectId as OID
from beanie.operators import In, Push, Set

from telecare.config import get_settings
from telecare.constants import (
    ActivityAction,
    ActorKind,
    AppointmentMode,
    AppointmentStatus,
    ConsultationType,
    MeetingStatus,
    TERMINAL_STATUSES,
)
from telecare.errors import Forbidden, InvalidState, NotFound, ValidationError
from telecare.models import (
    ActivityEntry,
    Appointment,
    Doctor,
    Medication,
    Meeting,
    Prescription,
    TimeSlot,
    User,
)
from telecare.models.appointment import parse_hhmm
from telecare.utils.clock import clinic_tz, utcnow
from telecare.utils.logger import get_logger

logger = get_logger("appointments")

S = AppointmentStatus

# (current status, event) -> (next status, activity action)
TRANSITIONS = {
    (S.REQUESTED, "accept"): (S.CONFIRMED, ActivityAction.CONFIRMED),
    (S.REQUESTED, "decline"): (S.CANCELLED, ActivityAction.CANCELLED),
    (S.REQUESTED, "cancel"): (S.CANCELLED, ActivityAction.CANCELLED),
    (S.CONFIRMED, "cancel"): (S.CANCELLED, ActivityAction.CANCELLED),
    (S.SCHEDULED, "cancel"): (S.CANCELLED, ActivityAction.CANCELLED),
    (S.CONFIRMED, "complete"): (S.COMPLETED, ActivityAction.COMPLETED),
    (S.CONFIRMED, "no_show"): (S.NO_SHOW, ActivityAction.NO_SHOW),
}


def next_status(current: str, event: str) -> tuple[AppointmentStatus, ActivityAction]:
    try:
        return TRANSITIONS[(S(current), event)]
    except (KeyError, ValueError):
        raise InvalidState(f"Cannot {event.replace('_', ' ')} an appointment that is {current}")


async def get_appointment(appointment_id: str | OID) -> Appointment:
    try:
        oid = OID(appointment_id)
    except Exception:
        raise ValidationError(f"Invalid appointment id: {appointment_id}")
    appointment = await Appointment.get(oid)
    if not appointment:
        raise NotFound("Appointment not found")
    return appointment


async def apply_transition(
    appointment: Appointment,
    event: str,
    *,
    actor_id: OID | None,
    actor_kind: ActorKind,
    details: str,
    now: Optional[datetime] = None,
) -> Appointment:
    """Move the appointment along one edge and append exactly one log entry."""
    target, action = next_status(appointment.status, event)
    now = now or utcnow()
    entry = ActivityEntry(
        action=action,
        performed_by=actor_id,
        performer_kind=actor_kind,
        timestamp=now,
        details=details,
    )
    result = await Appointment.find_one(
        Appointment.id == appointment.id,
        Appointment.status == appointment.status,
    ).update(
        Set({Appointment.status: target.value, Appointment.updated_at: now}),
        Push({Appointment.activity_log: entry}),
    )
    if not getattr(result, "modified_count", 0):
        # someone else moved it first
        raise InvalidState("Appointment was already processed")
    logger.info(f"Appointment {appointment.id}: {appointment.status} -> {target.value} ({event} by {actor_kind.value})")
    appointment.status = target.value
    appointment.updated_at = now
    appointment.activity_log.append(entry)
    return appointment


def _parse_slot(slot: TimeSlot) -> tuple[time, time]:
    try:
        start = parse_hhmm(slot.start)
        end = parse_hhmm(slot.end)
    except (ValueError, AttributeError):
        raise ValidationError("Time must be in HH:MM format")
    if start >= end:
        raise ValidationError("End time must be after start time")
    return start, end


async def request_appointment(
    *,
    patient: User,
    doctor_id: str,
    appointment_date: date,
    time_slot: TimeSlot,
    type: str,
    mode: Optional[str] = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Appointment:
    """طلب موعد جديد من قبل المريض (الحالة الابتدائية Requested)."""
    now = now or utcnow()
    _parse_slot(time_slot)
    try:
        consultation_type = ConsultationType(type)
        appointment_mode = AppointmentMode(mode) if mode else AppointmentMode.VIDEO_CALL
    except ValueError as e:
        raise ValidationError(str(e))

    today = now.astimezone(clinic_tz()).date()
    if appointment_date <= today:
        raise ValidationError("Appointment date must be in the future")

    try:
        doctor = await Doctor.get(OID(doctor_id))
    except Exception:
        doctor = None
    if not doctor or not doctor.is_active:
        raise NotFound("Doctor not found")

    appointment = Appointment(
        patient_id=patient.id,
        doctor_id=doctor.id,
        appointment_date=datetime.combine(appointment_date, time.min),
        time_slot=TimeSlot(start=time_slot.start.strip(), end=time_slot.end.strip()),
        type=consultation_type,
        mode=appointment_mode,
        notes=notes,
        status=S.REQUESTED.value,
        created_at=now,
        updated_at=now,
    )
    appointment.log_activity(
        ActivityAction.CREATED,
        actor_id=patient.id,
        actor_kind=ActorKind.PATIENT,
        details=f"Appointment requested by patient {patient.full_name}",
        at=now,
    )
    await appointment.insert()
    logger.info(f"Appointment {appointment.id} requested by {patient.id} with doctor {doctor.id}")
    return appointment


def _require_assigned_doctor(appointment: Appointment, doctor: Doctor) -> None:
    if appointment.doctor_id != doctor.id:
        raise Forbidden("Only the assigned doctor can manage this appointment")


async def accept_appointment(*, appointment_id: str, doctor: Doctor, now: Optional[datetime] = None) -> Appointment:
    appointment = await get_appointment(appointment_id)
    _require_assigned_doctor(appointment, doctor)
    if appointment.status != S.REQUESTED:
        raise InvalidState("Appointment request already processed")
    return await apply_transition(
        appointment,
        "accept",
        actor_id=doctor.id,
        actor_kind=ActorKind.DOCTOR,
        details="Appointment confirmed by doctor",
        now=now,
    )


async def decline_appointment(
    *, appointment_id: str, doctor: Doctor, reason: Optional[str] = None, now: Optional[datetime] = None
) -> Appointment:
    appointment = await get_appointment(appointment_id)
    _require_assigned_doctor(appointment, doctor)
    if appointment.status != S.REQUESTED:
        raise InvalidState("Appointment request already processed")
    return await apply_transition(
        appointment,
        "decline",
        actor_id=doctor.id,
        actor_kind=ActorKind.DOCTOR,
        details=reason or "Appointment declined by doctor",
        now=now,
    )


async def cancel_appointment(*, appointment_id: str, patient: User, now: Optional[datetime] = None) -> Appointment:
    """إلغاء الموعد من قبل المريض (قبل 24 ساعة على الأقل)."""
    now = now or utcnow()
    appointment = await get_appointment(appointment_id)
    if appointment.patient_id != patient.id:
        raise Forbidden("Only the patient who requested the appointment can cancel it")
    if appointment.status in TERMINAL_STATUSES:
        raise InvalidState(f"Appointment is already {appointment.status}")

    notice = timedelta(hours=get_settings().CANCELLATION_MIN_NOTICE_HOURS)
    if appointment.slot_start(clinic_tz()) - now < notice:
        raise ValidationError(
            f"Appointments can only be cancelled at least {get_settings().CANCELLATION_MIN_NOTICE_HOURS} hours in advance"
        )
    appointment = await apply_transition(
        appointment,
        "cancel",
        actor_id=patient.id,
        actor_kind=ActorKind.PATIENT,
        details="Appointment cancelled by patient",
        now=now,
    )
    await _cancel_meetings(appointment, now)
    return appointment


async def _cancel_meetings(appointment: Appointment, now: datetime) -> None:
    """Close the real meeting of a cancelled appointment so nobody can join it."""
    result = await Meeting.find(
        Meeting.appointment_id == appointment.id,
        Meeting.is_test == False,  # noqa: E712
        In(Meeting.status, [MeetingStatus.SCHEDULED.value, MeetingStatus.ACTIVE.value]),
    ).update(Set({Meeting.status: MeetingStatus.CANCELLED.value, Meeting.updated_at: now}))
    if getattr(result, "modified_count", 0):
        logger.info(f"🚫 Meeting for appointment {appointment.id} cancelled")


async def complete_appointment(
    *, appointment_id: str, doctor: Doctor, details: Optional[str] = None, now: Optional[datetime] = None
) -> Appointment:
    appointment = await get_appointment(appointment_id)
    _require_assigned_doctor(appointment, doctor)
    return await apply_transition(
        appointment,
        "complete",
        actor_id=doctor.id,
        actor_kind=ActorKind.DOCTOR,
        details=details or "Consultation completed",
        now=now,
    )


async def mark_no_show(*, appointment_id: str, doctor: Doctor, now: Optional[datetime] = None) -> Appointment:
    now = now or utcnow()
    appointment = await get_appointment(appointment_id)
    _require_assigned_doctor(appointment, doctor)
    if now < appointment.slot_start(clinic_tz()):
        raise InvalidState("Cannot mark a no-show before the appointment has started")
    return await apply_transition(
        appointment,
        "no_show",
        actor_id=doctor.id,
        actor_kind=ActorKind.DOCTOR,
        details="Patient did not attend",
        now=now,
    )


async def add_prescription(
    *,
    appointment_id: str,
    doctor: Doctor,
    medications: List[Medication],
    instructions: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Appointment:
    now = now or utcnow()
    appointment = await get_appointment(appointment_id)
    _require_assigned_doctor(appointment, doctor)
    if appointment.status not in (S.CONFIRMED, S.COMPLETED):
        raise InvalidState("Prescriptions can only be added to confirmed or completed appointments")
    if not medications and not instructions:
        raise ValidationError("Prescription needs at least one medication or instructions")

    appointment.prescription = Prescription(medications=medications, instructions=instructions, issued_at=now)
    appointment.log_activity(
        ActivityAction.PRESCRIPTION_ADDED,
        actor_id=doctor.id,
        actor_kind=ActorKind.DOCTOR,
        details=f"{len(medications)} medication(s) prescribed",
        at=now,
    )
    await appointment.save()
    return appointment


async def add_consultation_notes(
    *, appointment_id: str, doctor: Doctor, notes: str, now: Optional[datetime] = None
) -> Appointment:
    """ملاحظات الطبيب على الاستشارة (تستبدل الملاحظات السابقة)."""
    now = now or utcnow()
    appointment = await get_appointment(appointment_id)
    _require_assigned_doctor(appointment, doctor)
    if not notes or not notes.strip():
        raise ValidationError("Notes cannot be empty")

    appointment.notes = notes.strip()
    appointment.updated_at = now
    appointment.log_activity(
        ActivityAction.NOTES_ADDED,
        actor_id=doctor.id,
        actor_kind=ActorKind.DOCTOR,
        details="Consultation notes added",
        at=now,
    )
    await appointment.save()
    logger.info(f"📝 Notes added to appointment {appointment.id} by doctor {doctor.id}")
    return appointment


# ---------------------- Listings ----------------------

async def list_patient_appointments(*, patient_id: OID) -> List[Appointment]:
    return await Appointment.find(Appointment.patient_id == patient_id).sort(-Appointment.appointment_date).to_list()


async def list_doctor_requests(*, doctor_id: OID) -> List[Appointment]:
    """طلبات المواعيد التي تنتظر رد الطبيب."""
    return await (
        Appointment.find(Appointment.doctor_id == doctor_id, Appointment.status == S.REQUESTED.value)
        .sort(+Appointment.appointment_date)
        .to_list()
    )


def _clinic_today(now: Optional[datetime] = None) -> date:
    return (now or utcnow()).astimezone(clinic_tz()).date()


def _day_start(day: date) -> datetime:
    # appointment_date is stored as the naive midnight of the clinic-local day
    return datetime.combine(day, time.min)


def _by_slot(appointments: List[Appointment], reverse: bool = False) -> List[Appointment]:
    return sorted(
        appointments,
        key=lambda a: (a.appointment_date, parse_hhmm(a.time_slot.start)),
        reverse=reverse,
    )


async def list_doctor_today(*, doctor_id: OID, now: Optional[datetime] = None) -> List[Appointment]:
    """مواعيد اليوم للطبيب مرتبة حسب وقت البداية."""
    today = _day_start(_clinic_today(now))
    appointments = await Appointment.find(
        Appointment.doctor_id == doctor_id,
        Appointment.appointment_date == today,
    ).to_list()
    return _by_slot(appointments)


async def list_doctor_upcoming(
    *, doctor_id: OID, day: Optional[date] = None, now: Optional[datetime] = None
) -> List[Appointment]:
    """Appointments after today, or only those on `day` when one is given."""
    query = Appointment.find(Appointment.doctor_id == doctor_id)
    if day:
        query = query.find(Appointment.appointment_date == _day_start(day))
    else:
        query = query.find(Appointment.appointment_date > _day_start(_clinic_today(now)))
    return _by_slot(await query.to_list())


async def list_doctor_history(
    *, doctor_id: OID, day: Optional[date] = None, now: Optional[datetime] = None
) -> List[Appointment]:
    query = Appointment.find(Appointment.doctor_id == doctor_id)
    if day:
        query = query.find(Appointment.appointment_date == _day_start(day))
    else:
        query = query.find(Appointment.appointment_date < _day_start(_clinic_today(now)))
    return _by_slot(await query.to_list(), reverse=True)


async def list_available_doctors(*, specialization: Optional[str] = None) -> List[Doctor]:
    query = Doctor.find(Doctor.is_active == True)  # noqa: E712
    if specialization:
        query = query.find(Doctor.specialization == specialization)
    return await query.sort(+Doctor.first_name).to_list()
