"""
خدمة تذكير المواعيد - ترسل إشعارات push للمرضى قبل موعد الاستشارة.
"""
from datetime import datetime, timedelta
from typing import Optional

from beanie.operators import Push, Set

from telecare.config import get_settings
from telecare.constants import ActivityAction, ActorKind, AppointmentStatus
from telecare.models import ActivityEntry, Appointment, Doctor
from telecare.services.notification_service import notify_user
from telecare.utils.clock import clinic_tz, utcnow
from telecare.utils.logger import get_logger

logger = get_logger("appointment_reminder")


async def send_due_reminders(now: Optional[datetime] = None) -> int:
    """
    فحص المواعيد المؤكدة التي تبدأ خلال REMINDER_LEAD_MINUTES وإرسال تذكير واحد لكل موعد.
    يتم استدعاؤها بشكل دوري من المجدول (كل 5 دقائق).
    """
    now = now or utcnow()
    tz = clinic_tz()
    lead = timedelta(minutes=get_settings().REMINDER_LEAD_MINUTES)

    # only today's and tomorrow's days can fall inside the lead window
    today = now.astimezone(tz).date()
    day_start = datetime.combine(today, datetime.min.time())
    candidates = await Appointment.find(
        Appointment.status == AppointmentStatus.CONFIRMED.value,
        Appointment.reminder_sent == False,  # noqa: E712
        Appointment.appointment_date >= day_start,
        Appointment.appointment_date < day_start + timedelta(days=2),
    ).to_list()

    sent = 0
    for appointment in candidates:
        try:
            start = appointment.slot_start(tz)
        except ValueError:
            logger.warning(f"Appointment {appointment.id} has an unreadable time slot, skipping reminder")
            continue
        if not (now <= start <= now + lead):
            continue
        try:
            if await _send_reminder(appointment, start, now):
                sent += 1
        except Exception as e:
            logger.error(f"❌ Error sending reminder for appointment {appointment.id}: {e}")
            continue

    if sent:
        logger.info(f"✅ Sent {sent} reminder notification(s)")
    else:
        logger.debug("ℹ️ No reminders to send at this time")
    return sent


async def _send_reminder(appointment: Appointment, start: datetime, now: datetime) -> bool:
    entry = ActivityEntry(
        action=ActivityAction.REMINDER_SENT,
        performed_by=None,
        performer_kind=ActorKind.SYSTEM,
        timestamp=now,
        details=f"Reminder sent for {start.strftime('%H:%M')}",
    )
    # flag first so two scheduler runs cannot both notify
    result = await Appointment.find_one(
        Appointment.id == appointment.id,
        Appointment.reminder_sent == False,  # noqa: E712
    ).update(
        Set({Appointment.reminder_sent: True, Appointment.updated_at: now}),
        Push({Appointment.activity_log: entry}),
    )
    if not getattr(result, "modified_count", 0):
        return False

    doctor = await Doctor.get(appointment.doctor_id)
    doctor_name = doctor.display_name if doctor else "your doctor"
    minutes = max(int((start - now).total_seconds() // 60), 0)
    body = f"Your consultation with {doctor_name} starts in {minutes} minutes ({start.strftime('%H:%M')})."
    if appointment.meeting.is_generated and appointment.meeting.link:
        body += f" Join: {appointment.meeting.link}"
    await notify_user(
        user_id=appointment.patient_id,
        title="تذكير بموعدك",
        body=body,
        appointment_id=appointment.id,
    )
    logger.info(f"🔔 Reminder sent for appointment {appointment.id}")
    return True
