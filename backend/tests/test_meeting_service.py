"""
Meeting generation, idempotency and participant tracking.
"""

import pytest
from datetime import timedelta
from unittest.mock import AsyncMock, patch

from telecare.constants import ActivityAction, ActorKind, AppointmentStatus, MeetingStatus, ParticipantStatus
from telecare.errors import (
    AuthorizationRequired,
    ExternalServiceError,
    Forbidden,
    InvalidState,
    NotFound,
    ReauthorizationRequired,
)
from telecare.models import Appointment, Meeting, Notification, TimeSlot
from telecare.services import appointment_service, meeting_service
from telecare.services.actors import Actor
from telecare.utils.clock import to_utc
from tests.conftest import APPOINTMENT_DAY, NOW_0950, ist

CALENDAR_HOST = "www.googleapis.com"


class TestGenerateMeeting:

    @pytest.mark.asyncio
    async def test_creates_meeting_and_updates_appointment(self, make_appointment, authorized_doctor, google, patient_user):
        appointment = await make_appointment(AppointmentStatus.CONFIRMED)

        meeting, created = await meeting_service.generate_meeting(
            appointment_id=str(appointment.id), doctor=authorized_doctor, now=NOW_0950
        )

        assert created is True
        assert meeting.status == MeetingStatus.SCHEDULED
        assert meeting.google_meet_link == "https://meet.google.com/abc-defg-hij"
        assert meeting.access_code == "ABCDEFGH"
        assert meeting.summary == "Medical Consultation - Sara Ali"
        assert {p.kind for p in meeting.participants} == {ActorKind.DOCTOR, ActorKind.PATIENT}
        assert all(p.status == ParticipantStatus.INVITED for p in meeting.participants)

        stored = await Appointment.get(appointment.id)
        assert stored.meeting.is_generated is True
        assert stored.meeting.link == meeting.google_meet_link
        assert stored.meeting.access_code == "ABCDEFGH"
        assert stored.meeting.generation_started_at is None
        assert stored.activity_log[-1].action == ActivityAction.MEETING_LINK_GENERATED

        notes = await Notification.find(Notification.user_id == patient_user.id).to_list()
        assert len(notes) == 1

    @pytest.mark.asyncio
    async def test_second_call_reuses_meeting(self, make_appointment, authorized_doctor, google):
        appointment = await make_appointment(AppointmentStatus.CONFIRMED)

        first, _ = await meeting_service.generate_meeting(
            appointment_id=str(appointment.id), doctor=authorized_doctor, now=NOW_0950
        )
        second, created = await meeting_service.generate_meeting(
            appointment_id=str(appointment.id), doctor=authorized_doctor, now=NOW_0950 + timedelta(minutes=2)
        )

        assert created is False
        assert second.id == first.id
        assert second.google_meet_link == first.google_meet_link
        assert second.access_code == first.access_code
        assert google.calls_to(CALENDAR_HOST) == 1
        assert await Meeting.find(Meeting.appointment_id == appointment.id).count() == 1

    @pytest.mark.asyncio
    async def test_not_gated_on_appointment_day(self, make_appointment, authorized_doctor, google):
        appointment = await make_appointment(AppointmentStatus.CONFIRMED)

        _, created = await meeting_service.generate_meeting(
            appointment_id=str(appointment.id), doctor=authorized_doctor, now=NOW_0950 - timedelta(days=3)
        )

        assert created is True

    @pytest.mark.asyncio
    async def test_only_assigned_doctor(self, make_appointment, other_doctor, google):
        appointment = await make_appointment(AppointmentStatus.CONFIRMED)

        with pytest.raises(Forbidden):
            await meeting_service.generate_meeting(appointment_id=str(appointment.id), doctor=other_doctor)
        assert google.requests == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [AppointmentStatus.REQUESTED, AppointmentStatus.CANCELLED])
    async def test_requires_confirmed(self, make_appointment, authorized_doctor, google, status):
        appointment = await make_appointment(status)

        with pytest.raises(InvalidState):
            await meeting_service.generate_meeting(appointment_id=str(appointment.id), doctor=authorized_doctor)

    @pytest.mark.asyncio
    async def test_missing_appointment(self, authorized_doctor):
        with pytest.raises(NotFound):
            await meeting_service.generate_meeting(
                appointment_id="64b7f0c2a1b2c3d4e5f60718", doctor=authorized_doctor
            )

    @pytest.mark.asyncio
    async def test_unauthorized_doctor_needs_consent(self, make_appointment, doctor, google):
        appointment = await make_appointment(AppointmentStatus.CONFIRMED)

        with pytest.raises(AuthorizationRequired):
            await meeting_service.generate_meeting(appointment_id=str(appointment.id), doctor=doctor, now=NOW_0950)

        # claim released, so a retry after consent is possible
        stored = await Appointment.get(appointment.id)
        assert stored.meeting.generation_started_at is None

    @pytest.mark.asyncio
    async def test_provider_auth_failure(self, make_appointment, authorized_doctor, google):
        google.event_status = 401
        google.event_json = {"error": {"message": "Invalid Credentials"}}
        appointment = await make_appointment(AppointmentStatus.CONFIRMED)

        with pytest.raises(ReauthorizationRequired):
            await meeting_service.generate_meeting(
                appointment_id=str(appointment.id), doctor=authorized_doctor, now=NOW_0950
            )
        assert await Meeting.find(Meeting.appointment_id == appointment.id).count() == 0

    @pytest.mark.asyncio
    async def test_provider_failure_then_retry(self, make_appointment, authorized_doctor, google):
        google.event_status = 500
        google.event_json = {"error": {"message": "Backend Error"}}
        appointment = await make_appointment(AppointmentStatus.CONFIRMED)

        with pytest.raises(ExternalServiceError):
            await meeting_service.generate_meeting(
                appointment_id=str(appointment.id), doctor=authorized_doctor, now=NOW_0950
            )

        google.event_status = 200
        google.event_json = {
            "id": "evt_2",
            "hangoutLink": "https://meet.google.com/zzz-yyyy-xxx",
            "conferenceData": {"conferenceId": "zzz-yyyy-xxx"},
        }
        meeting, created = await meeting_service.generate_meeting(
            appointment_id=str(appointment.id), doctor=authorized_doctor, now=NOW_0950
        )
        assert created is True
        assert meeting.google_meet_link == "https://meet.google.com/zzz-yyyy-xxx"

    @pytest.mark.asyncio
    async def test_live_claim_blocks_parallel_generation(self, make_appointment, authorized_doctor, google):
        appointment = await make_appointment(AppointmentStatus.CONFIRMED)
        assert await meeting_service._claim_generation(appointment, NOW_0950)

        with pytest.raises(InvalidState):
            await meeting_service.generate_meeting(
                appointment_id=str(appointment.id), doctor=authorized_doctor, now=NOW_0950 + timedelta(seconds=5)
            )
        assert google.requests == []

    @pytest.mark.asyncio
    async def test_stale_claim_is_taken_over(self, make_appointment, authorized_doctor, google, settings):
        appointment = await make_appointment(AppointmentStatus.CONFIRMED)
        assert await meeting_service._claim_generation(appointment, NOW_0950)

        later = NOW_0950 + timedelta(seconds=settings.MEETING_GENERATION_LOCK_SECONDS + 1)
        _, created = await meeting_service.generate_meeting(
            appointment_id=str(appointment.id), doctor=authorized_doctor, now=later
        )

        assert created is True

    @pytest.mark.asyncio
    async def test_test_meeting_is_separate(self, make_appointment, authorized_doctor, google):
        appointment = await make_appointment(AppointmentStatus.CONFIRMED)
        real, _ = await meeting_service.generate_meeting(
            appointment_id=str(appointment.id), doctor=authorized_doctor, now=NOW_0950
        )

        test_meeting, created = await meeting_service.generate_meeting(
            appointment_id=str(appointment.id), doctor=authorized_doctor, test=True, now=NOW_0950
        )

        assert created is True
        assert test_meeting.id != real.id
        assert test_meeting.is_test is True
        assert test_meeting.status == MeetingStatus.TEST
        assert test_meeting.summary.startswith("[TEST]")
        assert google.calls_to(CALENDAR_HOST) == 2
        found = await meeting_service.find_meeting(appointment.id)
        assert found.id == real.id
        stored = await Appointment.get(appointment.id)
        assert stored.meeting.meeting_id == real.meeting_id

    @pytest.mark.asyncio
    async def test_notification_failure_does_not_fail_generation(self, make_appointment, authorized_doctor, google):
        appointment = await make_appointment(AppointmentStatus.CONFIRMED)

        with patch(
            "telecare.services.meeting_service.notify_user", new=AsyncMock(side_effect=RuntimeError("fcm down"))
        ) as notify:
            meeting, created = await meeting_service.generate_meeting(
                appointment_id=str(appointment.id), doctor=authorized_doctor, now=NOW_0950
            )

        notify.assert_awaited_once()
        assert created is True
        assert meeting.google_meet_link


class TestJoinLeave:

    async def _generated(self, make_appointment, doctor):
        appointment = await make_appointment(AppointmentStatus.CONFIRMED)
        await meeting_service.generate_meeting(appointment_id=str(appointment.id), doctor=doctor, now=NOW_0950)
        return appointment

    @pytest.mark.asyncio
    async def test_join_without_meeting(self, make_appointment, patient_actor):
        appointment = await make_appointment(AppointmentStatus.CONFIRMED)

        with pytest.raises(NotFound):
            await meeting_service.join_meeting(appointment_id=str(appointment.id), actor=patient_actor)

    @pytest.mark.asyncio
    async def test_first_join_activates(self, make_appointment, authorized_doctor, google, patient_actor):
        appointment = await self._generated(make_appointment, authorized_doctor)

        meeting = await meeting_service.join_meeting(
            appointment_id=str(appointment.id), actor=patient_actor, now=ist(9, 55)
        )

        assert meeting.status == MeetingStatus.ACTIVE
        assert meeting.start_time is not None
        participant = meeting.find_participant(patient_actor.id, ActorKind.PATIENT)
        assert participant.status == ParticipantStatus.JOINED
        assert participant.join_time is not None

    @pytest.mark.asyncio
    async def test_rejoin_updates_in_place(self, make_appointment, authorized_doctor, google, patient_actor, doctor_actor):
        appointment = await self._generated(make_appointment, authorized_doctor)
        appointment_id = str(appointment.id)

        await meeting_service.join_meeting(appointment_id=appointment_id, actor=patient_actor, now=ist(9, 55))
        await meeting_service.join_meeting(appointment_id=appointment_id, actor=doctor_actor, now=ist(9, 56))
        await meeting_service.leave_meeting(appointment_id=appointment_id, actor=patient_actor, now=ist(10, 0))
        meeting = await meeting_service.join_meeting(appointment_id=appointment_id, actor=patient_actor, now=ist(10, 1))

        assert len(meeting.participants) == 2
        participant = meeting.find_participant(patient_actor.id, ActorKind.PATIENT)
        assert participant.status == ParticipantStatus.JOINED
        assert participant.leave_time is None
        assert meeting.status == MeetingStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_stranger_cannot_join(self, make_appointment, authorized_doctor, google, other_doctor):
        appointment = await self._generated(make_appointment, authorized_doctor)
        stranger = Actor(id=other_doctor.id, kind=ActorKind.DOCTOR, user=None)

        with pytest.raises(Forbidden):
            await meeting_service.join_meeting(appointment_id=str(appointment.id), actor=stranger)

    @pytest.mark.asyncio
    async def test_meeting_stays_active_while_someone_remains(
        self, make_appointment, authorized_doctor, google, patient_actor, doctor_actor
    ):
        appointment = await self._generated(make_appointment, authorized_doctor)
        appointment_id = str(appointment.id)
        await meeting_service.join_meeting(appointment_id=appointment_id, actor=patient_actor, now=ist(9, 58))
        await meeting_service.join_meeting(appointment_id=appointment_id, actor=doctor_actor, now=ist(10, 0))

        meeting = await meeting_service.leave_meeting(appointment_id=appointment_id, actor=doctor_actor, now=ist(10, 20))

        assert meeting.status == MeetingStatus.ACTIVE
        # still the scheduled slot end; only the final leave stamps it
        assert to_utc(meeting.end_time) == ist(10, 30)

    @pytest.mark.asyncio
    async def test_ended_meeting_cannot_be_joined(self, make_appointment, authorized_doctor, google, patient_actor):
        appointment = await self._generated(make_appointment, authorized_doctor)
        appointment_id = str(appointment.id)
        await meeting_service.join_meeting(appointment_id=appointment_id, actor=patient_actor, now=ist(9, 58))
        await meeting_service.leave_meeting(appointment_id=appointment_id, actor=patient_actor, now=ist(10, 30))

        with pytest.raises(InvalidState):
            await meeting_service.join_meeting(appointment_id=appointment_id, actor=patient_actor, now=ist(10, 31))

    @pytest.mark.asyncio
    async def test_cancelled_appointment_closes_meeting(
        self, make_appointment, authorized_doctor, google, patient_user, patient_actor
    ):
        appointment = await self._generated(make_appointment, authorized_doctor)
        appointment_id = str(appointment.id)

        await appointment_service.cancel_appointment(
            appointment_id=appointment_id, patient=patient_user, now=ist(10, 0, APPOINTMENT_DAY - timedelta(days=2))
        )

        meeting = await Meeting.find_one(Meeting.appointment_id == appointment.id)
        assert meeting.status == MeetingStatus.CANCELLED
        with pytest.raises(InvalidState):
            await meeting_service.join_meeting(appointment_id=appointment_id, actor=patient_actor, now=ist(9, 55))

    @pytest.mark.asyncio
    async def test_join_requires_confirmed_appointment(
        self, make_appointment, authorized_doctor, google, doctor_actor
    ):
        generated = await self._generated(make_appointment, authorized_doctor)
        appointment = await Appointment.get(generated.id)
        appointment.status = AppointmentStatus.NO_SHOW.value
        await appointment.save()

        with pytest.raises(InvalidState):
            await meeting_service.join_meeting(appointment_id=str(appointment.id), actor=doctor_actor, now=ist(9, 55))

        meeting = await Meeting.find_one(Meeting.appointment_id == appointment.id)
        assert meeting.status == MeetingStatus.SCHEDULED


class TestConsultationScenario:

    @pytest.mark.asyncio
    async def test_request_to_completed_meeting(
        self, patient_user, authorized_doctor, google, patient_actor, doctor_actor
    ):
        # P requests tomorrow 10:00-10:30
        appointment = await appointment_service.request_appointment(
            patient=patient_user,
            doctor_id=str(authorized_doctor.id),
            appointment_date=APPOINTMENT_DAY,
            time_slot=TimeSlot(start="10:00", end="10:30"),
            type="Follow Up",
            now=ist(12, 0, APPOINTMENT_DAY - timedelta(days=1)),
        )
        appointment_id = str(appointment.id)
        assert appointment.status == AppointmentStatus.REQUESTED

        await appointment_service.accept_appointment(
            appointment_id=appointment_id, doctor=authorized_doctor, now=ist(13, 0, APPOINTMENT_DAY - timedelta(days=1))
        )

        first, created = await meeting_service.generate_meeting(
            appointment_id=appointment_id, doctor=authorized_doctor, now=ist(9, 50)
        )
        assert created is True
        again, created = await meeting_service.generate_meeting(
            appointment_id=appointment_id, doctor=authorized_doctor, now=ist(9, 52)
        )
        assert created is False
        assert again.google_meet_link == first.google_meet_link
        assert google.calls_to(CALENDAR_HOST) == 1

        check = await meeting_service.check_meeting(appointment_id=appointment_id, actor=patient_actor, now=ist(9, 54))
        assert check == {
            "isToday": True,
            "canJoin": True,
            "hasLink": True,
            "message": "Meeting is ready to join",
            "meetingLink": first.google_meet_link,
            "accessCode": first.access_code,
        }

        joined = await meeting_service.join_meeting(appointment_id=appointment_id, actor=patient_actor, now=ist(9, 55))
        assert joined.status == MeetingStatus.ACTIVE

        await meeting_service.leave_meeting(appointment_id=appointment_id, actor=doctor_actor, now=ist(10, 40))
        ended = await meeting_service.leave_meeting(appointment_id=appointment_id, actor=patient_actor, now=ist(10, 40))

        assert ended.status == MeetingStatus.COMPLETED
        assert ended.end_time is not None
        stored = await Appointment.get(appointment.id)
        assert stored.status == AppointmentStatus.COMPLETED
        assert stored.activity_log[-1].action == ActivityAction.COMPLETED
        assert stored.activity_log[-1].performed_by == patient_actor.id
