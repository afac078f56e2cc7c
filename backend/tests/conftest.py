"""
Test configuration and shared fixtures for the telecare test suite.

Every test gets a fresh in-memory MongoDB (mongomock-motor) behind Beanie, so
services run against real documents without a server.
"""

import os

# settings are cached on first import; configure before anything imports telecare
os.environ.setdefault("GOOGLE_CLIENT_ID", "test-client-id")
os.environ.setdefault("GOOGLE_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("CLINIC_TIMEZONE", "Asia/Kolkata")
os.environ.setdefault("APP_DEBUG", "false")

from datetime import date, datetime, time, timedelta, timezone
from typing import Callable

import httpx
import pytest
import pytest_asyncio
from beanie import init_beanie
from mongomock_motor import AsyncMongoMockClient

from telecare.config import get_settings
from telecare.constants import ActorKind, AppointmentStatus, ConsultationType, Role
from telecare.database import document_models
from telecare.models import Appointment, Doctor, GoogleTokens, TimeSlot, User
from telecare.services import google_calendar, token_store
from telecare.services.actors import Actor

# 2030-03-10 09:50 in Asia/Kolkata (UTC+05:30)
APPOINTMENT_DAY = date(2030, 3, 10)
NOW_0950 = datetime(2030, 3, 10, 4, 20, tzinfo=timezone.utc)


def ist(hour: int, minute: int, day: date = APPOINTMENT_DAY) -> datetime:
    """UTC instant of a clinic wall-clock time."""
    local = datetime.combine(day, time(hour, minute))
    return (local - timedelta(hours=5, minutes=30)).replace(tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def db():
    client = AsyncMongoMockClient()
    await init_beanie(database=client["telecare_test"], document_models=document_models())
    yield client["telecare_test"]


@pytest.fixture(autouse=True)
def reset_shared_credential():
    token_store.set_shared_tokens(None)
    yield
    token_store.set_shared_tokens(None)


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def shared_fallback(monkeypatch, settings):
    monkeypatch.setattr(settings, "GOOGLE_SHARED_TOKEN_FALLBACK", True)
    return settings


@pytest_asyncio.fixture
async def patient_user(db) -> User:
    user = User(first_name="Sara", last_name="Ali", email="sara.parent@example.com", role=Role.PATIENT)
    await user.insert()
    return user


@pytest_asyncio.fixture
async def doctor_user(db) -> User:
    user = User(first_name="Omar", last_name="Hassan", email="dr.omar@example.com", role=Role.DOCTOR)
    await user.insert()
    return user


@pytest_asyncio.fixture
async def doctor(doctor_user) -> Doctor:
    doc = Doctor(
        user_id=doctor_user.id,
        first_name="Omar",
        last_name="Hassan",
        email=doctor_user.email,
        specialization="Pediatrics",
    )
    await doc.insert()
    return doc


@pytest_asyncio.fixture
async def other_doctor(db) -> Doctor:
    user = User(first_name="Lina", last_name="Kareem", email="dr.lina@example.com", role=Role.DOCTOR)
    await user.insert()
    doc = Doctor(user_id=user.id, first_name="Lina", last_name="Kareem", email=user.email)
    await doc.insert()
    return doc


def valid_tokens(**overrides) -> GoogleTokens:
    data = {
        "access_token": "ya29.valid",
        "refresh_token": "1//refresh",
        "expiry_date": datetime(2031, 1, 1, tzinfo=timezone.utc),
    }
    data.update(overrides)
    return GoogleTokens(**data)


@pytest_asyncio.fixture
async def authorized_doctor(doctor) -> Doctor:
    doctor.google_tokens = valid_tokens()
    doctor.google_calendar_authorized = True
    doctor.google_tokens_updated_at = NOW_0950 - timedelta(hours=2)
    await doctor.save()
    return doctor


@pytest.fixture
def make_appointment(patient_user, doctor) -> Callable:
    async def _make(
        status: AppointmentStatus = AppointmentStatus.CONFIRMED,
        day: date = APPOINTMENT_DAY,
        start: str = "10:00",
        end: str = "10:30",
        doctor_id=None,
    ) -> Appointment:
        appointment = Appointment(
            patient_id=patient_user.id,
            doctor_id=doctor_id or doctor.id,
            appointment_date=datetime.combine(day, time.min),
            time_slot=TimeSlot(start=start, end=end),
            type=ConsultationType.INITIAL_CONSULTATION,
            status=status.value,
        )
        await appointment.insert()
        return appointment

    return _make


@pytest.fixture
def doctor_actor(doctor, doctor_user) -> Actor:
    return Actor(id=doctor.id, kind=ActorKind.DOCTOR, user=doctor_user)


@pytest.fixture
def patient_actor(patient_user) -> Actor:
    return Actor(id=patient_user.id, kind=ActorKind.PATIENT, user=patient_user)


class GoogleStub:
    """Records requests to Google and answers with canned responses."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.event_status = 200
        self.event_json = {
            "id": "evt_123",
            "hangoutLink": "https://meet.google.com/abc-defg-hij",
            "conferenceData": {"conferenceId": "abc-defg-hij"},
        }
        self.token_status = 200
        self.token_json = {"access_token": "ya29.fresh", "expires_in": 3599, "token_type": "Bearer"}

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == "oauth2.googleapis.com":
            return httpx.Response(self.token_status, json=self.token_json)
        return httpx.Response(self.event_status, json=self.event_json)

    def calls_to(self, host: str) -> int:
        return sum(1 for r in self.requests if r.url.host == host)


@pytest.fixture
def google(monkeypatch) -> GoogleStub:
    stub = GoogleStub()
    monkeypatch.setattr(
        google_calendar,
        "_client",
        lambda: httpx.AsyncClient(transport=httpx.MockTransport(stub.handler)),
    )
    return stub
