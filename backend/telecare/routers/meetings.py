from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Query, Request
from fastapi.responses import RedirectResponse

from telecare.config import get_settings
from telecare.deps import CurrentActor, CurrentDoctor
from telecare.errors import InvalidState, ServiceError
from telecare.models import Doctor
from telecare.rate_limit import MEETING_GENERATE_LIMIT, OAUTH_START_LIMIT, limiter
from telecare.schemas import AppointmentOut, MeetingOut, OAuthStatusOut
from telecare.services import meeting_service, oauth_service, token_store
from telecare.services.actors import Actor
from telecare.utils.logger import get_logger

logger = get_logger("meetings_router")

router = APIRouter(prefix="/meetings", tags=["meetings"])


def _frontend_redirect(**params) -> RedirectResponse:
    query = urlencode({k: v for k, v in params.items() if v})
    return RedirectResponse(url=f"{get_settings().FRONTEND_URL.rstrip('/')}/doctor/appointments?{query}")


# ---------------------- Google OAuth ----------------------


@router.get("/google/auth")
@limiter.limit(OAUTH_START_LIMIT)
async def google_auth(request: Request, appointmentId: Optional[str] = Query(None), doctor: Doctor = CurrentDoctor):
    """بدء ربط تقويم Google للطبيب؛ يرجع رابط صفحة الموافقة."""
    auth_url = await oauth_service.begin_authorization(doctor=doctor, appointment_id=appointmentId)
    return {"success": True, "authUrl": auth_url}


@router.get("/google/callback", include_in_schema=False)
async def google_callback(
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
):
    if error or not code:
        logger.warning(f"Google authorization denied or missing code: {error}")
        return _frontend_redirect(error="auth_failed")
    try:
        _doctor_id, appointment_id = await oauth_service.complete_authorization(code=code, state=state)
    except InvalidState:
        return _frontend_redirect(error="invalid_state")
    except ServiceError as e:
        logger.error(f"❌ Google token exchange failed: {e.message}")
        return _frontend_redirect(error="token_exchange_failed")
    return _frontend_redirect(auth="success", appointmentId=appointment_id)


@router.get("/oauth-status", response_model=OAuthStatusOut)
async def oauth_status(doctor: Doctor = CurrentDoctor):
    status = await token_store.oauth_status(doctor.id)
    return OAuthStatusOut(**status)


# ---------------------- Meetings ----------------------


@router.get("/check/{appointment_id}")
async def check(appointment_id: str, actor: Actor = CurrentActor):
    result = await meeting_service.check_meeting(appointment_id=appointment_id, actor=actor)
    return {"success": True, **result}


@router.post("/generate/{appointment_id}")
@limiter.limit(MEETING_GENERATE_LIMIT)
async def generate(
    request: Request,
    appointment_id: str,
    test: bool = Query(False),
    doctor: Doctor = CurrentDoctor,
):
    """إنشاء رابط Google Meet للموعد المؤكد (أو إرجاع الرابط الموجود)."""
    meeting, created = await meeting_service.generate_meeting(
        appointment_id=appointment_id, doctor=doctor, test=test
    )
    return {
        "success": True,
        "message": "Meeting link generated successfully" if created else "Meeting link already exists",
        "meeting": MeetingOut.from_document(meeting),
        "meetingLink": meeting.google_meet_link,
        "accessCode": meeting.access_code,
        "meetingId": meeting.meeting_id,
    }


@router.post("/join/{appointment_id}")
async def join(appointment_id: str, actor: Actor = CurrentActor):
    meeting = await meeting_service.join_meeting(appointment_id=appointment_id, actor=actor)
    return {
        "success": True,
        "meetingLink": meeting.google_meet_link,
        "accessCode": meeting.access_code,
        "meeting": MeetingOut.from_document(meeting),
    }


@router.post("/leave/{appointment_id}")
async def leave(appointment_id: str, actor: Actor = CurrentActor):
    meeting = await meeting_service.leave_meeting(appointment_id=appointment_id, actor=actor)
    return {"success": True, "message": "Left meeting", "meeting": MeetingOut.from_document(meeting)}


@router.get("/")
async def list_meetings(doctor: Doctor = CurrentDoctor):
    meetings = await meeting_service.list_doctor_meetings(doctor=doctor)
    return {"success": True, "meetings": [MeetingOut.from_document(m) for m in meetings]}


# must stay last: catches any single path segment
@router.get("/{appointment_id}")
async def details(appointment_id: str, actor: Actor = CurrentActor):
    meeting, appointment = await meeting_service.get_meeting_details(appointment_id=appointment_id, actor=actor)
    return {
        "success": True,
        "meeting": MeetingOut.from_document(meeting),
        "appointment": AppointmentOut.from_document(appointment),
    }
