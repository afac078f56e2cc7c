"""
Google Calendar / Meet adapter.

Talks to Google's OAuth token endpoint and the Calendar v3 API over httpx and
normalizes the answers into our own types. One attempt per call: retries are
left to whoever calls us.
"""
import re
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode, urlparse

import httpx

from telecare.config import get_settings
from telecare.errors import ExternalServiceError, ReauthorizationRequired
from telecare.models import GoogleTokens
from telecare.utils.clock import utcnow
from telecare.utils.logger import get_logger

logger = get_logger("google_calendar")

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"  # noqa: S105 - OAuth endpoint URL
GOOGLE_CALENDAR_API = "https://www.googleapis.com/calendar/v3"
GOOGLE_CALENDAR_SCOPES = [
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/calendar.events",
]


@dataclass
class CalendarEventRequest:
    summary: str
    description: str
    start: datetime  # timezone-aware
    end: datetime
    timezone: str
    attendees: List[str] = field(default_factory=list)


@dataclass
class CreatedConference:
    event_id: str
    link: str
    conference_id: Optional[str]
    meeting_id: str
    access_code: str


def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=get_settings().GOOGLE_API_TIMEOUT_SECONDS)


def is_configured() -> bool:
    settings = get_settings()
    return bool(settings.GOOGLE_CLIENT_ID and settings.GOOGLE_CLIENT_SECRET)


def _require_configured() -> None:
    if not is_configured():
        raise ExternalServiceError("Google OAuth not configured. Check GOOGLE_CLIENT_ID/GOOGLE_CLIENT_SECRET")


def build_auth_url(state: str) -> str:
    """Consent screen URL; offline access + forced consent so Google returns a refresh token."""
    _require_configured()
    settings = get_settings()
    params = {
        "client_id": settings.GOOGLE_CLIENT_ID,
        "redirect_uri": settings.GOOGLE_REDIRECT_URI,
        "response_type": "code",
        "scope": " ".join(GOOGLE_CALENDAR_SCOPES),
        "access_type": "offline",
        "prompt": "consent",
        "state": state,
    }
    return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"


def _provider_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    error = payload.get("error")
    if isinstance(error, dict):
        return error.get("message") or str(error)
    if error:
        # token endpoint: {"error": "invalid_grant", "error_description": "..."}
        return payload.get("error_description") or str(error)
    return response.text


def _tokens_from_payload(payload: Dict[str, Any], now: datetime) -> GoogleTokens:
    expires_in = payload.get("expires_in")
    expiry = now + timedelta(seconds=int(expires_in)) if expires_in is not None else None
    return GoogleTokens(
        access_token=payload.get("access_token"),
        refresh_token=payload.get("refresh_token"),
        expiry_date=expiry,
        token_type=payload.get("token_type") or "Bearer",
        scope=payload.get("scope"),
    )


async def _post_token_endpoint(data: Dict[str, str], *, action: str) -> Dict[str, Any]:
    _require_configured()
    settings = get_settings()
    form = {
        "client_id": settings.GOOGLE_CLIENT_ID,
        "client_secret": settings.GOOGLE_CLIENT_SECRET,
        **data,
    }
    try:
        async with _client() as client:
            response = await client.post(GOOGLE_TOKEN_URL, data=form)
    except httpx.TimeoutException as e:
        logger.error(f"❌ Google token {action} timed out: {e}")
        raise ExternalServiceError(f"Google token {action} timed out") from e
    except httpx.HTTPError as e:
        logger.error(f"❌ Google token {action} failed: {e}")
        raise ExternalServiceError(f"Google token {action} failed", provider_message=str(e)) from e

    if response.status_code in (400, 401):
        # invalid_grant / invalid_client: the grant itself is no longer usable
        message = _provider_message(response)
        logger.warning(f"Google token {action} rejected: {message}")
        raise ReauthorizationRequired(meta={"detail": message})
    if response.status_code != 200:
        message = _provider_message(response)
        logger.error(f"❌ Google token {action} failed ({response.status_code}): {message}")
        raise ExternalServiceError(f"Google token {action} failed", provider_message=message)
    return response.json()


async def exchange_code(code: str) -> GoogleTokens:
    """Swap an authorization code for access/refresh tokens."""
    payload = await _post_token_endpoint(
        {
            "code": code,
            "redirect_uri": get_settings().GOOGLE_REDIRECT_URI,
            "grant_type": "authorization_code",
        },
        action="exchange",
    )
    tokens = _tokens_from_payload(payload, utcnow())
    if not tokens.access_token:
        raise ExternalServiceError("No access token in Google token response")
    logger.info(
        f"✅ Google tokens received (refresh_token={'yes' if tokens.refresh_token else 'no'}, "
        f"expiry={tokens.expiry_date})"
    )
    return tokens


async def refresh_access_token(tokens: GoogleTokens) -> GoogleTokens:
    """Refresh an expired access token. Returns the old record merged with the new values."""
    if not tokens.refresh_token:
        raise ReauthorizationRequired()
    payload = await _post_token_endpoint(
        {"refresh_token": tokens.refresh_token, "grant_type": "refresh_token"},
        action="refresh",
    )
    fresh = _tokens_from_payload(payload, utcnow())
    if not fresh.access_token:
        raise ExternalServiceError("No access token in refresh response")
    merged = tokens.model_copy(update=fresh.model_dump(exclude_none=True))
    logger.info("🔄 Google access token refreshed")
    return merged


def derive_meeting_codes(link: Optional[str], conference_id: Optional[str] = None, *, now: Optional[datetime] = None):
    """Internal meeting id + short access code for a Meet link.

    Prefers the provider's conference id, then the last path segment of the
    link, then a timestamp id.
    """
    meeting_id = conference_id
    if not meeting_id and link:
        path = urlparse(link).path.strip("/")
        meeting_id = path.rsplit("/", 1)[-1] or None
    if not meeting_id:
        stamp = int((now or utcnow()).timestamp() * 1000)
        meeting_id = f"meet-{stamp}"
    access_code = re.sub(r"[^a-zA-Z0-9]", "", meeting_id)[:8].upper()
    return meeting_id, access_code


def _extract_link(event: Dict[str, Any]) -> Optional[str]:
    if event.get("hangoutLink"):
        return event["hangoutLink"]
    for entry in (event.get("conferenceData") or {}).get("entryPoints", []):
        if entry.get("entryPointType") == "video" and entry.get("uri"):
            return entry["uri"]
    return None


def build_event_body(request: CalendarEventRequest) -> Dict[str, Any]:
    request_id = f"meet-{int(utcnow().timestamp() * 1000)}-{secrets.token_hex(4)}"
    return {
        "summary": request.summary,
        "description": request.description,
        "start": {"dateTime": request.start.isoformat(), "timeZone": request.timezone},
        "end": {"dateTime": request.end.isoformat(), "timeZone": request.timezone},
        "attendees": [{"email": email} for email in request.attendees if email],
        "conferenceData": {
            "createRequest": {
                "requestId": request_id,
                "conferenceSolutionKey": {"type": "hangoutsMeet"},
            }
        },
    }


async def create_meet_event(tokens: GoogleTokens, request: CalendarEventRequest) -> CreatedConference:
    """Create a calendar event with an attached Google Meet conference."""
    body = build_event_body(request)
    try:
        async with _client() as client:
            response = await client.post(
                f"{GOOGLE_CALENDAR_API}/calendars/primary/events",
                params={"conferenceDataVersion": 1, "sendUpdates": "all"},
                headers={"Authorization": f"Bearer {tokens.access_token}"},
                json=body,
            )
    except httpx.TimeoutException as e:
        logger.error(f"❌ Google Calendar request timed out: {e}")
        raise ExternalServiceError("Failed to create Google Meet", provider_message="Google Calendar request timed out") from e
    except httpx.HTTPError as e:
        logger.error(f"❌ Google Calendar request failed: {e}")
        raise ExternalServiceError("Failed to create Google Meet", provider_message=str(e)) from e

    if response.status_code == 401:
        logger.warning("Google Calendar rejected the access token (401)")
        raise ReauthorizationRequired("Google authorization expired. Please re-authorize.")
    if response.status_code not in (200, 201):
        message = _provider_message(response)
        logger.error(f"❌ Failed to create calendar event ({response.status_code}): {message}")
        raise ExternalServiceError("Failed to create Google Meet", provider_message=message)

    event = response.json()
    link = _extract_link(event)
    if not link:
        logger.error(f"❌ Calendar event {event.get('id')} created without a Meet link")
        raise ExternalServiceError("Failed to create Google Meet", provider_message="No conference link in response")
    conference_id = (event.get("conferenceData") or {}).get("conferenceId")
    meeting_id, access_code = derive_meeting_codes(link, conference_id)
    logger.info(f"✅ Google Meet created: event={event.get('id')} meeting={meeting_id}")
    return CreatedConference(
        event_id=event.get("id"),
        link=link,
        conference_id=conference_id,
        meeting_id=meeting_id,
        access_code=access_code,
    )
