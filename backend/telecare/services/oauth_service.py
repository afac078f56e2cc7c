import secrets
from datetime import timedelta
from typing import Optional, Tuple

from beanie import PydanticObjectId as OID

from telecare.config import get_settings
from telecare.errors import InvalidState
from telecare.models import Doctor, OAuthState
from telecare.services import google_calendar, token_store
from telecare.utils.clock import to_utc, utcnow
from telecare.utils.logger import get_logger

logger = get_logger("oauth")


async def begin_authorization(*, doctor: Doctor, appointment_id: Optional[str] = None) -> str:
    """Create a pending authorization for the doctor and return the consent URL."""
    now = utcnow()
    pending = OAuthState(
        state=secrets.token_urlsafe(32),
        doctor_id=doctor.id,
        appointment_id=appointment_id or None,
        expires_at=now + timedelta(minutes=get_settings().OAUTH_STATE_TTL_MINUTES),
        created_at=now,
    )
    url = google_calendar.build_auth_url(pending.state)
    await pending.insert()
    logger.info(f"Google authorization started for doctor {doctor.id}")
    return url


async def consume_state(state: Optional[str]) -> Optional[OAuthState]:
    """Look up and delete the pending authorization; None if unknown or expired."""
    if not state:
        return None
    pending = await OAuthState.find_one(OAuthState.state == state)
    if not pending:
        return None
    await pending.delete()
    if to_utc(pending.expires_at) < utcnow():
        logger.warning(f"Expired OAuth state for doctor {pending.doctor_id}")
        return None
    return pending


async def complete_authorization(*, code: str, state: Optional[str]) -> Tuple[Optional[OID], Optional[str]]:
    """Handle the Google callback.

    Returns (doctor_id, appointment_id). doctor_id is None when the state could
    not be matched, which is only accepted in shared-fallback mode.
    Raises InvalidState for an unmatched state otherwise, and ServiceError if
    the code exchange fails.
    """
    pending = await consume_state(state)
    if pending is None and not token_store.shared_fallback_enabled():
        raise InvalidState("Unknown or expired authorization state")
    tokens = await google_calendar.exchange_code(code)
    doctor_id = pending.doctor_id if pending else None
    await token_store.store_tokens(doctor_id, tokens)
    return doctor_id, (pending.appointment_id if pending else None)
