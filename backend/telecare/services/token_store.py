"""
Google credential store.

Per-doctor tokens live on the Doctor document. A single process-wide
credential can additionally be kept as an explicit degraded mode
(GOOGLE_SHARED_TOKEN_FALLBACK) for deployments where one clinic calendar
serves every doctor.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from beanie import PydanticObjectId as OID

from telecare.config import get_settings
from telecare.errors import AuthorizationRequired, NotFound, ReauthorizationRequired, ServiceError
from telecare.models import Doctor, GoogleTokens
from telecare.services import google_calendar
from telecare.utils.clock import to_utc, utcnow
from telecare.utils.logger import get_logger

logger = get_logger("token_store")

SOURCE_DATABASE = "database"
SOURCE_CACHE = "cache"
SOURCE_NONE = "none"


@dataclass
class _SharedCredential:
    tokens: GoogleTokens
    updated_at: datetime


# process-wide, overwritten on write; not lock-protected
_shared: Optional[_SharedCredential] = None


def shared_fallback_enabled() -> bool:
    return get_settings().GOOGLE_SHARED_TOKEN_FALLBACK


def get_shared_tokens() -> Optional[GoogleTokens]:
    return _shared.tokens if _shared else None


def set_shared_tokens(tokens: Optional[GoogleTokens], *, now: Optional[datetime] = None) -> None:
    global _shared
    _shared = _SharedCredential(tokens=tokens, updated_at=now or utcnow()) if tokens else None


def is_expired(tokens: GoogleTokens, now: datetime) -> bool:
    if not tokens.access_token:
        return True
    if tokens.expiry_date is None:
        return False
    return to_utc(tokens.expiry_date) < now


async def _load_doctor(doctor_id: str | OID) -> Doctor:
    doctor = await Doctor.get(OID(doctor_id))
    if not doctor:
        raise NotFound("Doctor not found")
    return doctor


async def _persist_doctor_tokens(doctor: Doctor, tokens: Optional[GoogleTokens], now: datetime) -> None:
    doctor.google_tokens = tokens
    doctor.google_calendar_authorized = bool(tokens and tokens.access_token)
    doctor.google_tokens_updated_at = now
    await doctor.save()


async def store_tokens(doctor_id: str | OID | None, tokens: GoogleTokens, *, now: Optional[datetime] = None) -> None:
    """Save tokens from an OAuth callback.

    `doctor_id=None` means the callback could not be tied to a doctor; the
    tokens then only go to the shared credential (degraded mode).
    """
    now = now or utcnow()
    if doctor_id is not None:
        doctor = await _load_doctor(doctor_id)
        await _persist_doctor_tokens(doctor, tokens, now)
        logger.info(f"✅ Google tokens saved for doctor {doctor.id}")
    if shared_fallback_enabled():
        set_shared_tokens(tokens, now=now)
        logger.info("Google tokens mirrored to shared credential")
    elif doctor_id is None:
        logger.warning("Google tokens received without a doctor and shared fallback is disabled; dropped")


async def clear_tokens(doctor_id: str | OID, *, now: Optional[datetime] = None) -> None:
    doctor = await _load_doctor(doctor_id)
    await _persist_doctor_tokens(doctor, None, now or utcnow())
    logger.info(f"Google tokens cleared for doctor {doctor.id}")


async def get_valid_tokens(doctor_id: str | OID, *, now: Optional[datetime] = None) -> GoogleTokens:
    """Return usable credentials for the doctor, refreshing once if expired.

    Raises AuthorizationRequired when nothing is stored and
    ReauthorizationRequired when the stored grant cannot be refreshed
    (the stored record is cleared in that case).
    """
    now = now or utcnow()
    doctor = await _load_doctor(doctor_id)

    tokens: Optional[GoogleTokens] = None
    source = SOURCE_NONE
    if doctor.google_tokens and doctor.google_calendar_authorized:
        tokens = doctor.google_tokens
        source = SOURCE_DATABASE
    elif shared_fallback_enabled() and get_shared_tokens():
        tokens = get_shared_tokens()
        source = SOURCE_CACHE

    if tokens is None:
        logger.info(f"No Google tokens for doctor {doctor.id}, authorization required")
        raise AuthorizationRequired()

    if not is_expired(tokens, now):
        return tokens

    if not tokens.refresh_token:
        logger.warning(f"Google tokens expired with no refresh token ({source}), clearing")
        await _clear_source(doctor, source, now)
        raise ReauthorizationRequired()

    try:
        refreshed = await google_calendar.refresh_access_token(tokens)
    except ServiceError as e:
        logger.error(f"❌ Token refresh failed ({source}): {e.message}")
        await _clear_source(doctor, source, now)
        raise ReauthorizationRequired("Google authorization expired and refresh failed") from e

    if source == SOURCE_DATABASE:
        await _persist_doctor_tokens(doctor, refreshed, now)
    else:
        set_shared_tokens(refreshed, now=now)
    logger.info(f"Tokens refreshed successfully ({source})")
    return refreshed


async def _clear_source(doctor: Doctor, source: str, now: datetime) -> None:
    if source == SOURCE_DATABASE:
        await _persist_doctor_tokens(doctor, None, now)
    else:
        set_shared_tokens(None)


async def oauth_status(doctor_id: str | OID, *, now: Optional[datetime] = None) -> dict:
    """Summary of the doctor's Google authorization for the UI."""
    now = now or utcnow()
    doctor = await _load_doctor(doctor_id)

    tokens: Optional[GoogleTokens] = None
    source = SOURCE_NONE
    updated_at = None
    if doctor.google_tokens:
        tokens = doctor.google_tokens
        source = SOURCE_DATABASE
        updated_at = doctor.google_tokens_updated_at
    elif shared_fallback_enabled() and _shared:
        tokens = _shared.tokens
        source = SOURCE_CACHE
        updated_at = _shared.updated_at

    has_tokens = bool(tokens and tokens.access_token)
    has_refresh = bool(tokens and tokens.refresh_token)
    expired = bool(tokens and tokens.expiry_date and to_utc(tokens.expiry_date) < now)
    valid = has_tokens and not expired
    token_age = None
    if updated_at:
        token_age = int((now - to_utc(updated_at)).total_seconds() // 3600)

    return {
        "hasRefreshToken": has_refresh,
        "isAuthorized": (doctor.google_calendar_authorized or has_tokens) and valid,
        "hasValidTokens": valid,
        "isExpired": expired,
        "authSource": source,
        "tokenAge": token_age,
        "lastUpdated": updated_at,
    }
