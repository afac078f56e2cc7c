from datetime import datetime, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo

from telecare.config import get_settings


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(dt: datetime) -> datetime:
    """Normalize a datetime to UTC, adding tzinfo if needed (Mongo returns naive UTC)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@lru_cache()
def _zone(name: str) -> ZoneInfo:
    return ZoneInfo(name)


def clinic_tz() -> ZoneInfo:
    return _zone(get_settings().CLINIC_TIMEZONE)
