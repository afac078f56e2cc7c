from urllib.parse import urlparse

from telecare.config import get_settings
from motor.motor_asyncio import AsyncIOMotorClient
from beanie import init_beanie

settings = get_settings()

_mongo_client: AsyncIOMotorClient | None = None


def document_models() -> list:
    from telecare.models import (
        User,
        Doctor,
        Appointment,
        Meeting,
        OAuthState,
        DeviceToken,
        Notification,
    )
    return [User, Doctor, Appointment, Meeting, OAuthState, DeviceToken, Notification]


async def init_db() -> None:
    """Initialize MongoDB (Beanie) and register document models."""
    global _mongo_client
    _mongo_client = AsyncIOMotorClient(settings.MONGODB_URI)
    # Extract database name from URI, default to 'telecare' if not specified
    db_name = urlparse(settings.MONGODB_URI).path.lstrip("/") or "telecare"
    await init_beanie(database=_mongo_client[db_name], document_models=document_models())


async def ping_db() -> bool:
    """Check MongoDB connectivity."""
    if not _mongo_client:
        return False
    try:
        await _mongo_client.admin.command("ping")
        return True
    except Exception:
        return False
