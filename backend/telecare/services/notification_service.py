from typing import Optional

from beanie import PydanticObjectId as OID

from telecare.models import DeviceToken, Notification
from telecare.utils.firebase import send_firebase_message
from telecare.utils.logger import get_logger

logger = get_logger("notifications")


async def register_device_token(*, user_id: str | OID, token: str, platform: Optional[str]) -> DeviceToken:
    """Save or update an FCM device token for the user."""
    uid = user_id if isinstance(user_id, OID) else OID(user_id)
    existing = await DeviceToken.find_one(DeviceToken.token == token)
    if existing:
        existing.user_id = uid
        existing.platform = platform
        existing.active = True
        await existing.save()
        return existing
    dt = DeviceToken(user_id=uid, token=token, platform=platform)
    await dt.insert()
    return dt


async def notify_user(
    *, user_id: str | OID, title: str, body: str, appointment_id: OID | None = None
) -> Notification:
    """إرسال إشعار لكل أجهزة المستخدم عبر Firebase وحفظه في صندوق الإشعارات."""
    uid = user_id if isinstance(user_id, OID) else OID(user_id)
    # inbox first: a failed push must not lose the notification
    note = Notification(user_id=uid, title=title, body=body, appointment_id=appointment_id)
    await note.insert()
    logger.info(f"🔔 Notification stored for user {uid}: {title}")

    tokens_docs = await DeviceToken.find(DeviceToken.user_id == uid, DeviceToken.active == True).to_list()  # noqa: E712
    tokens = [dt.token for dt in tokens_docs]
    if tokens:
        await send_firebase_message(
            tokens, title, body, {"appointmentId": appointment_id} if appointment_id else None
        )
    return note


async def list_notifications(*, user_id: OID, limit: int = 50) -> list[Notification]:
    return await Notification.find(Notification.user_id == user_id).sort(-Notification.sent_at).limit(limit).to_list()
