from fastapi import APIRouter

from telecare.deps import CurrentUser
from telecare.schemas import DeviceTokenIn
from telecare.services.notification_service import list_notifications, register_device_token

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.post("/register", status_code=204)
async def register_token(payload: DeviceTokenIn, current=CurrentUser):
    """تسجيل رمز جهاز FCM لإشعارات الدفع."""
    await register_device_token(user_id=current.id, token=payload.token, platform=payload.platform)
    return None


@router.get("/")
async def my_notifications(current=CurrentUser):
    notes = await list_notifications(user_id=current.id)
    return {
        "success": True,
        "notifications": [
            {
                "id": str(n.id),
                "title": n.title,
                "body": n.body,
                "appointmentId": str(n.appointment_id) if n.appointment_id else None,
                "sentAt": n.sent_at,
            }
            for n in notes
        ],
    }
