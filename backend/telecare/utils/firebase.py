import asyncio
from typing import List

import firebase_admin
from firebase_admin import credentials, messaging

from telecare.config import get_settings
from telecare.utils.logger import get_logger

logger = get_logger("firebase")

_firebase_ready = False


def init_firebase() -> bool:
    """Initialize the Admin SDK once; stays in no-op mode when no credentials are configured."""
    global _firebase_ready
    if _firebase_ready:
        return True
    path = get_settings().FIREBASE_CREDENTIALS_FILE
    if not path:
        logger.info("Firebase credentials not configured, push notifications disabled")
        return False
    try:
        if not firebase_admin._apps:
            firebase_admin.initialize_app(credentials.Certificate(path))
        _firebase_ready = True
        logger.info("✅ Firebase initialized")
    except (ValueError, OSError) as e:
        # bad credentials file: keep the API up, just without push
        logger.error(f"❌ Firebase initialization failed: {e}")
        _firebase_ready = False
    return _firebase_ready


async def send_firebase_message(tokens: List[str], title: str, body: str, data: dict | None = None) -> int:
    """Send a multicast FCM message; returns the success count (0 when disabled)."""
    if not tokens or not init_firebase():
        logger.debug(f"[FCM:SKIP] title={title} tokens={len(tokens)}")
        return 0
    message = messaging.MulticastMessage(
        notification=messaging.Notification(title=title, body=body),
        data={k: str(v) for k, v in (data or {}).items()},
        tokens=tokens,
    )
    response = await asyncio.to_thread(messaging.send_each_for_multicast, message)
    logger.info(f"[FCM] Sent: success={response.success_count} failure={response.failure_count}")
    return response.success_count
