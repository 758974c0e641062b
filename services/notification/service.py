"""
services/notification/service.py
Notification fan-out.

notify() writes the row inside the caller's transaction and queues it on
the session; commit_and_publish() commits and then pushes each queued row
to the owner's Redis channel. The table is the source of truth: a failed
publish is logged and the client picks the row up on its next poll.
"""

import logging
import uuid
from typing import Optional

from redis.exceptions import RedisError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.redis_client import RedisCache, get_redis
from config.settings import settings
from shared.models.models import Notification, NotificationType, Profile, ProfileStatus, UserRole

logger = logging.getLogger(__name__)

_PENDING_REALTIME = "pending_realtime_notifications"
_PENDING_EMAIL = "pending_email_notifications"

EMAIL_TYPES = {
    NotificationType.AD_REJECTED.value,
    NotificationType.VERIFICATION_APPROVED.value,
    NotificationType.VERIFICATION_REJECTED.value,
    NotificationType.ACCOUNT_SUSPENDED.value,
}


def channel_for(user_id) -> str:
    return f"notifications:user:{user_id}"


def serialize(notification: Notification) -> dict:
    return {
        "event": "notification",
        "id": str(notification.id),
        "type": notification.type,
        "message": notification.message,
        "link": notification.link,
        "is_read": notification.is_read,
        "created_at": notification.created_at.isoformat() if notification.created_at else None,
    }


async def notify(
    db: AsyncSession,
    user_id: uuid.UUID,
    notification_type,
    message: str,
    link: Optional[str] = None,
) -> Notification:
    """Create an unread notification for one user."""
    type_value = notification_type.value if isinstance(notification_type, NotificationType) else str(notification_type)
    notification = Notification(
        user_id=user_id,
        type=type_value,
        message=message,
        link=link,
        is_read=False,
    )
    db.add(notification)
    await db.flush()

    db.info.setdefault(_PENDING_REALTIME, []).append(notification)
    if settings.EMAIL_NOTIFICATIONS_ENABLED and type_value in EMAIL_TYPES:
        db.info.setdefault(_PENDING_EMAIL, []).append(notification.id)
    return notification


async def notify_admins(
    db: AsyncSession,
    notification_type,
    message: str,
    link: Optional[str] = None,
) -> list[Notification]:
    result = await db.execute(
        select(Profile.id).where(
            Profile.role == UserRole.ADMIN,
            Profile.status == ProfileStatus.ACTIVE,
        )
    )
    return [
        await notify(db, admin_id, notification_type, message, link)
        for admin_id in result.scalars().all()
    ]


async def commit_and_publish(db: AsyncSession) -> None:
    """Commit the session, then deliver queued notifications (best effort)."""
    await db.commit()
    pending = db.info.pop(_PENDING_REALTIME, [])
    email_ids = db.info.pop(_PENDING_EMAIL, [])
    if pending:
        await publish(pending)
    for notification_id in email_ids:
        _queue_email(notification_id)


def discard_pending(db: AsyncSession) -> None:
    db.info.pop(_PENDING_REALTIME, None)
    db.info.pop(_PENDING_EMAIL, None)


async def publish(notifications: list[Notification]) -> int:
    """Push notifications to their owners' channels. Returns how many were published."""
    try:
        cache = RedisCache(get_redis())
    except RuntimeError:
        logger.warning("Redis not initialized, skipping realtime publish")
        return 0

    published = 0
    for notification in notifications:
        try:
            await cache.publish_json(channel_for(notification.user_id), serialize(notification))
            published += 1
        except RedisError as e:
            logger.warning(f"Realtime publish failed for notification {notification.id}: {e}")
    return published


def _queue_email(notification_id: uuid.UUID) -> None:
    from tasks.notification_tasks import send_notification_email

    try:
        send_notification_email.delay(str(notification_id))
    except Exception as e:
        logger.warning(f"Could not queue email for notification {notification_id}: {e}")
