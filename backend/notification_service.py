# notification_service.py — Notification side effects of workflow operations
# Rows are added to the caller's session; the caller's transaction commits them,
# so a notification never outlives a rolled-back workflow step.

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models import (
    Notification, NotificationPreference, NotificationType, NotificationChannel,
    User, ADMIN_ROLES, new_uuid,
)

logger = logging.getLogger("agency-portal.notifications")

_CHANNEL_FIELDS = {
    NotificationChannel.IN_APP: "in_app_enabled",
    NotificationChannel.EMAIL: "email_enabled",
    NotificationChannel.PUSH: "push_enabled",
}


def default_enabled(notification_type: NotificationType, channel: NotificationChannel) -> bool:
    """Without a stored preference everything is on, except SISTEMA which is in-app only."""
    if notification_type == NotificationType.SISTEMA:
        return channel == NotificationChannel.IN_APP
    return True


async def get_preference(
    db: AsyncSession, user_id: str, notification_type: NotificationType,
) -> Optional[NotificationPreference]:
    result = await db.execute(
        select(NotificationPreference).where(
            NotificationPreference.user_id == user_id,
            NotificationPreference.type == notification_type,
        )
    )
    return result.scalar_one_or_none()


async def should_send(
    db: AsyncSession,
    user_id: str,
    notification_type: NotificationType,
    channel: NotificationChannel,
) -> bool:
    pref = await get_preference(db, user_id, notification_type)
    if pref is None:
        return default_enabled(notification_type, channel)
    return bool(getattr(pref, _CHANNEL_FIELDS[channel]))


async def notify(
    db: AsyncSession,
    user_id: str,
    notification_type: NotificationType,
    title: str,
    message: str,
    data: Optional[Dict[str, Any]] = None,
) -> Optional[Notification]:
    """Queue a notification for one user. Returns None when in-app delivery is off."""
    for channel in (NotificationChannel.EMAIL, NotificationChannel.PUSH):
        if await should_send(db, user_id, notification_type, channel):
            # Email and push delivery are handled outside this service
            logger.debug(f"{channel.value} delivery requested for {notification_type.value} [user={user_id[:8]}]")

    if not await should_send(db, user_id, notification_type, NotificationChannel.IN_APP):
        return None

    notification = Notification(
        id=new_uuid(),
        user_id=user_id,
        type=notification_type,
        title=title,
        message=message,
        data=data or {},
    )
    db.add(notification)
    return notification


async def notify_admins(
    db: AsyncSession,
    notification_type: NotificationType,
    title: str,
    message: str,
    data: Optional[Dict[str, Any]] = None,
    exclude_user_id: Optional[str] = None,
) -> List[Notification]:
    result = await db.execute(
        select(User.id).where(User.role.in_(ADMIN_ROLES), User.is_active.is_(True))
    )
    created = []
    for admin_id in result.scalars().all():
        if admin_id == exclude_user_id:
            continue
        notification = await notify(db, admin_id, notification_type, title, message, data)
        if notification is not None:
            created.append(notification)
    return created


def serialize_notification(n: Notification) -> dict:
    return {
        "id": n.id,
        "type": n.type.value if isinstance(n.type, NotificationType) else n.type,
        "title": n.title,
        "message": n.message,
        "data": n.data or {},
        "read_at": n.read_at.isoformat() if n.read_at else None,
        "is_read": n.read_at is not None,
        "created_at": n.created_at.isoformat() if n.created_at else None,
    }
