# routers/notifications.py — In-app notifications and channel preferences
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select, func, update
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, CurrentUser
from database import get_db_session, atomic
from errors import NotFound, envelope
from models import (
    Notification, NotificationPreference, NotificationType, NotificationChannel, utcnow, new_uuid,
)
from notification_service import serialize_notification, default_enabled
from validation import PreferencesUpdateInput, validate_id

router = APIRouter(prefix="/api/v1/notifications", tags=["Notifications"])


async def _get_own_notification(db: AsyncSession, user: CurrentUser, notification_id: str) -> Notification:
    validate_id(notification_id, "notification_id")
    result = await db.execute(
        select(Notification).where(
            Notification.id == notification_id,
            Notification.user_id == user.id,
        )
    )
    notif = result.scalar_one_or_none()
    if not notif:
        raise NotFound("Notification not found")
    return notif


# ============================================================
# LIST
# ============================================================

@router.get("")
async def list_notifications(
    unread_only: bool = Query(default=False),
    type: Optional[NotificationType] = Query(None),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    conditions = [Notification.user_id == user.id]
    if unread_only:
        conditions.append(Notification.read_at.is_(None))
    if type:
        conditions.append(Notification.type == type)

    total = (await db.execute(
        select(func.count(Notification.id)).where(*conditions)
    )).scalar() or 0
    result = await db.execute(
        select(Notification)
        .where(*conditions)
        .order_by(Notification.created_at.desc())
        .offset(offset)
        .limit(limit)
    )
    items = [serialize_notification(n) for n in result.scalars().all()]
    return envelope({"notifications": items, "total": total, "has_more": offset + len(items) < total})


# ============================================================
# COUNT
# ============================================================

@router.get("/count")
async def notification_count(
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    unread = (await db.execute(
        select(func.count(Notification.id)).where(
            Notification.user_id == user.id,
            Notification.read_at.is_(None),
        )
    )).scalar() or 0
    return envelope({"unread": unread})


# ============================================================
# PREFERENCES
# ============================================================

@router.get("/preferences")
async def get_preferences(
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    """One entry per notification type; types without a stored row show the defaults."""
    result = await db.execute(
        select(NotificationPreference).where(NotificationPreference.user_id == user.id)
    )
    stored = {NotificationType(p.type): p for p in result.scalars().all()}

    prefs = []
    for ntype in NotificationType:
        pref = stored.get(ntype)
        if pref is not None:
            prefs.append({
                "type": ntype.value,
                "email_enabled": pref.email_enabled,
                "push_enabled": pref.push_enabled,
                "in_app_enabled": pref.in_app_enabled,
            })
        else:
            prefs.append({
                "type": ntype.value,
                "email_enabled": default_enabled(ntype, NotificationChannel.EMAIL),
                "push_enabled": default_enabled(ntype, NotificationChannel.PUSH),
                "in_app_enabled": default_enabled(ntype, NotificationChannel.IN_APP),
            })
    return envelope(prefs)


@router.put("/preferences")
async def update_preferences(
    data: PreferencesUpdateInput,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    result = await db.execute(
        select(NotificationPreference).where(NotificationPreference.user_id == user.id)
    )
    stored = {NotificationType(p.type): p for p in result.scalars().all()}

    async with atomic(db):
        for item in data.preferences:
            pref = stored.get(item.type)
            if pref is None:
                pref = NotificationPreference(id=new_uuid(), user_id=user.id, type=item.type)
                db.add(pref)
                stored[item.type] = pref
            pref.email_enabled = item.email_enabled
            pref.push_enabled = item.push_enabled
            pref.in_app_enabled = item.in_app_enabled

    return envelope(message="Preferences updated")


# ============================================================
# MARK READ
# ============================================================

@router.post("/read-all")
async def mark_all_read(
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    async with atomic(db):
        result = await db.execute(
            update(Notification)
            .where(Notification.user_id == user.id, Notification.read_at.is_(None))
            .values(read_at=utcnow())
            .execution_options(synchronize_session=False)
        )
    return envelope({"marked": result.rowcount or 0})


@router.patch("/{notification_id}/read")
async def mark_read(
    notification_id: str,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    notif = await _get_own_notification(db, user, notification_id)
    if notif.read_at is None:
        async with atomic(db):
            notif.read_at = utcnow()
    return envelope(serialize_notification(notif))


# ============================================================
# DELETE
# ============================================================

@router.delete("/{notification_id}")
async def delete_notification(
    notification_id: str,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    notif = await _get_own_notification(db, user, notification_id)
    async with atomic(db):
        await db.delete(notif)
    return envelope(message="Notification deleted")
