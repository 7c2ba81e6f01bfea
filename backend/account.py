# account.py — Self-service account operations: password change, LGPD data export, account erasure
# The export is the data subject's copy of everything the portal stores about them.
# Erasure goes through the same routine as the inactivity sweep, so contractual
# records are kept detached instead of deleted.

import os
import logging
from typing import Any, Dict

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth import AuthService, CurrentUser, PasswordChange, AccountDeletion
from comments import comment_to_dict
from database import atomic
from errors import NotFound, ValidationError
from models import (
    User, Briefing, Project, ProjectMilestone, ProjectComment, ProjectFile, Notification,
    NotificationPreference, AuditLog, AuditEventType, NotificationType, utcnow, new_uuid,
)
from notification_service import notify, serialize_notification
from reporting import client_to_dict, briefing_to_dict, project_to_dict
from retention import delete_user_data
from storage import file_to_dict

logger = logging.getLogger("agency-portal.account")

DPO_EMAIL = os.getenv("DPO_EMAIL", "dpo@agencia.dev")
SELF_DELETION_REASON = "Exclusão solicitada pelo titular"


async def _load_user(db: AsyncSession, user_id: str) -> User:
    user = (await db.execute(select(User).where(User.id == user_id))).scalar_one_or_none()
    if not user:
        raise NotFound("User not found")
    return user


def _check_password(user: User, password: str, field: str) -> None:
    if not AuthService.verify_password(password, user.password_hash):
        raise ValidationError("Incorrect password", fields={field: "Incorrect password"})


async def change_password(db: AsyncSession, current: CurrentUser, data: PasswordChange) -> None:
    user = await _load_user(db, current.id)
    _check_password(user, data.current_password, "current_password")

    async with atomic(db):
        user.password_hash = AuthService.hash_password(data.new_password)
        db.add(AuditLog(
            id=new_uuid(), event_type=AuditEventType.PASSWORD_CHANGED, user_id=user.id,
            resource_type="user", resource_id=user.id,
        ))
        await notify(
            db, user.id, NotificationType.SISTEMA,
            "Senha alterada",
            "Sua senha foi alterada com sucesso. Se não foi você, entre em contato imediatamente.",
            {"reason": "password_changed"},
        )

    logger.info(f"Password changed for user {user.id[:8]}")


async def export_user_data(db: AsyncSession, current: CurrentUser) -> Dict[str, Any]:
    user = await _load_user(db, current.id)

    briefings = (await db.execute(
        select(Briefing).where(Briefing.user_id == user.id).order_by(Briefing.created_at.asc())
    )).scalars().all()
    projects = (await db.execute(
        select(Project).where(Project.user_id == user.id).order_by(Project.created_at.asc())
    )).scalars().all()
    project_ids = [p.id for p in projects]

    milestones: Dict[str, list] = {pid: [] for pid in project_ids}
    comments: Dict[str, list] = {pid: [] for pid in project_ids}
    files: Dict[str, list] = {pid: [] for pid in project_ids}
    if project_ids:
        for m in (await db.execute(
            select(ProjectMilestone).where(ProjectMilestone.project_id.in_(project_ids))
            .order_by(ProjectMilestone.order.asc())
        )).scalars():
            milestones[m.project_id].append(m)
        for c in (await db.execute(
            select(ProjectComment).where(ProjectComment.project_id.in_(project_ids))
            .order_by(ProjectComment.created_at.asc())
        )).scalars():
            comments[c.project_id].append(comment_to_dict(c))
        for f in (await db.execute(
            select(ProjectFile).where(ProjectFile.project_id.in_(project_ids))
            .order_by(ProjectFile.created_at.asc())
        )).scalars():
            files[f.project_id].append(file_to_dict(f))

    notifications = (await db.execute(
        select(Notification).where(Notification.user_id == user.id).order_by(Notification.created_at.asc())
    )).scalars().all()
    preferences = (await db.execute(
        select(NotificationPreference).where(NotificationPreference.user_id == user.id)
    )).scalars().all()

    exported = []
    for project in projects:
        row = project_to_dict(project, milestones=milestones[project.id])
        row["comments"] = comments[project.id]
        row["files"] = files[project.id]
        exported.append(row)

    profile = client_to_dict(user)
    for key in ("briefing_count", "project_count", "active_projects"):
        profile.pop(key)
    profile["role"] = current.role

    async with atomic(db):
        db.add(AuditLog(
            id=new_uuid(), event_type=AuditEventType.USER_DATA_EXPORTED, user_id=user.id,
            resource_type="user", resource_id=user.id,
        ))

    return {
        "generated_at": utcnow().isoformat(),
        "user": profile,
        "briefings": [briefing_to_dict(b) for b in briefings],
        "projects": exported,
        "notifications": [serialize_notification(n) for n in notifications],
        "notification_preferences": [
            {
                "type": p.type.value if isinstance(p.type, NotificationType) else p.type,
                "email_enabled": p.email_enabled,
                "push_enabled": p.push_enabled,
                "in_app_enabled": p.in_app_enabled,
            }
            for p in preferences
        ],
        "dpo_contact": DPO_EMAIL,
    }


async def delete_account(db: AsyncSession, current: CurrentUser, data: AccountDeletion) -> bool:
    """Erase the caller's account. Returns True when contractual records were kept."""
    user = await _load_user(db, current.id)
    _check_password(user, data.password, "password")
    user_id, email = user.id, user.email

    preserved = await delete_user_data(db, user_id, email, SELF_DELETION_REASON)
    async with atomic(db):
        db.add(AuditLog(
            id=new_uuid(), event_type=AuditEventType.ACCOUNT_DELETED, user_id=None,
            resource_type="user", resource_id=user_id, details={"contractual_preserved": preserved},
        ))
    db.expunge_all()

    logger.info(f"Account deleted on request [user={user_id[:8]}]")
    return preserved
