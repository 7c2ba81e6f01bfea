# retention.py — LGPD data retention sweep
# 1. warn clients inactive for 11-12 months
# 2. delete clients inactive for 12+ months, keeping contractual records detached
# 3. anonymize briefings older than two years that never became a project
# Each user is processed in its own transaction; a failure is recorded and the
# sweep moves on.

import time
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update, delete, and_, or_, exists
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from database import atomic
from models import (
    User, UserRole, Briefing, Project, ProjectMilestone, ProjectComment, ProjectFile,
    Notification, NotificationPreference, VerificationToken, DataDeletionLog,
    NotificationType, utcnow, new_uuid,
)
from notification_service import notify
from reporting import add_months
from storage import remove_stored_files

logger = logging.getLogger("agency-portal.retention")

WARNING_AFTER_MONTHS = 11
DELETE_AFTER_MONTHS = 12
ANONYMIZE_AFTER_MONTHS = 24
DELETION_REASON = "Inatividade por 12 meses"
ANONYMIZED_COMPANY = "[ANONIMIZADO]"
ANONYMIZED_OBJECTIVES = "[Dados removidos por política de retenção LGPD]"


def _last_activity_between(start: Optional[datetime], end: datetime):
    """Last login (or signup, for users who never logged in) in [start, end)."""
    login_cond = [User.last_login_at < end]
    created_cond = [User.created_at < end]
    if start is not None:
        login_cond.append(User.last_login_at >= start)
        created_cond.append(User.created_at >= start)
    return or_(
        and_(User.last_login_at.isnot(None), *login_cond),
        and_(User.last_login_at.is_(None), *created_cond),
    )


async def check_inactive_users(db: AsyncSession, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    eleven = add_months(now, -WARNING_AFTER_MONTHS)
    twelve = add_months(now, -DELETE_AFTER_MONTHS)

    candidates = (await db.execute(
        select(User.id).where(
            User.role == UserRole.CLIENT,
            User.do_not_delete.is_(False),
            User.email_verified.isnot(None),
            User.warning_sent_at.is_(None),
            _last_activity_between(twelve, eleven),
        )
    )).scalars().all()

    warnings_sent = 0
    errors: List[str] = []
    for user_id in candidates:
        try:
            async with atomic(db):
                await notify(
                    db, user_id, NotificationType.SISTEMA,
                    "Sua conta será removida por inatividade",
                    "Sua conta está inativa há quase 12 meses. Faça login nos próximos 30 dias "
                    "para manter seus dados.",
                    {"reason": "inactivity_warning"},
                )
                await db.execute(update(User).where(User.id == user_id).values(warning_sent_at=now))
            warnings_sent += 1
        except SQLAlchemyError as e:
            logger.error(f"Inactivity warning failed [user={user_id[:8]}]: {e}")
            errors.append(f"Warning failed for user {user_id}")

    logger.info(f"Inactivity warnings sent: {warnings_sent}")
    return {"warnings_sent": warnings_sent, "errors": errors}


async def delete_user_data(db: AsyncSession, user_id: str, email: str, reason: str) -> bool:
    """Delete one user's data. Returns True when contractual records were preserved."""
    projects = (await db.execute(
        select(Project.id, Project.is_contractual).where(Project.user_id == user_id)
    )).all()
    briefings = (await db.execute(
        select(Briefing.id, Briefing.is_contractual).where(Briefing.user_id == user_id)
    )).all()
    doomed_projects = [pid for pid, contractual in projects if not contractual]
    kept_projects = [pid for pid, contractual in projects if contractual]
    doomed_briefings = [bid for bid, contractual in briefings if not contractual]
    kept_briefings = [bid for bid, contractual in briefings if contractual]

    file_owner = ProjectFile.user_id == user_id
    if doomed_projects:
        file_owner = or_(file_owner, ProjectFile.project_id.in_(doomed_projects))
    file_paths = (await db.execute(select(ProjectFile.storage_path).where(file_owner))).scalars().all()

    async with atomic(db):
        db.add(DataDeletionLog(
            id=new_uuid(),
            user_id=user_id,
            user_email=email,
            reason=reason,
            deleted_briefings=len(doomed_briefings),
            deleted_projects=len(doomed_projects),
            preserved_briefings=len(kept_briefings),
            preserved_projects=len(kept_projects),
        ))

        if doomed_projects:
            await db.execute(delete(ProjectComment).where(ProjectComment.project_id.in_(doomed_projects)))
            await db.execute(delete(ProjectFile).where(ProjectFile.project_id.in_(doomed_projects)))
            await db.execute(delete(ProjectMilestone).where(ProjectMilestone.project_id.in_(doomed_projects)))
            await db.execute(delete(Project).where(Project.id.in_(doomed_projects)))
        if doomed_briefings:
            # A kept project may still point at a briefing that goes away
            await db.execute(
                update(Project).where(Project.briefing_id.in_(doomed_briefings)).values(briefing_id=None)
            )
            await db.execute(delete(Briefing).where(Briefing.id.in_(doomed_briefings)))
        if kept_projects:
            await db.execute(update(Project).where(Project.id.in_(kept_projects)).values(user_id=None))
        if kept_briefings:
            await db.execute(update(Briefing).where(Briefing.id.in_(kept_briefings)).values(user_id=None))

        await db.execute(delete(ProjectComment).where(ProjectComment.user_id == user_id))
        await db.execute(delete(ProjectFile).where(ProjectFile.user_id == user_id))
        await db.execute(delete(Notification).where(Notification.user_id == user_id))
        await db.execute(delete(NotificationPreference).where(NotificationPreference.user_id == user_id))
        await db.execute(delete(VerificationToken).where(VerificationToken.identifier == email))
        await db.execute(delete(User).where(User.id == user_id))

    await remove_stored_files(file_paths)
    return bool(kept_projects or kept_briefings)


async def delete_inactive_data(db: AsyncSession, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    twelve = add_months(now, -DELETE_AFTER_MONTHS)

    candidates = (await db.execute(
        select(User.id, User.email).where(
            User.role == UserRole.CLIENT,
            User.do_not_delete.is_(False),
            _last_activity_between(None, twelve),
        )
    )).all()

    users_deleted = 0
    contractual_preserved = 0
    errors: List[str] = []
    for user_id, email in candidates:
        try:
            if await delete_user_data(db, user_id, email, DELETION_REASON):
                contractual_preserved += 1
            users_deleted += 1
        except SQLAlchemyError as e:
            logger.error(f"User data deletion failed [user={user_id[:8]}]: {e}")
            errors.append(f"Deletion failed for user {user_id}")

    # Deleted users must not linger in the identity map
    db.expunge_all()
    logger.info(f"Inactive users deleted: {users_deleted} ({contractual_preserved} with contractual data kept)")
    return {"users_deleted": users_deleted, "contractual_preserved": contractual_preserved, "errors": errors}


async def anonymize_briefings(db: AsyncSession, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    cutoff = add_months(now, -ANONYMIZE_AFTER_MONTHS)

    has_project = exists().where(Project.briefing_id == Briefing.id)
    try:
        async with atomic(db):
            result = await db.execute(
                update(Briefing)
                .where(
                    Briefing.created_at < cutoff,
                    Briefing.company_name != ANONYMIZED_COMPANY,
                    ~has_project,
                )
                .values(
                    company_name=ANONYMIZED_COMPANY,
                    objectives=ANONYMIZED_OBJECTIVES,
                    segment=None,
                    budget=None,
                    deadline=None,
                    features=None,
                    references=None,
                    integrations=None,
                    additional_info=None,
                    rejection_reason=None,
                    user_id=None,
                )
                .execution_options(synchronize_session=False)
            )
    except SQLAlchemyError as e:
        logger.error(f"Briefing anonymization failed: {e}")
        return {"briefings_anonymized": 0, "errors": ["Briefing anonymization failed"]}

    count = result.rowcount or 0
    logger.info(f"Briefings anonymized: {count}")
    return {"briefings_anonymized": count, "errors": []}


async def run_retention_sweep(db: AsyncSession, now: Optional[datetime] = None) -> Dict[str, Any]:
    started = time.perf_counter()
    now = now or utcnow()

    warnings = await check_inactive_users(db, now)
    deletions = await delete_inactive_data(db, now)
    anonymized = await anonymize_briefings(db, now)

    duration_ms = int((time.perf_counter() - started) * 1000)
    return {
        "success": True,
        "summary": {
            "warnings_sent": warnings["warnings_sent"],
            "users_deleted": deletions["users_deleted"],
            "contractual_preserved": deletions["contractual_preserved"],
            "briefings_anonymized": anonymized["briefings_anonymized"],
        },
        "errors": warnings["errors"] + deletions["errors"] + anonymized["errors"],
        "duration": f"{duration_ms}ms",
        "timestamp": now.isoformat(),
    }
