# routers/admin_retention.py — Manual LGPD retention sweep and its deletion log
import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth import CurrentUser, require_role
from database import get_db_session, atomic
from errors import envelope
from models import AuditLog, AuditEventType, DataDeletionLog, UserRole, new_uuid
from retention import run_retention_sweep

logger = logging.getLogger("agency-portal.retention")

router = APIRouter(prefix="/api/v1/admin/data-retention", tags=["Admin: Data Retention"])

require_super_admin = require_role(UserRole.SUPER_ADMIN)


@router.post("/run")
async def run_retention_now(
    admin: CurrentUser = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db_session),
):
    """Same sweep the scheduler triggers, started by hand"""
    logger.info(f"Manual data retention sweep started by {admin.id[:8]}")
    result = await run_retention_sweep(db)
    async with atomic(db):
        db.add(AuditLog(
            id=new_uuid(), event_type=AuditEventType.RETENTION_RUN, user_id=admin.id,
            resource_type="data_retention", details=result["summary"],
        ))
    return envelope(result)


@router.get("/logs")
async def list_deletion_logs(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    admin: CurrentUser = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db_session),
):
    rows = (await db.execute(
        select(DataDeletionLog).order_by(DataDeletionLog.deleted_at.desc()).offset(offset).limit(limit)
    )).scalars().all()
    return envelope([
        {
            "id": log.id,
            "user_id": log.user_id,
            "user_email": log.user_email,
            "reason": log.reason,
            "deleted_briefings": log.deleted_briefings,
            "deleted_projects": log.deleted_projects,
            "preserved_briefings": log.preserved_briefings,
            "preserved_projects": log.preserved_projects,
            "deleted_at": log.deleted_at.isoformat() if log.deleted_at else None,
        }
        for log in rows
    ])
