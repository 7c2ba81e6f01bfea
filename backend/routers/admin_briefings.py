# routers/admin_briefings.py — Admin review of client briefings
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from auth import CurrentUser, require_admin
from database import get_db_session
from errors import envelope
from reporting import list_briefings, get_briefing_detail, project_to_dict, briefing_to_dict
from validation import BriefingFilters, BriefingRejectInput, BriefingStatusInput, validate
import workflows

router = APIRouter(prefix="/api/v1/admin/briefings", tags=["Admin: Briefings"])


@router.get("")
async def admin_list_briefings(
    status: Optional[str] = Query(None),
    service_type: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    date_from: Optional[str] = Query(None),
    date_to: Optional[str] = Query(None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
):
    filters = validate(BriefingFilters, {
        "status": status, "service_type": service_type, "search": search,
        "date_from": date_from, "date_to": date_to,
    })
    return envelope(await list_briefings(db, filters, limit, offset))


@router.get("/{briefing_id}")
async def admin_get_briefing(
    briefing_id: str,
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
):
    return envelope(await get_briefing_detail(db, briefing_id))


@router.post("/{briefing_id}/approve")
async def approve_briefing(
    briefing_id: str,
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
):
    """Approve and create the project with its four default milestones"""
    project = await workflows.approve_briefing(db, admin, briefing_id)
    return envelope(project_to_dict(project), "Briefing approved and project created")


@router.post("/{briefing_id}/reject")
async def reject_briefing(
    briefing_id: str,
    data: BriefingRejectInput,
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
):
    briefing = await workflows.reject_briefing(db, admin, briefing_id, data.reason)
    return envelope(briefing_to_dict(briefing), "Briefing rejected")


@router.patch("/{briefing_id}/status")
async def update_briefing_status(
    briefing_id: str,
    data: BriefingStatusInput,
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
):
    result = await workflows.update_briefing_status(db, admin, briefing_id, data.status)
    return envelope(result, "Briefing status updated")
