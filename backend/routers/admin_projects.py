# routers/admin_projects.py — Admin project management and dashboard metrics
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from auth import CurrentUser, require_admin
from database import get_db_session
from errors import envelope
from comments import comment_to_dict
from reporting import list_projects, get_project_detail, get_project_stats, get_metrics
from validation import (
    ProjectFilters, ProjectStatusInput, MilestoneToggleInput, ProjectNoteInput, validate,
)
import workflows

router = APIRouter(prefix="/api/v1/admin", tags=["Admin: Projects"])


@router.get("/projects")
async def admin_list_projects(
    status: Optional[str] = Query(None),
    service_type: Optional[str] = Query(None),
    user_id: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    date_from: Optional[str] = Query(None),
    date_to: Optional[str] = Query(None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
):
    filters = validate(ProjectFilters, {
        "status": status, "service_type": service_type, "user_id": user_id,
        "search": search, "date_from": date_from, "date_to": date_to,
    })
    return envelope(await list_projects(db, filters, limit, offset))


@router.get("/projects/stats")
async def admin_project_stats(
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
):
    return envelope(await get_project_stats(db))


@router.get("/projects/{project_id}")
async def admin_get_project(
    project_id: str,
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
):
    return envelope(await get_project_detail(db, project_id))


@router.patch("/projects/{project_id}")
async def admin_update_project_status(
    project_id: str,
    data: ProjectStatusInput,
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
):
    result = await workflows.update_project_status(db, admin, project_id, data.status)
    return envelope(result, "Project status updated")


@router.patch("/projects/{project_id}/milestones")
async def admin_toggle_milestone(
    project_id: str,
    data: MilestoneToggleInput,
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
):
    result = await workflows.toggle_milestone(db, admin, project_id, data.milestone_id, data.completed)
    return envelope(result, "Milestone updated")


@router.post("/projects/{project_id}/notes", status_code=201)
async def admin_add_note(
    project_id: str,
    data: ProjectNoteInput,
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
):
    comment = await workflows.add_project_note(db, admin, project_id, data.content)
    return envelope(comment_to_dict(comment), "Note added")


@router.get("/metrics")
async def admin_metrics(
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
):
    """Dashboard metrics: current month against the previous one"""
    return envelope(await get_metrics(db))
