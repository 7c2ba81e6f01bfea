# routers/projects.py — Client view of projects and project comment threads
from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth import CurrentUser, require_any_user
from database import get_db_session
from errors import NotFound, envelope
from models import Project, Briefing, ProjectMilestone
from reporting import project_to_dict
from validation import CommentInput, validate_id
import comments

router = APIRouter(prefix="/api/v1", tags=["Projects"])


@router.get("/projects")
async def list_my_projects(
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    user: CurrentUser = Depends(require_any_user),
    db: AsyncSession = Depends(get_db_session),
):
    rows = (await db.execute(
        select(Project, Briefing)
        .outerjoin(Briefing, Briefing.id == Project.briefing_id)
        .where(Project.user_id == user.id)
        .order_by(Project.updated_at.desc())
        .offset(offset)
        .limit(limit)
    )).all()
    return envelope([project_to_dict(p, briefing=b) for p, b in rows])


@router.get("/projects/{project_id}")
async def get_my_project(
    project_id: str,
    user: CurrentUser = Depends(require_any_user),
    db: AsyncSession = Depends(get_db_session),
):
    validate_id(project_id, "project_id")
    row = (await db.execute(
        select(Project, Briefing)
        .outerjoin(Briefing, Briefing.id == Project.briefing_id)
        .where(Project.id == project_id, Project.user_id == user.id)
    )).first()
    if not row:
        raise NotFound("Project not found")
    project, briefing = row

    milestones = (await db.execute(
        select(ProjectMilestone)
        .where(ProjectMilestone.project_id == project.id)
        .order_by(ProjectMilestone.order.asc())
    )).scalars().all()
    return envelope(project_to_dict(project, briefing=briefing, milestones=list(milestones)))


# ============================================================
# COMMENTS
# ============================================================

@router.get("/projects/{project_id}/comments")
async def list_project_comments(
    project_id: str,
    limit: int = Query(default=comments.DEFAULT_PAGE_SIZE),
    offset: int = Query(default=0, ge=0),
    user: CurrentUser = Depends(require_any_user),
    db: AsyncSession = Depends(get_db_session),
):
    return envelope(await comments.list_comments(db, user, project_id, limit, offset))


@router.post("/projects/{project_id}/comments", status_code=201)
async def add_project_comment(
    project_id: str,
    data: CommentInput,
    user: CurrentUser = Depends(require_any_user),
    db: AsyncSession = Depends(get_db_session),
):
    comment = await comments.add_comment(db, user, project_id, data.content, data.milestone_id)
    return envelope(comments.comment_to_dict(comment), "Comment added")


@router.delete("/comments/{comment_id}")
async def delete_project_comment(
    comment_id: str,
    user: CurrentUser = Depends(require_any_user),
    db: AsyncSession = Depends(get_db_session),
):
    await comments.delete_comment(db, user, comment_id)
    return envelope(message="Comment deleted")
