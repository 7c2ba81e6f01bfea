# routers/briefings.py — Client briefing intake: drafts and submission
from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth import CurrentUser, require_verified
from database import get_db_session
from errors import NotFound, envelope
from models import Briefing, Project, UserRole
from reporting import briefing_to_dict
from validation import BriefingDraftInput, BriefingSubmitInput, validate_id
import workflows

router = APIRouter(prefix="/api/v1/briefings", tags=["Briefings"])

require_client = require_verified(UserRole.CLIENT)


@router.get("/draft")
async def get_draft(
    user: CurrentUser = Depends(require_client),
    db: AsyncSession = Depends(get_db_session),
):
    draft = await workflows.load_draft(db, user)
    return envelope(briefing_to_dict(draft) if draft else None)


@router.put("/draft")
async def save_draft(
    data: BriefingDraftInput,
    user: CurrentUser = Depends(require_client),
    db: AsyncSession = Depends(get_db_session),
):
    draft = await workflows.save_draft(db, user, data)
    return envelope(briefing_to_dict(draft), "Draft saved")


@router.post("", status_code=201)
async def submit_briefing(
    data: BriefingSubmitInput,
    user: CurrentUser = Depends(require_client),
    db: AsyncSession = Depends(get_db_session),
):
    briefing = await workflows.submit_briefing(db, user, data)
    return envelope(briefing_to_dict(briefing), "Briefing submitted")


@router.get("")
async def list_my_briefings(
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    user: CurrentUser = Depends(require_client),
    db: AsyncSession = Depends(get_db_session),
):
    rows = (await db.execute(
        select(Briefing, Project.id)
        .outerjoin(Project, Project.briefing_id == Briefing.id)
        .where(Briefing.user_id == user.id)
        .order_by(Briefing.created_at.desc())
        .offset(offset)
        .limit(limit)
    )).all()
    return envelope([briefing_to_dict(b, project_id=pid) for b, pid in rows])


@router.get("/{briefing_id}")
async def get_my_briefing(
    briefing_id: str,
    user: CurrentUser = Depends(require_client),
    db: AsyncSession = Depends(get_db_session),
):
    validate_id(briefing_id, "briefing_id")
    row = (await db.execute(
        select(Briefing, Project.id)
        .outerjoin(Project, Project.briefing_id == Briefing.id)
        .where(Briefing.id == briefing_id, Briefing.user_id == user.id)
    )).first()
    if not row:
        raise NotFound("Briefing not found")
    briefing, project_id = row
    return envelope(briefing_to_dict(briefing, project_id=project_id))
