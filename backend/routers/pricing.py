# routers/pricing.py — Public plan listing and admin plan management
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from auth import CurrentUser, require_admin
from database import get_db_session
from errors import envelope
from validation import PlanCreateInput, PlanUpdateInput, PlanReorderInput
import pricing

router = APIRouter(prefix="/api/v1", tags=["Pricing"])


@router.get("/pricing")
async def public_pricing(db: AsyncSession = Depends(get_db_session)):
    """Active plans in display order"""
    plans = await pricing.list_active_plans(db)
    return envelope([pricing.plan_to_dict(p) for p in plans])


@router.get("/admin/pricing")
async def admin_list_plans(
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
):
    plans = await pricing.list_plans(db)
    return envelope([pricing.plan_to_dict(p) for p in plans])


@router.post("/admin/pricing", status_code=201)
async def admin_create_plan(
    data: PlanCreateInput,
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
):
    plan = await pricing.create_plan(db, admin, data)
    return envelope(pricing.plan_to_dict(plan), "Plan created")


@router.put("/admin/pricing/order")
async def admin_reorder_plans(
    data: PlanReorderInput,
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
):
    plans = await pricing.reorder_plans(db, admin, data.plan_ids)
    return envelope([pricing.plan_to_dict(p) for p in plans], "Plan order updated")


@router.patch("/admin/pricing/{plan_id}")
async def admin_update_plan(
    plan_id: str,
    data: PlanUpdateInput,
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
):
    plan = await pricing.update_plan(db, admin, plan_id, data)
    return envelope(pricing.plan_to_dict(plan), "Plan updated")


@router.post("/admin/pricing/{plan_id}/toggle")
async def admin_toggle_plan(
    plan_id: str,
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
):
    plan = await pricing.toggle_plan_active(db, admin, plan_id)
    message = "Plan activated" if plan.is_active else "Plan deactivated"
    return envelope(pricing.plan_to_dict(plan), message)
