# pricing.py — Pricing plan administration
import logging
from typing import List

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from auth import CurrentUser
from database import atomic
from errors import NotFound, Conflict
from models import (
    PricingPlan, Briefing, BriefingStatus, ServiceType, AuditLog, AuditEventType, new_uuid,
)
from validation import PlanCreateInput, PlanUpdateInput, validate_id

logger = logging.getLogger("agency-portal.pricing")


def plan_to_dict(plan: PricingPlan) -> dict:
    return {
        "id": plan.id,
        "service_type": plan.service_type.value if isinstance(plan.service_type, ServiceType) else plan.service_type,
        "name": plan.name,
        "price": plan.price,
        "features": list(plan.features or []),
        "storage_limit": plan.storage_limit,
        "is_active": plan.is_active,
        "order": plan.order,
    }


def _audit(db: AsyncSession, admin: CurrentUser, event: AuditEventType, plan_id: str, details=None) -> None:
    db.add(AuditLog(
        id=new_uuid(), event_type=event, user_id=admin.id,
        resource_type="pricing_plan", resource_id=plan_id, details=details,
    ))


async def _get_plan(db: AsyncSession, plan_id: str) -> PricingPlan:
    validate_id(plan_id, "plan_id")
    plan = (await db.execute(select(PricingPlan).where(PricingPlan.id == plan_id))).scalar_one_or_none()
    if not plan:
        raise NotFound("Plan not found")
    return plan


async def list_active_plans(db: AsyncSession) -> List[PricingPlan]:
    result = await db.execute(
        select(PricingPlan).where(PricingPlan.is_active.is_(True)).order_by(PricingPlan.order.asc())
    )
    return list(result.scalars().all())


async def list_plans(db: AsyncSession) -> List[PricingPlan]:
    result = await db.execute(select(PricingPlan).order_by(PricingPlan.order.asc()))
    return list(result.scalars().all())


async def get_plan_for_service(db: AsyncSession, service_type: ServiceType):
    result = await db.execute(select(PricingPlan).where(PricingPlan.service_type == service_type))
    return result.scalar_one_or_none()


async def create_plan(db: AsyncSession, admin: CurrentUser, data: PlanCreateInput) -> PricingPlan:
    if await get_plan_for_service(db, data.service_type):
        raise Conflict(f"A plan for {data.service_type.value} already exists")

    max_order = (await db.execute(select(func.max(PricingPlan.order)))).scalar()

    async with atomic(db):
        plan = PricingPlan(
            id=new_uuid(),
            service_type=data.service_type,
            name=data.name,
            price=data.price,
            features=list(data.features),
            storage_limit=data.storage_limit,
            is_active=True,
            order=(max_order or 0) + 1,
        )
        db.add(plan)
        _audit(db, admin, AuditEventType.PLAN_CREATED, plan.id, {"service_type": data.service_type.value})

    logger.info(f"Plan created: {plan.service_type.value} [admin={admin.id[:8]}]")
    return plan


async def update_plan(db: AsyncSession, admin: CurrentUser, plan_id: str, data: PlanUpdateInput) -> PricingPlan:
    plan = await _get_plan(db, plan_id)

    async with atomic(db):
        plan.name = data.name
        plan.price = data.price
        plan.features = list(data.features)
        plan.storage_limit = data.storage_limit
        _audit(db, admin, AuditEventType.PLAN_UPDATED, plan.id)

    return plan


async def toggle_plan_active(db: AsyncSession, admin: CurrentUser, plan_id: str) -> PricingPlan:
    plan = await _get_plan(db, plan_id)

    if plan.is_active:
        approved = (await db.execute(
            select(func.count(Briefing.id)).where(
                Briefing.service_type == plan.service_type,
                Briefing.status == BriefingStatus.APROVADO,
            )
        )).scalar() or 0
        if approved:
            raise Conflict(f"Plan has {approved} approved briefing(s) and cannot be deactivated")

    async with atomic(db):
        plan.is_active = not plan.is_active
        _audit(db, admin, AuditEventType.PLAN_TOGGLED, plan.id, {"is_active": plan.is_active})

    return plan


async def reorder_plans(db: AsyncSession, admin: CurrentUser, plan_ids: List[str]) -> List[PricingPlan]:
    """Persist display order = position in plan_ids. One unknown id aborts the batch."""
    async with atomic(db):
        result = await db.execute(select(PricingPlan).where(PricingPlan.id.in_(plan_ids)))
        plans = {p.id: p for p in result.scalars().all()}
        missing = [pid for pid in plan_ids if pid not in plans]
        if missing:
            raise NotFound(f"{len(missing)} plan(s) not found")

        for index, plan_id in enumerate(plan_ids):
            plans[plan_id].order = index
        _audit(db, admin, AuditEventType.PLANS_REORDERED, "batch", {"plan_ids": plan_ids})

    return [plans[pid] for pid in plan_ids]
