# reporting.py — Read-only list, stat and metric queries for the admin panel
# Filters are optional and ANDed together; an absent filter adds no condition.
# Nothing here writes to the database.

import csv
import io
import calendar
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Type

from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from errors import NotFound
from models import (
    User, UserRole, Briefing, BriefingStatus, Project, ProjectStatus, ProjectMilestone,
    ProjectComment, ProjectFile, ServiceType, utcnow, ensure_utc,
)
from validation import BriefingFilters, ProjectFilters, ClientFilters, validate_id

SERVICE_VALUES = {
    ServiceType.ERP_BASICO: 5000,
    ServiceType.ERP_ECOMMERCE: 8000,
    ServiceType.ERP_PREMIUM: 15000,
    ServiceType.LANDING_IA: 3000,
    ServiceType.LANDING_IA_WHATSAPP: 4500,
}

RECENT_LOGIN_DAYS = 30

CSV_COLUMNS = (
    ("nome", "Nome"),
    ("email", "Email"),
    ("empresa", "Empresa"),
    ("telefone", "Telefone"),
    ("data_cadastro", "Data de Cadastro"),
    ("ultimo_login", "Último Login"),
    ("total_briefings", "Total de Briefings"),
    ("projetos_ativos", "Projetos Ativos"),
)


# ============================================================
# DATE HELPERS
# ============================================================

def month_start(value: datetime) -> datetime:
    return value.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def add_months(value: datetime, months: int) -> datetime:
    """Shift by calendar months, clamping the day to the target month's length."""
    index = value.month - 1 + months
    year = value.year + index // 12
    month = index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def _variation(current: float, previous: float) -> float:
    if previous <= 0:
        return 0.0
    return round((current - previous) / previous * 100, 1)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return ensure_utc(value).isoformat() if value else None


def _enum_value(value):
    return value.value if hasattr(value, "value") else value


# ============================================================
# SERIALIZERS
# ============================================================

def user_summary(user: Optional[User]) -> Optional[dict]:
    if user is None:
        return None
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "company": user.company,
    }


def briefing_to_dict(briefing: Briefing, user: Optional[User] = None, project_id: Optional[str] = None) -> dict:
    out = {
        "id": briefing.id,
        "user_id": briefing.user_id,
        "service_type": _enum_value(briefing.service_type),
        "company_name": briefing.company_name,
        "segment": briefing.segment,
        "objectives": briefing.objectives,
        "budget": briefing.budget,
        "deadline": briefing.deadline,
        "features": briefing.features,
        "references": briefing.references,
        "integrations": briefing.integrations,
        "additional_info": briefing.additional_info,
        "status": _enum_value(briefing.status),
        "rejection_reason": briefing.rejection_reason,
        "submitted_at": _iso(briefing.submitted_at),
        "reviewed_at": _iso(briefing.reviewed_at),
        "created_at": _iso(briefing.created_at),
        "updated_at": _iso(briefing.updated_at),
        "project_id": project_id,
    }
    if user is not None:
        out["user"] = user_summary(user)
    return out


def milestone_to_dict(m: ProjectMilestone) -> dict:
    return {
        "id": m.id,
        "name": m.name,
        "description": m.description,
        "order": m.order,
        "completed": m.completed,
        "completed_at": _iso(m.completed_at),
    }


def project_to_dict(
    project: Project,
    user: Optional[User] = None,
    briefing: Optional[Briefing] = None,
    milestones: Optional[List[ProjectMilestone]] = None,
) -> dict:
    out = {
        "id": project.id,
        "user_id": project.user_id,
        "briefing_id": project.briefing_id,
        "name": project.name,
        "description": project.description,
        "status": _enum_value(project.status),
        "progress": project.progress,
        "started_at": _iso(project.started_at),
        "completed_at": _iso(project.completed_at),
        "created_at": _iso(project.created_at),
        "updated_at": _iso(project.updated_at),
    }
    if user is not None:
        out["user"] = user_summary(user)
    if briefing is not None:
        out["service_type"] = _enum_value(briefing.service_type)
        out["company_name"] = briefing.company_name
    if milestones is not None:
        out["milestones"] = [milestone_to_dict(m) for m in milestones]
    return out


# ============================================================
# FILTER CONDITIONS
# ============================================================

def _like(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _search(term: Optional[str], *columns):
    if not term:
        return None
    pattern = _like(term)
    return or_(*[column.ilike(pattern, escape="\\") for column in columns])


def _date_range(column, filters) -> list:
    conditions = []
    if filters.date_from is not None:
        conditions.append(column >= filters.date_from)
    if filters.date_to is not None:
        conditions.append(column <= filters.date_to)
    return conditions


def briefing_conditions(filters: BriefingFilters) -> list:
    conditions = _date_range(Briefing.created_at, filters)
    if filters.status is not None:
        conditions.append(Briefing.status == filters.status)
    if filters.service_type is not None:
        conditions.append(Briefing.service_type == filters.service_type)
    search = _search(filters.search, Briefing.company_name, Briefing.segment, User.name, User.email)
    if search is not None:
        conditions.append(search)
    return conditions


def project_conditions(filters: ProjectFilters) -> list:
    conditions = _date_range(Project.created_at, filters)
    if filters.status is not None:
        conditions.append(Project.status == filters.status)
    if filters.user_id is not None:
        conditions.append(Project.user_id == filters.user_id)
    if filters.service_type is not None:
        conditions.append(Briefing.service_type == filters.service_type)
    search = _search(
        filters.search, Project.name, User.name, User.email, User.company, Briefing.company_name,
    )
    if search is not None:
        conditions.append(search)
    return conditions


def client_conditions(filters: ClientFilters) -> list:
    conditions = [User.role == UserRole.CLIENT]
    conditions.extend(_date_range(User.created_at, filters))
    if filters.status == "active":
        conditions.append(User.is_active.is_(True))
    elif filters.status == "inactive":
        conditions.append(User.is_active.is_(False))
    search = _search(filters.search, User.name, User.email, User.company)
    if search is not None:
        conditions.append(search)
    return conditions


async def _count(db: AsyncSession, column, *conditions) -> int:
    return (await db.execute(select(func.count(column)).where(*conditions))).scalar() or 0


async def count_by_status(db: AsyncSession, column, enum_cls: Type, *conditions) -> Dict[str, int]:
    counts = {member.value: 0 for member in enum_cls}
    rows = (await db.execute(
        select(column, func.count()).where(*conditions).group_by(column)
    )).all()
    for status, n in rows:
        counts[_enum_value(status)] = n
    return counts


# ============================================================
# BRIEFINGS
# ============================================================

async def list_briefings(
    db: AsyncSession, filters: BriefingFilters, limit: int = 50, offset: int = 0,
) -> Dict[str, Any]:
    conditions = briefing_conditions(filters)
    base = (
        select(Briefing, User, Project.id)
        .outerjoin(User, User.id == Briefing.user_id)
        .outerjoin(Project, Project.briefing_id == Briefing.id)
        .where(*conditions)
    )
    total = (await db.execute(
        select(func.count(Briefing.id)).select_from(Briefing)
        .outerjoin(User, User.id == Briefing.user_id)
        .where(*conditions)
    )).scalar() or 0
    rows = (await db.execute(
        base.order_by(Briefing.created_at.desc()).offset(offset).limit(limit)
    )).all()

    return {
        "briefings": [briefing_to_dict(b, u, pid) for b, u, pid in rows],
        "total": total,
        "stats": await briefing_stats(db),
    }


async def briefing_stats(db: AsyncSession) -> Dict[str, int]:
    counts = await count_by_status(db, Briefing.status, BriefingStatus)
    return {
        "total": sum(counts.values()),
        "rascunhos": counts[BriefingStatus.RASCUNHO.value],
        "enviados": counts[BriefingStatus.ENVIADO.value],
        "em_analise": counts[BriefingStatus.EM_ANALISE.value],
        "aprovados": counts[BriefingStatus.APROVADO.value],
        "rejeitados": counts[BriefingStatus.REJEITADO.value],
    }


async def get_briefing_detail(db: AsyncSession, briefing_id: str) -> dict:
    validate_id(briefing_id, "briefing_id")
    row = (await db.execute(
        select(Briefing, User, Project.id)
        .outerjoin(User, User.id == Briefing.user_id)
        .outerjoin(Project, Project.briefing_id == Briefing.id)
        .where(Briefing.id == briefing_id)
    )).first()
    if not row:
        raise NotFound("Briefing not found")
    briefing, user, project_id = row
    return briefing_to_dict(briefing, user, project_id)


# ============================================================
# PROJECTS
# ============================================================

async def list_projects(
    db: AsyncSession, filters: ProjectFilters, limit: int = 50, offset: int = 0,
) -> Dict[str, Any]:
    conditions = project_conditions(filters)
    joined = (
        select(Project, User, Briefing)
        .outerjoin(User, User.id == Project.user_id)
        .outerjoin(Briefing, Briefing.id == Project.briefing_id)
        .where(*conditions)
    )
    total = (await db.execute(
        select(func.count(Project.id)).select_from(Project)
        .outerjoin(User, User.id == Project.user_id)
        .outerjoin(Briefing, Briefing.id == Project.briefing_id)
        .where(*conditions)
    )).scalar() or 0
    rows = (await db.execute(
        joined.order_by(Project.updated_at.desc()).offset(offset).limit(limit)
    )).all()

    return {
        "projects": [project_to_dict(p, u, b) for p, u, b in rows],
        "total": total,
        "stats": await project_status_counts(db),
    }


async def project_status_counts(db: AsyncSession) -> Dict[str, int]:
    counts = await count_by_status(db, Project.status, ProjectStatus)
    return {
        "total": sum(counts.values()),
        "aguardando": counts[ProjectStatus.AGUARDANDO_APROVACAO.value],
        "ativos": counts[ProjectStatus.ATIVO.value],
        "pausados": counts[ProjectStatus.PAUSADO.value],
        "concluidos": counts[ProjectStatus.CONCLUIDO.value],
        "cancelados": counts[ProjectStatus.CANCELADO.value],
        "arquivados": counts[ProjectStatus.ARQUIVADO.value],
    }


async def get_project_detail(db: AsyncSession, project_id: str) -> dict:
    validate_id(project_id, "project_id")
    row = (await db.execute(
        select(Project, User, Briefing)
        .outerjoin(User, User.id == Project.user_id)
        .outerjoin(Briefing, Briefing.id == Project.briefing_id)
        .where(Project.id == project_id)
    )).first()
    if not row:
        raise NotFound("Project not found")
    project, user, briefing = row

    milestones = (await db.execute(
        select(ProjectMilestone)
        .where(ProjectMilestone.project_id == project.id)
        .order_by(ProjectMilestone.order.asc())
    )).scalars().all()
    file_count = await _count(db, ProjectFile.id, ProjectFile.project_id == project.id)
    comment_count = await _count(db, ProjectComment.id, ProjectComment.project_id == project.id)

    out = project_to_dict(project, user, briefing, list(milestones))
    if briefing is not None:
        out["briefing"] = briefing_to_dict(briefing)
    out["file_count"] = file_count
    out["comment_count"] = comment_count
    return out


async def get_project_stats(db: AsyncSession, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    start = month_start(now)

    total = await _count(db, Project.id)
    active = await _count(db, Project.id, Project.status == ProjectStatus.ATIVO)
    completed_total = await _count(db, Project.id, Project.status == ProjectStatus.CONCLUIDO)
    completed_this_month = await _count(
        db, Project.id,
        Project.status == ProjectStatus.CONCLUIDO,
        Project.completed_at >= start,
    )

    rows = (await db.execute(
        select(Project.started_at, Project.created_at, Project.completed_at).where(
            Project.status == ProjectStatus.CONCLUIDO,
            Project.completed_at.isnot(None),
        )
    )).all()
    durations = [
        (ensure_utc(completed) - ensure_utc(started or created)).total_seconds() / 86400
        for started, created, completed in rows
    ]

    return {
        "total": total,
        "ativos": active,
        "concluidos_este_mes": completed_this_month,
        "taxa_conclusao": round(completed_total / total * 100, 1) if total else 0,
        "tempo_medio_conclusao": round(sum(durations) / len(durations), 1) if durations else 0,
    }


# ============================================================
# METRICS
# ============================================================

async def _estimated_revenue(db: AsyncSession, *conditions) -> int:
    rows = (await db.execute(
        select(Briefing.service_type).where(Briefing.status == BriefingStatus.APROVADO, *conditions)
    )).scalars().all()
    return sum(SERVICE_VALUES.get(ServiceType(st), 0) for st in rows if st is not None)


async def get_metrics(db: AsyncSession, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    current_start = month_start(now)
    previous_start = add_months(current_start, -1)

    def in_current(column):
        return (column >= current_start,)

    def in_previous(column):
        return (column >= previous_start, column < current_start)

    is_client = User.role == UserRole.CLIENT
    leads_now = await _count(db, User.id, is_client, *in_current(User.created_at))
    leads_before = await _count(db, User.id, is_client, *in_previous(User.created_at))

    approved = Briefing.status == BriefingStatus.APROVADO
    conv_now = await _count(db, Briefing.id, approved, *in_current(Briefing.reviewed_at))
    conv_before = await _count(db, Briefing.id, approved, *in_previous(Briefing.reviewed_at))
    briefings_now = await _count(db, Briefing.id, *in_current(Briefing.created_at))
    briefings_before = await _count(db, Briefing.id, *in_previous(Briefing.created_at))
    rate_now = conv_now / briefings_now * 100 if briefings_now else 0.0
    rate_before = conv_before / briefings_before * 100 if briefings_before else 0.0

    open_statuses = (ProjectStatus.ATIVO, ProjectStatus.AGUARDANDO_APROVACAO)
    active_now = await _count(db, Project.id, Project.status.in_(open_statuses))
    # Approximation: open projects that already existed before this month
    active_before = await _count(
        db, Project.id, Project.status.in_(open_statuses), Project.created_at < current_start,
    )

    revenue_now = await _estimated_revenue(db, *in_current(Briefing.reviewed_at))
    revenue_before = await _estimated_revenue(db, *in_previous(Briefing.reviewed_at))

    leads_by_month = []
    for offset in range(5, -1, -1):
        start = add_months(current_start, -offset)
        end = add_months(start, 1)
        count = await _count(db, User.id, is_client, User.created_at >= start, User.created_at < end)
        leads_by_month.append({"month": start.strftime("%Y-%m"), "count": count})

    conversion_by_service = []
    for service_type in ServiceType:
        total = await _count(db, Briefing.id, Briefing.service_type == service_type)
        approved_count = await _count(db, Briefing.id, Briefing.service_type == service_type, approved)
        conversion_by_service.append({
            "service_type": service_type.value,
            "briefings": total,
            "aprovados": approved_count,
            "taxa": round(approved_count / total * 100, 1) if total else 0,
        })

    by_status = await count_by_status(db, Project.status, ProjectStatus)

    return {
        "leads": {
            "current": leads_now, "previous": leads_before,
            "variation": _variation(leads_now, leads_before),
        },
        "conversions": {
            "current": round(rate_now, 1), "previous": round(rate_before, 1),
            "variation": _variation(rate_now, rate_before),
        },
        "active_projects": {
            "current": active_now, "previous": active_before,
            "variation": _variation(active_now, active_before),
        },
        "estimated_revenue": {
            "current": revenue_now, "previous": revenue_before,
            "variation": _variation(revenue_now, revenue_before),
        },
        "leads_by_month": leads_by_month,
        "conversion_by_service": conversion_by_service,
        "projects_by_status": [{"status": s, "count": n} for s, n in by_status.items()],
    }


# ============================================================
# CLIENTS
# ============================================================

def _client_columns():
    briefing_count = (
        select(func.count(Briefing.id)).where(Briefing.user_id == User.id)
        .correlate(User).scalar_subquery()
    )
    project_count = (
        select(func.count(Project.id)).where(Project.user_id == User.id)
        .correlate(User).scalar_subquery()
    )
    active_projects = (
        select(func.count(Project.id))
        .where(Project.user_id == User.id, Project.status == ProjectStatus.ATIVO)
        .correlate(User).scalar_subquery()
    )
    return (
        briefing_count.label("briefing_count"),
        project_count.label("project_count"),
        active_projects.label("active_projects"),
    )


def client_to_dict(user: User, briefing_count: int = 0, project_count: int = 0, active_projects: int = 0) -> dict:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "company": user.company,
        "phone": user.phone,
        "is_active": user.is_active,
        "email_verified": _iso(user.email_verified),
        "marketing_consent": user.marketing_consent,
        "last_login_at": _iso(user.last_login_at),
        "created_at": _iso(user.created_at),
        "briefing_count": briefing_count or 0,
        "project_count": project_count or 0,
        "active_projects": active_projects or 0,
    }


async def _client_rows(db: AsyncSession, filters: ClientFilters, limit: Optional[int] = None, offset: int = 0):
    stmt = (
        select(User, *_client_columns())
        .where(*client_conditions(filters))
        .order_by(User.created_at.desc())
    )
    if limit is not None:
        stmt = stmt.offset(offset).limit(limit)
    return (await db.execute(stmt)).all()


async def list_clients(
    db: AsyncSession, filters: ClientFilters, limit: int = 50, offset: int = 0,
) -> Dict[str, Any]:
    rows = await _client_rows(db, filters, limit, offset)
    total = await _count(db, User.id, *client_conditions(filters))
    return {
        "clients": [client_to_dict(u, b, p, a) for u, b, p, a in rows],
        "total": total,
        "stats": await client_stats(db),
    }


async def client_stats(db: AsyncSession, now: Optional[datetime] = None) -> Dict[str, int]:
    now = now or utcnow()
    is_client = User.role == UserRole.CLIENT
    total = await _count(db, User.id, is_client)
    active = await _count(db, User.id, is_client, User.is_active.is_(True))
    recent_cutoff = now - timedelta(days=RECENT_LOGIN_DAYS)
    return {
        "total": total,
        "active": active,
        "inactive": total - active,
        "new_this_month": await _count(db, User.id, is_client, User.created_at >= month_start(now)),
        "recently_active": await _count(db, User.id, is_client, User.last_login_at >= recent_cutoff),
    }


async def get_client_detail(db: AsyncSession, client_id: str) -> dict:
    validate_id(client_id, "client_id")
    row = (await db.execute(
        select(User, *_client_columns()).where(User.id == client_id, User.role == UserRole.CLIENT)
    )).first()
    if not row:
        raise NotFound("Client not found")
    user, briefing_count, project_count, active_projects = row

    briefings = (await db.execute(
        select(Briefing, Project.id)
        .outerjoin(Project, Project.briefing_id == Briefing.id)
        .where(Briefing.user_id == user.id)
        .order_by(Briefing.created_at.desc())
    )).all()
    projects = (await db.execute(
        select(Project).where(Project.user_id == user.id).order_by(Project.created_at.desc())
    )).scalars().all()

    out = client_to_dict(user, briefing_count, project_count, active_projects)
    out["briefings"] = [briefing_to_dict(b, project_id=pid) for b, pid in briefings]
    out["projects"] = [project_to_dict(p) for p in projects]
    return out


# ============================================================
# EXPORT
# ============================================================

def _br_date(value: Optional[datetime], with_time: bool = False) -> str:
    if value is None:
        return ""
    value = ensure_utc(value)
    return value.strftime("%d/%m/%Y %H:%M" if with_time else "%d/%m/%Y")


async def export_clients(db: AsyncSession, filters: ClientFilters) -> List[Dict[str, Any]]:
    rows = await _client_rows(db, filters)
    return [
        {
            "nome": user.name or "",
            "email": user.email,
            "empresa": user.company or "",
            "telefone": user.phone or "",
            "data_cadastro": _br_date(user.created_at),
            "ultimo_login": _br_date(user.last_login_at, with_time=True) if user.last_login_at else "Nunca",
            "total_briefings": briefing_count or 0,
            "projetos_ativos": active_projects or 0,
        }
        for user, briefing_count, _project_count, active_projects in rows
    ]


def to_csv(rows: List[Dict[str, Any]]) -> str:
    """Semicolon separated with a UTF-8 BOM so spreadsheet tools pick the encoding."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, delimiter=";", quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
    writer.writerow([label for _, label in CSV_COLUMNS])
    for row in rows:
        writer.writerow([row.get(key, "") for key, _ in CSV_COLUMNS])
    return "\ufeff" + buffer.getvalue()
