# workflows.py — Status-changing operations on briefings, projects and clients
# Callers pass an already-guarded CurrentUser; each operation checks its own
# preconditions, applies the change in one transaction and queues the
# notification/audit side effects inside that same transaction.

import logging
from typing import Any, Dict, Iterable, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from auth import CurrentUser
from database import atomic
from errors import NotFound, Conflict, InvalidTransition
from models import (
    Briefing, BriefingStatus, Project, ProjectStatus, ProjectMilestone, ProjectComment,
    User, UserRole, AuditLog, AuditEventType, NotificationType, utcnow, new_uuid,
)
from notification_service import notify, notify_admins
from validation import BriefingDraftInput, BriefingSubmitInput, validate_id

logger = logging.getLogger("agency-portal.workflows")

# ============================================================
# STATE MACHINES
# ============================================================

# Manual moves only. APROVADO and REJEITADO are reached through
# approve_briefing / reject_briefing and are terminal.
BRIEFING_TRANSITIONS = {
    BriefingStatus.RASCUNHO: {BriefingStatus.ENVIADO},
    BriefingStatus.ENVIADO: {BriefingStatus.EM_ANALISE, BriefingStatus.RASCUNHO},
    BriefingStatus.EM_ANALISE: {BriefingStatus.ENVIADO},
    BriefingStatus.APROVADO: set(),
    BriefingStatus.REJEITADO: set(),
}

REVIEWABLE_STATUSES = {BriefingStatus.ENVIADO, BriefingStatus.EM_ANALISE}

PROJECT_TRANSITIONS = {
    ProjectStatus.AGUARDANDO_APROVACAO: {ProjectStatus.ATIVO, ProjectStatus.CANCELADO},
    ProjectStatus.ATIVO: {ProjectStatus.PAUSADO, ProjectStatus.CONCLUIDO, ProjectStatus.CANCELADO},
    ProjectStatus.PAUSADO: {ProjectStatus.ATIVO, ProjectStatus.CANCELADO},
    ProjectStatus.CONCLUIDO: {ProjectStatus.ARQUIVADO},
    ProjectStatus.CANCELADO: {ProjectStatus.ARQUIVADO},
    ProjectStatus.ARQUIVADO: set(),
}

MILESTONE_COUNT = 4

# Projects in these statuses keep their client from being deactivated
OPEN_PROJECT_STATUSES = (ProjectStatus.ATIVO, ProjectStatus.AGUARDANDO_APROVACAO)

DEFAULT_MILESTONES = (
    ("Planejamento", "Definição de requisitos, escopo e cronograma"),
    ("Desenvolvimento", "Implementação das funcionalidades acordadas"),
    ("Testes", "Validação, correções e homologação com o cliente"),
    ("Entrega", "Publicação, treinamento e entrega final"),
)

PROJECT_STATUS_LABELS = {
    ProjectStatus.AGUARDANDO_APROVACAO: "Aguardando aprovação",
    ProjectStatus.ATIVO: "Ativo",
    ProjectStatus.PAUSADO: "Pausado",
    ProjectStatus.CONCLUIDO: "Concluído",
    ProjectStatus.CANCELADO: "Cancelado",
    ProjectStatus.ARQUIVADO: "Arquivado",
}


def can_transition_briefing(current: BriefingStatus, new: BriefingStatus) -> bool:
    return new in BRIEFING_TRANSITIONS.get(BriefingStatus(current), set())


def can_transition_project(current: ProjectStatus, new: ProjectStatus) -> bool:
    return new in PROJECT_TRANSITIONS.get(ProjectStatus(current), set())


def calculate_progress(completed: int) -> int:
    """Each of the four milestones is worth 25%; result clamped to [0, 100]."""
    if completed <= 0:
        return 0
    progress = completed / MILESTONE_COUNT * 100
    return round(min(max(progress, 0), 100))


def project_progress(milestones: Iterable[ProjectMilestone]) -> int:
    return calculate_progress(sum(1 for m in milestones if m.completed))


# ============================================================
# HELPERS
# ============================================================

def _audit(
    db: AsyncSession,
    actor_id: Optional[str],
    event_type: AuditEventType,
    resource_type: str,
    resource_id: str,
    details: Optional[Dict[str, Any]] = None,
) -> None:
    db.add(AuditLog(
        id=new_uuid(),
        event_type=event_type,
        user_id=actor_id,
        resource_type=resource_type,
        resource_id=resource_id,
        details=details,
    ))


async def get_briefing(db: AsyncSession, briefing_id: str) -> Briefing:
    validate_id(briefing_id, "briefing_id")
    result = await db.execute(select(Briefing).where(Briefing.id == briefing_id))
    briefing = result.scalar_one_or_none()
    if not briefing:
        raise NotFound("Briefing not found")
    return briefing


async def get_project(db: AsyncSession, project_id: str) -> Project:
    validate_id(project_id, "project_id")
    result = await db.execute(select(Project).where(Project.id == project_id))
    project = result.scalar_one_or_none()
    if not project:
        raise NotFound("Project not found")
    return project


def create_default_milestones(db: AsyncSession, project: Project) -> list:
    milestones = []
    for order, (name, description) in enumerate(DEFAULT_MILESTONES, start=1):
        milestone = ProjectMilestone(
            id=new_uuid(),
            project_id=project.id,
            name=name,
            description=description,
            order=order,
            completed=False,
        )
        db.add(milestone)
        milestones.append(milestone)
    return milestones


# ============================================================
# BRIEFINGS (client side)
# ============================================================

async def load_draft(db: AsyncSession, user: CurrentUser) -> Optional[Briefing]:
    result = await db.execute(
        select(Briefing)
        .where(Briefing.user_id == user.id, Briefing.status == BriefingStatus.RASCUNHO)
        .order_by(Briefing.updated_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def save_draft(db: AsyncSession, user: CurrentUser, data: BriefingDraftInput) -> Briefing:
    draft = await load_draft(db, user)
    async with atomic(db):
        if draft is None:
            draft = Briefing(id=new_uuid(), user_id=user.id, status=BriefingStatus.RASCUNHO, company_name="")
            db.add(draft)
        for field, value in data.model_dump(exclude_unset=True).items():
            if field == "company_name" and value is None:
                value = ""
            setattr(draft, field, value)
        draft.updated_at = utcnow()
    return draft


async def submit_briefing(db: AsyncSession, user: CurrentUser, data: BriefingSubmitInput) -> Briefing:
    """Promote the caller's draft (or a fresh briefing) to ENVIADO."""
    draft = await load_draft(db, user)
    async with atomic(db):
        briefing = draft
        if briefing is None:
            briefing = Briefing(id=new_uuid(), user_id=user.id)
            db.add(briefing)
        # Fields left out of the submission keep what the draft already had
        for field, value in data.model_dump(exclude_unset=True).items():
            setattr(briefing, field, value)
        briefing.status = BriefingStatus.ENVIADO
        briefing.submitted_at = utcnow()
        briefing.rejection_reason = None

        _audit(db, user.id, AuditEventType.BRIEFING_SUBMITTED, "briefing", briefing.id,
               {"service_type": data.service_type.value})
        await notify_admins(
            db, NotificationType.NOVO_BRIEFING,
            "Novo briefing recebido",
            f"{data.company_name} enviou um briefing de {data.service_type.value}",
            {"briefing_id": briefing.id, "client_id": user.id},
        )

    logger.info(f"Briefing submitted: {briefing.id[:8]} [user={user.id[:8]}]")
    return briefing


# ============================================================
# BRIEFINGS (admin side)
# ============================================================

async def update_briefing_status(
    db: AsyncSession, admin: CurrentUser, briefing_id: str, new_status: BriefingStatus,
) -> Dict[str, str]:
    briefing = await get_briefing(db, briefing_id)
    old_status = BriefingStatus(briefing.status)

    if new_status in (BriefingStatus.APROVADO, BriefingStatus.REJEITADO):
        raise InvalidTransition("Use the approve or reject operation for this status")
    if not can_transition_briefing(old_status, new_status):
        raise InvalidTransition(f"Cannot move briefing from {old_status.value} to {new_status.value}")

    if new_status == BriefingStatus.RASCUNHO and briefing.user_id:
        # A client holds at most one draft
        other_draft = (await db.execute(
            select(Briefing.id).where(
                Briefing.user_id == briefing.user_id,
                Briefing.status == BriefingStatus.RASCUNHO,
                Briefing.id != briefing.id,
            ).limit(1)
        )).scalar_one_or_none()
        if other_draft:
            raise Conflict("Client already has a draft briefing")

    async with atomic(db):
        briefing.status = new_status
        if new_status == BriefingStatus.RASCUNHO:
            briefing.submitted_at = None
        elif new_status == BriefingStatus.ENVIADO and briefing.submitted_at is None:
            briefing.submitted_at = utcnow()
        _audit(db, admin.id, AuditEventType.BRIEFING_STATUS_CHANGED, "briefing", briefing.id,
               {"old_status": old_status.value, "new_status": new_status.value})

    logger.info(f"Briefing {briefing.id[:8]}: {old_status.value} → {new_status.value} [admin={admin.id[:8]}]")
    return {"briefing_id": briefing.id, "old_status": old_status.value, "new_status": new_status.value}


async def approve_briefing(db: AsyncSession, admin: CurrentUser, briefing_id: str) -> Project:
    """Approve a briefing and open its project with the four default milestones.

    Status flip, project, milestones, notification and audit entry commit
    together or not at all.
    """
    briefing = await get_briefing(db, briefing_id)
    if briefing.status not in REVIEWABLE_STATUSES:
        raise InvalidTransition(f"Briefing in status {BriefingStatus(briefing.status).value} cannot be approved")
    if briefing.user_id is None:
        raise InvalidTransition("Briefing has no owner")

    existing = await db.execute(select(Project.id).where(Project.briefing_id == briefing.id))
    if existing.scalar_one_or_none():
        raise Conflict("Briefing already has a project")

    async with atomic(db):
        now = utcnow()
        briefing.status = BriefingStatus.APROVADO
        briefing.reviewed_at = now
        if briefing.submitted_at is None:
            briefing.submitted_at = now

        project = Project(
            id=new_uuid(),
            user_id=briefing.user_id,
            briefing_id=briefing.id,
            name=briefing.company_name,
            description=briefing.objectives,
            status=ProjectStatus.AGUARDANDO_APROVACAO,
            progress=0,
        )
        db.add(project)
        create_default_milestones(db, project)

        _audit(db, admin.id, AuditEventType.BRIEFING_APPROVED, "briefing", briefing.id,
               {"project_id": project.id})
        await notify(
            db, briefing.user_id, NotificationType.BRIEFING_APROVADO,
            "Briefing aprovado!",
            f"Seu briefing para {briefing.company_name} foi aprovado. O projeto já foi criado.",
            {"briefing_id": briefing.id, "project_id": project.id},
        )

    logger.info(f"Briefing approved: {briefing.id[:8]} → project {project.id[:8]} [admin={admin.id[:8]}]")
    return project


async def reject_briefing(db: AsyncSession, admin: CurrentUser, briefing_id: str, reason: str) -> Briefing:
    briefing = await get_briefing(db, briefing_id)
    if briefing.status not in REVIEWABLE_STATUSES:
        raise InvalidTransition(f"Briefing in status {BriefingStatus(briefing.status).value} cannot be rejected")

    async with atomic(db):
        briefing.status = BriefingStatus.REJEITADO
        briefing.rejection_reason = reason
        briefing.reviewed_at = utcnow()
        _audit(db, admin.id, AuditEventType.BRIEFING_REJECTED, "briefing", briefing.id)
        if briefing.user_id:
            await notify(
                db, briefing.user_id, NotificationType.BRIEFING_REJEITADO,
                "Briefing precisa de ajustes",
                f"Seu briefing para {briefing.company_name} não foi aprovado. Motivo: {reason}",
                {"briefing_id": briefing.id},
            )

    logger.info(f"Briefing rejected: {briefing.id[:8]} [admin={admin.id[:8]}]")
    return briefing


# ============================================================
# PROJECTS
# ============================================================

async def update_project_status(
    db: AsyncSession, admin: CurrentUser, project_id: str, new_status: ProjectStatus,
) -> Dict[str, str]:
    project = await get_project(db, project_id)
    old_status = ProjectStatus(project.status)

    if not can_transition_project(old_status, new_status):
        raise InvalidTransition(f"Cannot move project from {old_status.value} to {new_status.value}")

    async with atomic(db):
        now = utcnow()
        project.status = new_status
        project.updated_at = now
        if new_status == ProjectStatus.ATIVO and project.started_at is None:
            project.started_at = now
        if new_status == ProjectStatus.CONCLUIDO:
            project.completed_at = now

        _audit(db, admin.id, AuditEventType.PROJECT_STATUS_CHANGED, "project", project.id,
               {"old_status": old_status.value, "new_status": new_status.value})

        if project.user_id:
            if new_status == ProjectStatus.CONCLUIDO:
                await notify(
                    db, project.user_id, NotificationType.PROJETO_CONCLUIDO,
                    "Projeto concluído!",
                    f"O projeto {project.name} foi concluído.",
                    {"project_id": project.id},
                )
            else:
                await notify(
                    db, project.user_id, NotificationType.PROJETO_ATUALIZADO,
                    "Status do projeto atualizado",
                    f"O projeto {project.name} agora está: {PROJECT_STATUS_LABELS[new_status]}.",
                    {"project_id": project.id, "old_status": old_status.value, "new_status": new_status.value},
                )

    logger.info(f"Project {project.id[:8]}: {old_status.value} → {new_status.value} [admin={admin.id[:8]}]")
    return {"project_id": project.id, "old_status": old_status.value, "new_status": new_status.value}


async def toggle_milestone(
    db: AsyncSession,
    admin: CurrentUser,
    project_id: str,
    milestone_id: str,
    completed: Optional[bool] = None,
) -> Dict[str, Any]:
    """Set (or flip, when completed is None) a milestone and recompute project progress."""
    project = await get_project(db, project_id)
    validate_id(milestone_id, "milestone_id")

    result = await db.execute(
        select(ProjectMilestone).where(ProjectMilestone.project_id == project.id)
    )
    milestones = list(result.scalars().all())
    milestone = next((m for m in milestones if m.id == milestone_id), None)
    if milestone is None:
        raise NotFound("Milestone not found")

    target = (not milestone.completed) if completed is None else completed

    async with atomic(db):
        now = utcnow()
        milestone.completed = target
        milestone.completed_at = now if target else None
        progress = project_progress(milestones)
        project.progress = progress
        project.updated_at = now

        _audit(db, admin.id, AuditEventType.MILESTONE_TOGGLED, "project", project.id,
               {"milestone_id": milestone.id, "completed": target, "progress": progress})
        if target and project.user_id:
            await notify(
                db, project.user_id, NotificationType.MILESTONE_CONCLUIDA,
                "Etapa concluída",
                f"A etapa {milestone.name} do projeto {project.name} foi concluída.",
                {"project_id": project.id, "milestone_id": milestone.id, "progress": progress},
            )

    return {"milestone_id": milestone.id, "milestone_completed": target, "progress": progress}


async def add_project_note(
    db: AsyncSession, admin: CurrentUser, project_id: str, content: str,
) -> ProjectComment:
    project = await get_project(db, project_id)

    async with atomic(db):
        comment = ProjectComment(
            id=new_uuid(),
            project_id=project.id,
            user_id=admin.id,
            content=content,
            created_at=utcnow(),
        )
        db.add(comment)
        project.updated_at = utcnow()
        _audit(db, admin.id, AuditEventType.PROJECT_NOTE_ADDED, "project", project.id,
               {"comment_id": comment.id})
        if project.user_id:
            await notify(
                db, project.user_id, NotificationType.NOVA_MENSAGEM,
                "Nova mensagem da equipe",
                f"A equipe deixou uma nota no projeto {project.name}.",
                {"project_id": project.id, "comment_id": comment.id},
            )

    return comment


# ============================================================
# CLIENTS
# ============================================================

async def deactivate_client(db: AsyncSession, admin: CurrentUser, client_id: str) -> Dict[str, Any]:
    """Deactivate a client account. Repeating the call on an inactive client is a no-op."""
    validate_id(client_id, "client_id")
    result = await db.execute(
        select(User).where(User.id == client_id, User.role == UserRole.CLIENT)
    )
    client = result.scalar_one_or_none()
    if not client:
        raise NotFound("Client not found")

    if not client.is_active:
        return {"client_id": client.id, "is_active": False, "changed": False}

    active_projects = (await db.execute(
        select(func.count(Project.id)).where(
            Project.user_id == client.id,
            Project.status.in_(OPEN_PROJECT_STATUSES),
        )
    )).scalar() or 0
    if active_projects:
        raise InvalidTransition(
            f"Client has {active_projects} active project(s). Finish or pause them before deactivating."
        )

    async with atomic(db):
        client.is_active = False
        _audit(db, admin.id, AuditEventType.USER_DEACTIVATED, "user", client.id)
        await notify(
            db, client.id, NotificationType.SISTEMA,
            "Conta desativada",
            "Sua conta foi desativada por um administrador. Entre em contato com o suporte para mais informações.",
            {"deactivated_by": admin.id},
        )

    logger.info(f"Client deactivated: {client.id[:8]} [admin={admin.id[:8]}]")
    return {"client_id": client.id, "is_active": False, "changed": True}
