# comments.py — Project comment threads
import logging
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from auth import CurrentUser
from database import atomic
from errors import NotFound, Forbidden, ValidationError
from models import Project, ProjectComment, ProjectMilestone, User, NotificationType, utcnow, new_uuid
from notification_service import notify, notify_admins
from validation import validate_id

logger = logging.getLogger("agency-portal.comments")

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 50


async def get_visible_project(db: AsyncSession, user: CurrentUser, project_id: str) -> Project:
    """Owner or admin; anyone else gets the same answer as for an unknown id."""
    validate_id(project_id, "project_id")
    stmt = select(Project).where(Project.id == project_id)
    if not user.is_admin:
        stmt = stmt.where(Project.user_id == user.id)
    project = (await db.execute(stmt)).scalar_one_or_none()
    if not project:
        raise NotFound("Project not found")
    return project


async def add_comment(
    db: AsyncSession,
    user: CurrentUser,
    project_id: str,
    content: str,
    milestone_id: Optional[str] = None,
) -> ProjectComment:
    project = await get_visible_project(db, user, project_id)

    milestone = None
    if milestone_id:
        milestone = (await db.execute(
            select(ProjectMilestone).where(
                ProjectMilestone.id == milestone_id,
                ProjectMilestone.project_id == project.id,
            )
        )).scalar_one_or_none()
        if not milestone:
            raise ValidationError("Milestone does not belong to this project",
                                  fields={"milestone_id": "Unknown milestone for this project"})

    author_name = user.name or "Usuário"
    where = f" (Etapa: {milestone.name})" if milestone else ""
    data = {
        "project_id": project.id,
        "milestone_id": milestone.id if milestone else None,
        "author_id": user.id,
    }

    async with atomic(db):
        comment = ProjectComment(
            id=new_uuid(),
            project_id=project.id,
            milestone_id=milestone.id if milestone else None,
            user_id=user.id,
            content=content,
            created_at=utcnow(),
        )
        db.add(comment)
        project.updated_at = utcnow()
        data["comment_id"] = comment.id

        if user.is_admin:
            if project.user_id and project.user_id != user.id:
                await notify(
                    db, project.user_id, NotificationType.NOVA_MENSAGEM,
                    "Nova mensagem no projeto",
                    f"A equipe respondeu no projeto {project.name}{where}",
                    data,
                )
        else:
            await notify_admins(
                db, NotificationType.NOVA_MENSAGEM,
                "Novo comentário em projeto",
                f"Novo comentário de {author_name} no projeto {project.name}{where}",
                data,
            )

    logger.info(f"Comment added: {comment.id[:8]} on project {project.id[:8]}")
    return comment


async def list_comments(
    db: AsyncSession,
    user: CurrentUser,
    project_id: str,
    limit: int = DEFAULT_PAGE_SIZE,
    offset: int = 0,
) -> dict:
    project = await get_visible_project(db, user, project_id)
    limit = max(1, min(limit, MAX_PAGE_SIZE))

    total = (await db.execute(
        select(func.count(ProjectComment.id)).where(ProjectComment.project_id == project.id)
    )).scalar() or 0

    rows = (await db.execute(
        select(ProjectComment, User)
        .join(User, User.id == ProjectComment.user_id)
        .where(ProjectComment.project_id == project.id)
        .order_by(ProjectComment.created_at.desc(), ProjectComment.id)
        .offset(offset)
        .limit(limit)
    )).all()

    return {
        "comments": [comment_to_dict(c, author) for c, author in rows],
        "total": total,
        "has_more": offset + len(rows) < total,
    }


async def delete_comment(db: AsyncSession, user: CurrentUser, comment_id: str) -> None:
    validate_id(comment_id, "comment_id")
    comment = (await db.execute(
        select(ProjectComment).where(ProjectComment.id == comment_id)
    )).scalar_one_or_none()
    if not comment:
        raise NotFound("Comment not found")
    if comment.user_id != user.id and not user.is_admin:
        raise Forbidden("Only the author or an admin can delete this comment")

    async with atomic(db):
        await db.delete(comment)


def comment_to_dict(comment: ProjectComment, author: Optional[User] = None) -> dict:
    out = {
        "id": comment.id,
        "project_id": comment.project_id,
        "milestone_id": comment.milestone_id,
        "user_id": comment.user_id,
        "content": comment.content,
        "created_at": comment.created_at.isoformat() if comment.created_at else None,
    }
    if author is not None:
        out["author"] = {
            "id": author.id,
            "name": author.name,
            "role": author.role.value if hasattr(author.role, "value") else author.role,
        }
    return out
