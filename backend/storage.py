# storage.py — Project file storage on the local filesystem
# Files live under UPLOAD_DIR/projects/<project_id>/; the database keeps the
# path relative to UPLOAD_DIR. Disk I/O runs in Starlette's threadpool.

import os
import re
import logging
from typing import Optional

from fastapi import UploadFile
from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from auth import CurrentUser
from database import atomic
from errors import NotFound, Forbidden, ValidationError
from models import (
    ProjectFile, Project, Briefing, PricingPlan, AuditLog, AuditEventType, new_uuid, utcnow,
)

logger = logging.getLogger("agency-portal.storage")

UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")

MB = 1024 * 1024
GB = 1024 * MB

# extension -> (mime types accepted, category)
FILE_TYPES = {
    "pdf": (("application/pdf",), "document"),
    "doc": (("application/msword",), "document"),
    "docx": (("application/vnd.openxmlformats-officedocument.wordprocessingml.document",), "document"),
    "txt": (("text/plain",), "document"),
    "md": (("text/markdown", "text/plain"), "document"),
    "xls": (("application/vnd.ms-excel",), "document"),
    "xlsx": (("application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",), "document"),
    "jpg": (("image/jpeg",), "image"),
    "jpeg": (("image/jpeg",), "image"),
    "png": (("image/png",), "image"),
    "svg": (("image/svg+xml",), "image"),
    "gif": (("image/gif",), "image"),
    "mp4": (("video/mp4",), "video"),
    "mov": (("video/quicktime",), "video"),
    "avi": (("video/x-msvideo",), "video"),
    "zip": (("application/zip", "application/x-zip-compressed"), "archive"),
    "rar": (("application/vnd.rar", "application/x-rar-compressed"), "archive"),
}

SIZE_LIMITS = {
    "document": 10 * MB,
    "image": 5 * MB,
    "video": 100 * MB,
    "archive": 50 * MB,
}

_UNSAFE_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
MAX_FILENAME_LENGTH = 200


def sanitize_filename(filename: str) -> str:
    name = _UNSAFE_CHARS.sub("_", filename or "")
    name = name.replace("..", "_").strip()
    if len(name) > MAX_FILENAME_LENGTH:
        # Shorten the stem so the extension survives
        stem, dot, ext = name.rpartition(".")
        if dot and stem and len(ext) < MAX_FILENAME_LENGTH - 1:
            name = stem[:MAX_FILENAME_LENGTH - len(ext) - 1] + "." + ext
        else:
            name = name[:MAX_FILENAME_LENGTH]
    return name or "file"


def file_extension(filename: str) -> str:
    _, _, ext = (filename or "").rpartition(".")
    return ext.lower() if "." in (filename or "") else ""


def check_file_type(filename: str, content_type: Optional[str]) -> str:
    """Return the file category or raise ValidationError."""
    ext = file_extension(filename)
    if ext not in FILE_TYPES:
        raise ValidationError("File type not allowed", fields={"file": f"Extension .{ext or '?'} is not allowed"})
    mime_types, category = FILE_TYPES[ext]
    mime = (content_type or "").split(";")[0].strip().lower()
    if mime and mime != "application/octet-stream" and mime not in mime_types:
        raise ValidationError("File type not allowed", fields={"file": f"Content type {mime} does not match .{ext}"})
    return category


def check_file_size(category: str, size: int) -> None:
    if size <= 0:
        raise ValidationError("Empty file", fields={"file": "File is empty"})
    limit = SIZE_LIMITS[category]
    if size > limit:
        raise ValidationError(
            "File too large",
            fields={"file": f"Maximum size for {category} files is {limit // MB}MB"},
        )


def absolute_path(storage_path: str) -> str:
    root = os.path.realpath(UPLOAD_DIR)
    full = os.path.realpath(os.path.join(root, storage_path))
    if not full.startswith(root + os.sep):
        raise NotFound("File not found")
    return full


def _write_bytes(path: str, content: bytes) -> None:
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as fh:
        fh.write(content)


def _remove(path: str) -> None:
    if os.path.exists(path):
        os.remove(path)


async def file_exists(storage_path: str) -> bool:
    return await run_in_threadpool(os.path.isfile, absolute_path(storage_path))


async def remove_stored_files(storage_paths) -> None:
    """Drop the bytes of files whose rows are already gone."""
    for storage_path in storage_paths:
        try:
            await run_in_threadpool(_remove, absolute_path(storage_path))
        except OSError as e:
            logger.warning(f"Could not remove stored file {storage_path}: {e}")


# ============================================================
# QUOTA
# ============================================================

async def storage_usage(db: AsyncSession, project: Project) -> dict:
    """Quota comes from the pricing plan of the project's service type (GB)."""
    plan = None
    if project.briefing_id:
        plan = (await db.execute(
            select(PricingPlan)
            .join(Briefing, Briefing.service_type == PricingPlan.service_type)
            .where(Briefing.id == project.briefing_id)
        )).scalar_one_or_none()
    if plan is None:
        raise ValidationError("No pricing plan found for the contracted service")

    used = (await db.execute(
        select(func.coalesce(func.sum(ProjectFile.size), 0))
        .join(Project, Project.id == ProjectFile.project_id)
        .where(Project.user_id == project.user_id)
    )).scalar() or 0

    limit = plan.storage_limit * GB
    return {
        "used": int(used),
        "limit": limit,
        "available": max(limit - int(used), 0),
        "percentage": round(used / limit * 100) if limit else 0,
    }


async def user_storage_info(db: AsyncSession, user: CurrentUser) -> dict:
    """Usage against the plan of the caller's most recent project."""
    project = (await db.execute(
        select(Project)
        .where(Project.user_id == user.id, Project.briefing_id.isnot(None))
        .order_by(Project.created_at.desc())
        .limit(1)
    )).scalar_one_or_none()
    if project is None:
        raise NotFound("No project found for this account")
    return await storage_usage(db, project)


# ============================================================
# ACCESS
# ============================================================

async def get_uploadable_project(db: AsyncSession, user: CurrentUser, project_id: str) -> Project:
    stmt = select(Project).outerjoin(Briefing, Briefing.id == Project.briefing_id).where(Project.id == project_id)
    if not user.is_admin:
        stmt = stmt.where(or_(Project.user_id == user.id, Briefing.user_id == user.id))
    project = (await db.execute(stmt)).scalar_one_or_none()
    if not project:
        raise NotFound("Project not found")
    return project


async def get_accessible_file(db: AsyncSession, user: CurrentUser, file_id: str) -> ProjectFile:
    """Uploader, project owner or briefing owner. Everyone else sees 404."""
    stmt = (
        select(ProjectFile)
        .outerjoin(Project, Project.id == ProjectFile.project_id)
        .outerjoin(Briefing, Briefing.id == Project.briefing_id)
        .where(
            ProjectFile.id == file_id,
            or_(
                ProjectFile.user_id == user.id,
                Project.user_id == user.id,
                Briefing.user_id == user.id,
            ),
        )
    )
    record = (await db.execute(stmt)).scalar_one_or_none()
    if not record:
        raise NotFound("File not found")
    return record


# ============================================================
# OPERATIONS
# ============================================================

async def save_upload(db: AsyncSession, user: CurrentUser, project: Project, upload: UploadFile) -> ProjectFile:
    original_name = sanitize_filename(upload.filename or "")
    category = check_file_type(original_name, upload.content_type)

    # Read at most one byte past the limit so oversized uploads are not buffered whole
    content = await upload.read(SIZE_LIMITS[category] + 1)
    check_file_size(category, len(content))

    usage = await storage_usage(db, project)
    if len(content) > usage["available"]:
        raise ValidationError("Storage limit reached", fields={"file": "Not enough storage space available"})

    file_id = new_uuid()
    stored_name = f"{file_id}-{original_name}"
    storage_path = os.path.join("projects", project.id, stored_name)
    full_path = absolute_path(storage_path)

    await run_in_threadpool(_write_bytes, full_path, content)
    try:
        async with atomic(db):
            record = ProjectFile(
                id=file_id,
                project_id=project.id,
                user_id=user.id,
                original_name=original_name,
                stored_name=stored_name,
                mime_type=FILE_TYPES[file_extension(original_name)][0][0],
                size=len(content),
                storage_path=storage_path,
                created_at=utcnow(),
            )
            db.add(record)
            db.add(AuditLog(
                id=new_uuid(), event_type=AuditEventType.FILE_UPLOADED, user_id=user.id,
                resource_type="project_file", resource_id=file_id,
                details={"project_id": project.id, "size": len(content)},
            ))
    except Exception:
        await run_in_threadpool(_remove, full_path)
        raise

    logger.info(f"File uploaded: {file_id[:8]} ({len(content)} bytes) to project {project.id[:8]}")
    return record


async def delete_file(db: AsyncSession, user: CurrentUser, file_id: str) -> None:
    if user.is_admin:
        record = (await db.execute(select(ProjectFile).where(ProjectFile.id == file_id))).scalar_one_or_none()
        if not record:
            raise NotFound("File not found")
    else:
        record = await get_accessible_file(db, user, file_id)
    if record.user_id != user.id and not user.is_admin:
        raise Forbidden("Only the uploader or an admin can delete this file")

    async with atomic(db):
        await db.delete(record)
        db.add(AuditLog(
            id=new_uuid(), event_type=AuditEventType.FILE_DELETED, user_id=user.id,
            resource_type="project_file", resource_id=record.id,
        ))
    await run_in_threadpool(_remove, absolute_path(record.storage_path))


def file_to_dict(record: ProjectFile) -> dict:
    return {
        "id": record.id,
        "project_id": record.project_id,
        "user_id": record.user_id,
        "filename": record.original_name,
        "mime_type": record.mime_type,
        "size": record.size,
        "created_at": record.created_at.isoformat() if record.created_at else None,
    }
