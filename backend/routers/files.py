# routers/files.py — Project file upload, listing, download and removal
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, UploadFile
from fastapi.responses import FileResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth import CurrentUser, require_any_user
from database import get_db_session
from errors import NotFound, envelope
from models import ProjectFile
from validation import validate_id
import storage

router = APIRouter(prefix="/api/v1", tags=["Files"])

DOWNLOAD_CACHE_CONTROL = "private, max-age=3600"


@router.post("/projects/{project_id}/files", status_code=201)
async def upload_file(
    project_id: str,
    file: UploadFile = File(...),
    user: CurrentUser = Depends(require_any_user),
    db: AsyncSession = Depends(get_db_session),
):
    validate_id(project_id, "project_id")
    project = await storage.get_uploadable_project(db, user, project_id)
    record = await storage.save_upload(db, user, project, file)
    return envelope(storage.file_to_dict(record), "File uploaded")


@router.get("/storage")
async def my_storage(
    user: CurrentUser = Depends(require_any_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Bytes used across the caller's projects against their plan quota"""
    return envelope(await storage.user_storage_info(db, user))


@router.get("/projects/{project_id}/files")
async def list_project_files(
    project_id: str,
    user: CurrentUser = Depends(require_any_user),
    db: AsyncSession = Depends(get_db_session),
):
    validate_id(project_id, "project_id")
    project = await storage.get_uploadable_project(db, user, project_id)
    result = await db.execute(
        select(ProjectFile)
        .where(ProjectFile.project_id == project.id)
        .order_by(ProjectFile.created_at.desc())
    )
    return envelope([storage.file_to_dict(f) for f in result.scalars().all()])


@router.get("/files/{file_id}")
async def download_file(
    file_id: str,
    user: CurrentUser = Depends(require_any_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Stream a stored file. Missing rows and missing bytes both answer 404."""
    validate_id(file_id, "file_id")
    record = await storage.get_accessible_file(db, user, file_id)
    if not await storage.file_exists(record.storage_path):
        raise NotFound("File not found on storage")

    return FileResponse(
        storage.absolute_path(record.storage_path),
        media_type=record.mime_type,
        headers={
            "Content-Disposition": f'attachment; filename="{quote(record.original_name)}"',
            "Cache-Control": DOWNLOAD_CACHE_CONTROL,
        },
    )


@router.delete("/files/{file_id}")
async def delete_file(
    file_id: str,
    user: CurrentUser = Depends(require_any_user),
    db: AsyncSession = Depends(get_db_session),
):
    validate_id(file_id, "file_id")
    await storage.delete_file(db, user, file_id)
    return envelope(message="File deleted")
