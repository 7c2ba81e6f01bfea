# routers/admin_clients.py — Admin client directory, export and deactivation
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from auth import CurrentUser, require_admin
from database import get_db_session
from errors import envelope
from models import utcnow
from reporting import list_clients, get_client_detail, export_clients, to_csv
from validation import ClientFilters, validate
import workflows

router = APIRouter(prefix="/api/v1/admin/clients", tags=["Admin: Clients"])


def _filters(status, search, date_from, date_to) -> ClientFilters:
    return validate(ClientFilters, {
        "status": status, "search": search, "date_from": date_from, "date_to": date_to,
    })


@router.get("")
async def admin_list_clients(
    status: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    date_from: Optional[str] = Query(None),
    date_to: Optional[str] = Query(None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
):
    filters = _filters(status, search, date_from, date_to)
    return envelope(await list_clients(db, filters, limit, offset))


@router.get("/export")
async def admin_export_clients(
    format: str = Query(default="json", pattern="^(json|csv)$"),
    status: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    date_from: Optional[str] = Query(None),
    date_to: Optional[str] = Query(None),
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
):
    """Export the filtered client list as JSON rows or a spreadsheet-friendly CSV"""
    rows = await export_clients(db, _filters(status, search, date_from, date_to))
    if format == "csv":
        filename = f"clientes-{utcnow().strftime('%Y-%m-%d')}.csv"
        return Response(
            content=to_csv(rows),
            media_type="text/csv; charset=utf-8",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )
    return envelope(rows)


@router.get("/{client_id}")
async def admin_get_client(
    client_id: str,
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
):
    return envelope(await get_client_detail(db, client_id))


@router.post("/{client_id}/deactivate")
async def admin_deactivate_client(
    client_id: str,
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
):
    result = await workflows.deactivate_client(db, admin, client_id)
    message = "Client deactivated" if result["changed"] else "Client was already inactive"
    return envelope(result, message)
