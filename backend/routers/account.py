# routers/account.py — LGPD self-service: personal data export and account erasure
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from auth import AccountDeletion, CurrentUser, SESSION_COOKIE, get_current_user
from database import get_db_session
from errors import envelope
import account

router = APIRouter(prefix="/api/v1/account", tags=["Account"])


@router.get("/data-export")
async def export_my_data(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    return envelope(await account.export_user_data(db, user))


@router.post("/delete")
async def delete_my_account(
    data: AccountDeletion,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Password-confirmed erasure. Contractual projects and briefings are kept without an owner."""
    preserved = await account.delete_account(db, user, data)
    response = JSONResponse(envelope({"contractual_preserved": preserved}, "Account deleted"))
    response.delete_cookie(SESSION_COOKIE)
    return response
