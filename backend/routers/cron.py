# routers/cron.py — Scheduled jobs triggered by an external scheduler
import os
import hmac
import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db_session
from errors import Unauthorized
from retention import run_retention_sweep

logger = logging.getLogger("agency-portal.cron")

router = APIRouter(prefix="/api/v1/cron", tags=["Cron"])


def require_cron_secret(request: Request) -> None:
    """Bearer CRON_SECRET. With no secret configured every call is refused."""
    secret = os.getenv("CRON_SECRET", "")
    header = request.headers.get("Authorization", "")
    if not secret:
        logger.warning("Cron call refused: CRON_SECRET is not configured")
        raise Unauthorized("Unauthorized")
    if not hmac.compare_digest(header.encode(), f"Bearer {secret}".encode()):
        raise Unauthorized("Unauthorized")


@router.get("/data-retention", dependencies=[Depends(require_cron_secret)])
async def data_retention(db: AsyncSession = Depends(get_db_session)):
    logger.info("Data retention sweep started")
    result = await run_retention_sweep(db)
    logger.info(
        f"Data retention sweep finished in {result['duration']}: {result['summary']} "
        f"({len(result['errors'])} error(s))"
    )
    return result
