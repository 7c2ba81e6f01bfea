# main.py — Agency Portal API application
# Wires CORS, the request-id middleware, error handlers and every router.

import os
import uuid
import time
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from database import init_db, close_db, get_db_session
from errors import register_exception_handlers
from telemetry import setup_telemetry

# Logging
logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
)
logger = logging.getLogger("agency-portal")

VERSION = "1.0.0"
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
INSECURE_JWT_SECRETS = {"", "change-me", "generate-a-64-char-random-string-here"}


def _check_startup_config():
    """Validate critical configuration on startup."""
    warnings = []

    jwt_key = os.getenv("JWT_SECRET_KEY", "")
    if jwt_key in INSECURE_JWT_SECRETS or len(jwt_key) < 32:
        if ENVIRONMENT == "production":
            raise RuntimeError("JWT_SECRET_KEY must be set to a random value of at least 32 characters in production")
        warnings.append("JWT_SECRET_KEY is not set or insecure; sessions will not survive a restart")

    if not os.getenv("CRON_SECRET"):
        warnings.append("CRON_SECRET is not set; the data retention endpoint will refuse every call")

    if not os.getenv("APP_BASE_URL"):
        warnings.append("APP_BASE_URL is not set; email verification redirects will be relative")

    for w in warnings:
        logger.warning(w)

    return len(warnings) == 0


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting Agency Portal API v{VERSION} ({ENVIRONMENT})")
    _check_startup_config()
    await init_db()
    # No-op unless OTEL_EXPORTER_OTLP_ENDPOINT is set
    setup_telemetry(app)
    yield
    logger.info("Shutting down Agency Portal API")
    await close_db()


app = FastAPI(
    title="Agency Portal",
    description="Client briefings, project tracking and administration for a digital agency",
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# ============================================================
# CORS
# ============================================================

ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    # Browser sessions ride on the access_token cookie
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    # Downloads and CSV exports name their file here
    expose_headers=["X-Request-ID", "Content-Disposition"],
)


# ============================================================
# MIDDLEWARE: Request IDs + Security Headers
# ============================================================

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    """Tag the request with an id that error envelopes echo back."""
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id

    start = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - start) * 1000

    response.headers["X-Request-ID"] = request_id
    response.headers.update(SECURITY_HEADERS)
    if request.url.path != "/health":
        logger.info(
            f"{request.method} {request.url.path} {response.status_code} "
            f"{elapsed_ms:.0f}ms [rid={request_id[:8]}]"
        )
    return response


# ============================================================
# EXCEPTION HANDLERS
# ============================================================

register_exception_handlers(app)


# ============================================================
# ROUTERS
# ============================================================

from routers import (
    auth, briefings, admin_briefings, projects, admin_projects, admin_clients,
    pricing, files, notifications, cron, account, admin_retention,
)

app.include_router(auth.router)
app.include_router(account.router)
app.include_router(briefings.router)
app.include_router(projects.router)
app.include_router(files.router)
app.include_router(notifications.router)
app.include_router(pricing.router)

# Admin back office
app.include_router(admin_briefings.router)
app.include_router(admin_projects.router)
app.include_router(admin_clients.router)
app.include_router(admin_retention.router)

app.include_router(cron.router)


# ============================================================
# HEALTH
# ============================================================

@app.get("/health")
async def health_check(db: AsyncSession = Depends(get_db_session)):
    """Liveness plus a round trip to the store; never fails the request itself."""
    try:
        await db.execute(text("SELECT 1"))
        database = "connected"
    except (SQLAlchemyError, OSError, TimeoutError) as e:
        logger.error(f"Health check could not reach the database: {e}")
        database = "error"

    return {
        "status": "healthy" if database == "connected" else "degraded",
        "version": VERSION,
        "database": database,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host=os.getenv("HOST", "127.0.0.1"), port=int(os.getenv("PORT", "8000")))
