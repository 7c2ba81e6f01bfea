# errors.py — Error taxonomy and the JSON envelope every route answers with
#
#   Unauthorized        401  no/invalid session
#   Forbidden           403  session present, role or verification insufficient
#   ValidationError     400  malformed or out-of-bounds input, per-field messages
#   NotFound            404  id does not resolve inside the caller's access scope
#   InvalidTransition   400  state machine violation
#   Conflict            409  uniqueness or precondition conflict
#   InternalError       500  store/transport failure, generic message only

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger("agency-portal.errors")

GENERIC_ERROR = "Internal server error"


class AppError(Exception):
    status_code = 500
    default_message = GENERIC_ERROR

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"success": False, "error": self.message}


class Unauthorized(AppError):
    status_code = 401
    default_message = "Not authenticated"


class Forbidden(Unauthorized):
    status_code = 403
    default_message = "Insufficient role privileges"


class ValidationError(AppError):
    status_code = 400
    default_message = "Invalid data"

    def __init__(self, message: Optional[str] = None, fields: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.fields = fields or {}

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        if self.fields:
            body["fields"] = self.fields
        return body


class NotFound(AppError):
    status_code = 404
    default_message = "Not found"


class Conflict(AppError):
    status_code = 409
    default_message = "Conflict"


class InvalidTransition(AppError):
    status_code = 400
    default_message = "Invalid status transition"


class InternalError(AppError):
    status_code = 500


# ============================================================
# RESPONSE ENVELOPE
# ============================================================

def envelope(data: Any = None, message: Optional[str] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": True}
    if data is not None:
        body["data"] = data
    if message:
        body["message"] = message
    return body


def _error_response(request: Request, status_code: int, body: Dict[str, Any]) -> JSONResponse:
    body["request_id"] = getattr(request.state, "request_id", None)
    return JSONResponse(status_code=status_code, content=body)


def _field_path(loc) -> str:
    # Drop the "body"/"query"/"path" prefix FastAPI adds
    parts = [str(p) for p in loc]
    if parts and parts[0] in ("body", "query", "path", "header", "cookie"):
        parts = parts[1:]
    return ".".join(parts) or "__root__"


def fields_from_errors(errors) -> Dict[str, str]:
    fields: Dict[str, str] = {}
    for err in errors:
        path = _field_path(err.get("loc", ()))
        fields.setdefault(path, str(err.get("msg", "Invalid value")))
    return fields


# ============================================================
# HANDLERS
# ============================================================

async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__}: {exc.message}")
        return _error_response(request, exc.status_code, {"success": False, "error": GENERIC_ERROR})
    return _error_response(request, exc.status_code, exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError):
    fields = fields_from_errors(exc.errors())
    return _error_response(request, 400, {"success": False, "error": "Invalid data", "fields": fields})


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return _error_response(request, exc.status_code, {"success": False, "error": str(exc.detail)})


async def integrity_error_handler(request: Request, exc: IntegrityError):
    logger.warning(f"Integrity error: {exc.orig}")
    return _error_response(request, 409, {"success": False, "error": "Conflicting record"})


async def store_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"Store failure: {exc}", exc_info=True)
    return _error_response(request, 500, {"success": False, "error": GENERIC_ERROR})


async def timeout_handler(request: Request, exc: TimeoutError):
    logger.error("Store call timed out", exc_info=True)
    return _error_response(request, 500, {"success": False, "error": GENERIC_ERROR})


async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return _error_response(request, 500, {"success": False, "error": GENERIC_ERROR})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(IntegrityError, integrity_error_handler)
    app.add_exception_handler(SQLAlchemyError, store_error_handler)
    app.add_exception_handler(TimeoutError, timeout_handler)
    app.add_exception_handler(Exception, global_exception_handler)
