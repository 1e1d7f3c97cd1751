# errors.py — Application error taxonomy and FastAPI exception handlers
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger("kanban.errors")


class AppError(Exception):
    """Base class for errors that map onto a JSON ``{"error": ...}`` response"""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthenticated(AppError):
    status_code = 401
    default_message = "Unauthorized"


class Forbidden(AppError):
    status_code = 403
    default_message = "Not a member of this project"


class ValidationError(AppError):
    status_code = 400
    default_message = "Invalid request"


class NotFound(AppError):
    status_code = 404
    default_message = "Not found"


class UpstreamError(AppError):
    status_code = 500
    default_message = "Upstream service failed"


def _error_response(request: Request, status_code: int, message: str, **extra) -> JSONResponse:
    content = {"error": message, **extra}
    content["request_id"] = getattr(request.state, "request_id", None)
    return JSONResponse(status_code=status_code, content=content)


def _describe_validation_error(err: dict) -> str:
    loc = [str(part) for part in err.get("loc", []) if part not in ("body", "query", "path")]
    field = ".".join(loc)
    if err.get("type") == "missing":
        return f"{field} is required" if field else "Request body is required"
    msg = str(err.get("msg", "Invalid value"))
    return f"{field}: {msg}" if field else msg


async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__}: {exc.message}")
    return _error_response(request, exc.status_code, exc.message)


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    # Sanitise errors to ensure JSON serialisability
    details = []
    for err in exc.errors():
        details.append({
            "type": str(err.get("type", "unknown")),
            "loc": [str(part) for part in err.get("loc", [])],
            "msg": str(err.get("msg", "")),
        })
    message = _describe_validation_error(exc.errors()[0]) if exc.errors() else "Invalid request"
    return _error_response(request, 400, message, details=details)


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return _error_response(request, exc.status_code, str(exc.detail))


async def database_exception_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"Database error: {exc}", exc_info=True)
    return _error_response(request, UpstreamError.status_code, "Database error")


async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return _error_response(request, 500, "Internal server error")


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(SQLAlchemyError, database_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)
