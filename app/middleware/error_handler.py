import logging
import traceback
from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import IntegrityError
from app.utils.exceptions import AppException, ErrorCode

logger = logging.getLogger(__name__)


def _error_body(message: str, code: str, details=None, field=None) -> dict:
    return {
        "success": False,
        "message": message,
        "error_code": code,
        "error": {
            "code": code,
            "details": details,
            "field": field,
        }
    }


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handle all AppException subclasses (our custom exceptions)."""
    detail = exc.detail
    error = detail.get("error", {"code": ErrorCode.INTERNAL_SERVER_ERROR})
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(
            detail.get("message", "An error occurred"),
            error.get("code", ErrorCode.INTERNAL_SERVER_ERROR),
            error.get("details"),
            error.get("field"),
        ),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Handle Pydantic validation errors (422).
    Converts FastAPI's default validation error format into our standardized format.
    """
    details = []
    for error in exc.errors():
        # loc is a tuple like ("body", "latitude") or ("query", "limit")
        loc = error.get("loc", [])
        field = ".".join(str(l) for l in loc if l not in ("body", "query", "path")) if loc else "unknown"
        details.append({
            "field": field,
            "message": error.get("msg", "Invalid value"),
        })

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=_error_body(
            "Validation error. Please check your input.",
            ErrorCode.VALIDATION_ERROR,
            details,
        ),
    )


async def integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    """
    Handle SQLAlchemy IntegrityError (unique constraint violations, FK violations).
    Prevents raw DB errors from leaking to the client.
    """
    logger.warning(f"IntegrityError on {request.method} {request.url}: {exc.orig}")
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content=_error_body("A record with this data already exists.", ErrorCode.DUPLICATE_ENTRY),
    )


async def database_unavailable_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Store unreachable or timed out. Reported as 503; retrying is the caller's call.
    """
    logger.error(f"Database unavailable on {request.method} {request.url}: {exc.__class__.__name__}")
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content=_error_body(
            "A backing data store is unavailable. Please try again later.",
            ErrorCode.SERVICE_UNAVAILABLE,
        ),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Catch-all handler for unexpected exceptions.
    Logs the full traceback, returns a safe 500 response.
    """
    logger.error(
        f"Unhandled exception on {request.method} {request.url}\n"
        f"{traceback.format_exc()}"
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body(
            "An unexpected error occurred. Please try again later.",
            ErrorCode.INTERNAL_SERVER_ERROR,
        ),
    )
