"""
Error taxonomy surfaced to booking callers.

Every error carries a stable ``code`` and an HTTP status. Messages are safe to
show to end users; underlying database/provider details are logged, not returned.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from slotbook.core.middleware import redact_path

logger = logging.getLogger(__name__)


class BookingEngineError(Exception):
    code = "internal_error"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code}


class ValidationFailed(BookingEngineError):
    """Malformed or out-of-policy input, including terminal-state transitions."""
    code = "validation_error"
    status_code = 400


class NotFound(BookingEngineError):
    code = "not_found"
    status_code = 404

    def __init__(self, resource: str = "Resource"):
        super().__init__(f"{resource} not found")
        self.resource = resource


class SlotUnavailable(BookingEngineError):
    """Re-validation failed; the client must refresh availability and retry."""
    code = "slot_unavailable"
    status_code = 409


class RateLimited(BookingEngineError):
    code = "rate_limited"
    status_code = 429

    def __init__(self, message: str = "Too many requests. Please try again later.", retry_after: int = 60):
        super().__init__(message)
        self.retry_after = retry_after


class InternalFailure(BookingEngineError):
    """Persistence failure; the only case that rolls a transition back."""
    code = "internal_error"
    status_code = 500


async def booking_engine_error_handler(request: Request, exc: BookingEngineError) -> JSONResponse:
    correlation_id = getattr(request.state, "correlation_id", "unknown")
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        f"{exc.code} on {request.method} {redact_path(request.url.path)}: {exc.message}",
        extra={"correlation_id": correlation_id},
    )

    headers = None
    if isinstance(exc, RateLimited):
        headers = {"Retry-After": str(exc.retry_after)}

    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


def _first_validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    # Messages from our own validators are already user-facing
    ctx_error = (first.get("ctx") or {}).get("error")
    if ctx_error is not None:
        return str(ctx_error)
    field = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path"))
    message = first.get("msg", "Invalid value")
    return f"{field}: {message}" if field else message


async def request_validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed request bodies and query strings use the same envelope as every other error"""
    return await booking_engine_error_handler(request, ValidationFailed(_first_validation_message(exc)))


async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Store failures outside the guarded writes; the driver message stays in the log"""
    logger.error(f"Database error on {request.method} {redact_path(request.url.path)}: {exc}", exc_info=exc)
    return await booking_engine_error_handler(
        request, InternalFailure("Something went wrong on our side. Please try again.")
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BookingEngineError, booking_engine_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
    app.add_exception_handler(SQLAlchemyError, database_error_handler)
