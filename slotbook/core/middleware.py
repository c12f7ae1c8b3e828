# slotbook/core/middleware.py
"""Custom middleware for request handling"""
import re
import uuid
import time
import logging
from starlette.requests import Request

logger = logging.getLogger(__name__)

_MANAGE_TOKEN_PATH = re.compile(r"^(/api/v1/manage/)[^/]+")


def redact_path(path: str) -> str:
    """Manage URLs carry the capability token; keep only the route shape"""
    return _MANAGE_TOKEN_PATH.sub(r"\1<token>", path)


async def correlation_id_middleware(request: Request, call_next):
    """Add correlation ID to all requests for tracing"""
    correlation_id = request.headers.get("X-Correlation-ID") or str(uuid.uuid4())
    request.state.correlation_id = correlation_id

    response = await call_next(request)
    response.headers["X-Correlation-ID"] = correlation_id
    return response


async def request_logging_middleware(request: Request, call_next):
    """Log all incoming requests"""
    start_time = time.time()
    correlation_id = getattr(request.state, "correlation_id", "unknown")

    path = redact_path(request.url.path)

    logger.info(
        f"Request started {request.method} {path}",
        extra={
            "correlation_id": correlation_id,
            "method": request.method,
            "path": path,
            "client": request.client.host if request.client else "unknown",
        }
    )

    response = await call_next(request)

    duration = time.time() - start_time
    logger.info(
        f"Request completed {request.method} {path} {response.status_code}",
        extra={
            "correlation_id": correlation_id,
            "method": request.method,
            "path": path,
            "status_code": response.status_code,
            "duration_ms": round(duration * 1000, 2),
        }
    )

    return response
