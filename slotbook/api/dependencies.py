# ============================================================================
# FILE: slotbook/api/dependencies.py
# Request-scoped services, client origin, rate limiting and the cron capability
# ============================================================================
import hmac
import logging
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from slotbook.config.database import get_db
from slotbook.config.settings import get_settings
from slotbook.core.capabilities import CronCapability
from slotbook.core.errors import RateLimited
from slotbook.services.booking.booking_service import BookingService
from slotbook.services.booking.rate_limiter import get_booking_rate_limiter
from slotbook.services.notification.notification_service import default_notifier

logger = logging.getLogger(__name__)

# ============================================================================
# Security Schemes
# ============================================================================

cron_security = HTTPBearer(
    scheme_name="Cron Secret",
    description="Bearer CRON_SECRET, held by the scheduled reminder trigger",
    auto_error=False,
)


# ============================================================================
# Services
# ============================================================================

def get_booking_service(db: Session = Depends(get_db)) -> BookingService:
    """Booking engine wired to Google Calendar, email and webhooks"""
    return BookingService(db, notifier=default_notifier(db))


# ============================================================================
# Client origin and rate limiting
# ============================================================================

def get_client_origin(request: Request) -> str:
    """First X-Forwarded-For hop, then X-Real-IP, then the socket peer"""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else "unknown"


async def enforce_booking_rate_limit(origin: str = Depends(get_client_origin)) -> None:
    limiter = get_booking_rate_limiter()
    decision = await limiter.hit(origin)
    if not decision.allowed:
        logger.warning(f"Booking rate limit exceeded for origin {origin}")
        raise RateLimited("Too many booking requests. Please try again later.", retry_after=decision.retry_after)


# ============================================================================
# Cron capability
# ============================================================================

def require_cron_capability(
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(cron_security),
) -> CronCapability:
    """
    Issue a CronCapability to callers presenting the cron secret.

    With no CRON_SECRET configured nobody gets one.
    """
    secret = get_settings().CRON_SECRET
    if not secret or credentials is None or not hmac.compare_digest(
            credentials.credentials.encode(), secret.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return CronCapability(issued_to="cron")
