"""
API v1 router setup
Organized into: public (no auth / manage-token auth) and cron (cron secret) routes
"""
from fastapi import APIRouter

from slotbook.api.v1 import cron
from slotbook.api.v1.public import availability, bookings, manage

api_v1_router = APIRouter()

# ============================================================================
# PUBLIC ROUTES (No authentication required)
# ============================================================================
api_v1_router.include_router(availability.router, tags=["Public"])
api_v1_router.include_router(bookings.router, tags=["Public"])

# ============================================================================
# MANAGE ROUTES (manage token in the path is the credential)
# ============================================================================
api_v1_router.include_router(manage.router, tags=["Manage"])

# ============================================================================
# CRON ROUTES (Bearer CRON_SECRET)
# ============================================================================
api_v1_router.include_router(cron.router, tags=["Cron"])


# ============================================================================
# ROOT ENDPOINT - API Info
# ============================================================================
@api_v1_router.get("/")
async def api_info():
    return {
        "version": "v1",
        "endpoints": {
            "availability": "GET /api/v1/availability",
            "bookings": "POST /api/v1/bookings",
            "manage": "GET|POST /api/v1/manage/{token}[/cancel|/reschedule]",
            "cron": "GET /api/v1/cron/upcoming-bookings",
        },
    }
