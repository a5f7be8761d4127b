"""API V1 Router"""

from fastapi import APIRouter

# Import endpoint routers
from app.api.v1.endpoints import (
    billings, payments, meter_readings, meter_submissions,
    tenant, notifications, cron
)

# Create API v1 router
api_router = APIRouter()

# Include endpoint routers with prefixes and tags
api_router.include_router(billings.router, prefix="/billings", tags=["Billings"])
api_router.include_router(payments.router, prefix="/payments", tags=["Payments"])
api_router.include_router(meter_readings.router, prefix="/meter-readings", tags=["Meter Readings"])
api_router.include_router(meter_submissions.router, prefix="/meter-submissions", tags=["Meter Submissions"])
api_router.include_router(tenant.router, prefix="/tenant", tags=["Tenant Portal"])
api_router.include_router(notifications.router, prefix="/notifications", tags=["Notifications"])
api_router.include_router(cron.router, prefix="/cron", tags=["Scheduler"])
