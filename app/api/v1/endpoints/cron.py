"""Scheduler endpoints - authenticated with the shared cron secret"""

from dataclasses import asdict
from typing import Any
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.schemas.responses import SuccessResponse
from app.services import scheduled_triggers
from app.services.notification_queue import NotificationQueueService

router = APIRouter(dependencies=[Depends(deps.require_cron_secret)])


@router.post("/overdue-check", response_model=SuccessResponse)
async def overdue_check(db: AsyncSession = Depends(deps.get_db)) -> Any:
    """Mark past-due billings overdue and queue overdue notices."""
    result = await scheduled_triggers.run_overdue_sweep(db)
    return SuccessResponse(data=result.as_dict(), message="Overdue check completed")


@router.post("/billing-reminders", response_model=SuccessResponse)
async def billing_reminders(db: AsyncSession = Depends(deps.get_db)) -> Any:
    result = await scheduled_triggers.run_billing_reminders(db)
    return SuccessResponse(data=result.as_dict(), message="Billing reminders queued")


@router.post("/lease-expiry", response_model=SuccessResponse)
async def lease_expiry(db: AsyncSession = Depends(deps.get_db)) -> Any:
    result = await scheduled_triggers.run_lease_expiry(db)
    return SuccessResponse(data=result.as_dict(), message="Lease expiry reminders queued")


@router.post("/process-queue", response_model=SuccessResponse)
async def process_queue(db: AsyncSession = Depends(deps.get_db)) -> Any:
    """Deliver due notifications for every company."""
    result = await NotificationQueueService.drain(db)
    return SuccessResponse(data=asdict(result), message="Notification queue processed")
