"""Notification endpoints - manual send, queue, settings and in-app records"""

import math
from dataclasses import asdict
from typing import Any, Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from uuid import UUID

from app.api import deps
from app.models.company import User
from app.models.enums import NotificationQueueStatus
from app.schemas.notification import (
    DrainSummary,
    EnqueueSummary,
    InAppNotificationResponse,
    NotificationQueueResponse,
    NotificationSendRequest,
    NotificationSettingsSnapshot,
    NotificationSettingsUpdate,
)
from app.schemas.responses import PaginatedResponse, SuccessResponse
from app.services.notification_queue import NotificationQueueService
from app.services.notification_service import NotificationService

router = APIRouter()


@router.post("/send", response_model=SuccessResponse[EnqueueSummary], status_code=status.HTTP_202_ACCEPTED)
async def send_notification(
    request: NotificationSendRequest,
    current_user: User = Depends(deps.require_company_staff),
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    """Queue a notification for the selected tenants. Delivery happens on the next drain."""
    summary = await NotificationService.send_manual(db, current_user.company_id, request)
    return SuccessResponse(
        data=summary,
        message=f"{summary.queued} queued, {summary.skipped} skipped",
    )


@router.get("/queue", response_model=PaginatedResponse[NotificationQueueResponse])
async def list_queue(
    status_filter: Optional[NotificationQueueStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Items per page"),
    current_user: User = Depends(deps.require_company_staff),
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    items, total = await NotificationQueueService.list_queue(
        db, current_user.company_id, status=status_filter, page=page, page_size=page_size
    )
    return PaginatedResponse(
        data=[NotificationQueueResponse.model_validate(i) for i in items],
        meta={
            "page": page,
            "page_size": page_size,
            "total": total,
            "total_pages": math.ceil(total / page_size),
        },
    )


@router.post("/process-now", response_model=SuccessResponse[DrainSummary])
async def process_now(
    current_user: User = Depends(deps.require_company_staff),
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    """Drain this company's due notifications immediately."""
    result = await NotificationQueueService.drain(db, company_id=current_user.company_id)
    return SuccessResponse(data=DrainSummary(**asdict(result)), message="Queue processed")


@router.get("/settings", response_model=SuccessResponse[NotificationSettingsSnapshot])
async def get_settings(
    current_user: User = Depends(deps.require_company_staff),
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    snapshot = await NotificationService.get_settings(db, current_user.company_id)
    return SuccessResponse(data=snapshot)


@router.put("/settings", response_model=SuccessResponse[NotificationSettingsSnapshot])
async def update_settings(
    settings_in: NotificationSettingsUpdate,
    current_user: User = Depends(deps.require_company_staff),
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    snapshot = await NotificationService.update_settings(db, current_user.company_id, settings_in)
    return SuccessResponse(data=snapshot, message="Notification settings updated")


@router.get("/in-app", response_model=SuccessResponse[list[InAppNotificationResponse]])
async def list_in_app(
    unread_only: bool = False,
    current_user: User = Depends(deps.require_company_staff),
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    notifications = await NotificationService.list_in_app(
        db, current_user.company_id, current_user.id, unread_only=unread_only
    )
    return SuccessResponse(data=[InAppNotificationResponse.model_validate(n) for n in notifications])


@router.post("/in-app/{notification_id}/read", response_model=SuccessResponse[InAppNotificationResponse])
async def mark_in_app_read(
    notification_id: UUID,
    current_user: User = Depends(deps.require_company_staff),
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    notification = await NotificationService.mark_read(db, current_user.company_id, notification_id)
    return SuccessResponse(data=InAppNotificationResponse.model_validate(notification))
