"""Notification Service - settings, manual sends and staff in-app notifications"""

import logging
from typing import List, Optional
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundError, ValidationError
from app.models.company import Company
from app.models.enums import RecipientType
from app.models.notification import InAppNotification, NotificationSettings
from app.models.property import Tenant
from app.schemas.notification import (
    EnqueueSummary,
    NotificationSendRequest,
    NotificationSettingsSnapshot,
    NotificationSettingsUpdate,
    template_data_adapter,
)
from app.services.notification_queue import (
    EnqueueOutcome,
    NotificationQueueService,
    load_settings_snapshot,
    tenant_recipient,
)
from app.utils.time import get_utc_now

logger = logging.getLogger(__name__)


class NotificationService:
    @staticmethod
    def create_in_app(
        db: AsyncSession,
        company_id: UUID,
        title: str,
        message: str,
        related_type: Optional[str] = None,
        related_id: Optional[UUID] = None,
        recipient_type: RecipientType = RecipientType.COMPANY_USER,
        recipient_id: Optional[UUID] = None,
    ) -> InAppNotification:
        """Add an in-app record to the session; committed with the caller's unit of work."""
        notification = InAppNotification(
            company_id=company_id,
            recipient_type=recipient_type,
            recipient_id=recipient_id,
            title=title,
            message=message,
            related_type=related_type,
            related_id=related_id,
            is_read=False,
        )
        db.add(notification)
        return notification

    @staticmethod
    async def list_in_app(
        db: AsyncSession,
        company_id: UUID,
        user_id: UUID,
        unread_only: bool = False,
        limit: int = 50,
    ) -> List[InAppNotification]:
        query = select(InAppNotification).where(
            InAppNotification.company_id == company_id,
            InAppNotification.recipient_type == RecipientType.COMPANY_USER,
            or_(InAppNotification.recipient_id.is_(None), InAppNotification.recipient_id == user_id),
        )
        if unread_only:
            query = query.where(InAppNotification.is_read.is_(False))
        result = await db.execute(query.order_by(InAppNotification.created_at.desc()).limit(limit))
        return list(result.scalars().all())

    @staticmethod
    async def mark_read(db: AsyncSession, company_id: UUID, notification_id: UUID) -> InAppNotification:
        notification = await db.scalar(
            select(InAppNotification).where(
                InAppNotification.id == notification_id,
                InAppNotification.company_id == company_id,
            )
        )
        if not notification:
            raise NotFoundError("Notification not found")
        if not notification.is_read:
            notification.is_read = True
            notification.read_at = get_utc_now()
            await db.commit()
            await db.refresh(notification)
        return notification

    @staticmethod
    async def get_settings(db: AsyncSession, company_id: UUID) -> NotificationSettingsSnapshot:
        return await load_settings_snapshot(db, company_id)

    @staticmethod
    async def update_settings(
        db: AsyncSession,
        company_id: UUID,
        data: NotificationSettingsUpdate,
    ) -> NotificationSettingsSnapshot:
        row = await db.scalar(
            select(NotificationSettings).where(NotificationSettings.company_id == company_id)
        )
        if row is None:
            row = NotificationSettings(company_id=company_id)
            db.add(row)

        for field, value in data.model_dump(exclude_unset=True).items():
            setattr(row, field, value)

        await db.commit()
        await db.refresh(row)
        logger.info("Notification settings updated", extra={"company_id": str(company_id)})
        return NotificationSettingsSnapshot.model_validate(row)

    @staticmethod
    async def send_manual(
        db: AsyncSession,
        company_id: UUID,
        request: NotificationSendRequest,
    ) -> EnqueueSummary:
        """
        Queue a staff-initiated notification for each selected tenant.
        The payload is validated per recipient, so a missing field fails
        the whole request before anything is queued.
        """
        company = await db.get(Company, company_id)
        if company is None:
            raise NotFoundError("Company not found")

        result = await db.execute(
            select(Tenant).where(Tenant.company_id == company_id, Tenant.id.in_(request.tenant_ids))
        )
        tenants = list(result.scalars().all())
        if len(tenants) != len(set(request.tenant_ids)):
            raise NotFoundError("One or more tenants not found")

        payloads = []
        for tenant in tenants:
            raw = {
                **request.template_data,
                "notification_type": request.notification_type.value,
                "tenant_name": tenant.name,
                "company_name": company.name,
            }
            try:
                payloads.append((tenant, template_data_adapter.validate_python(raw)))
            except PydanticValidationError as e:
                raise ValidationError(
                    "Invalid template data",
                    details={"errors": e.errors(include_url=False, include_context=False)},
                )

        snapshot = await load_settings_snapshot(db, company_id)
        summary = EnqueueSummary()
        for tenant, payload in payloads:
            outcomes = await NotificationQueueService.enqueue_for_channels(
                db,
                company_id=company_id,
                recipient=tenant_recipient(tenant),
                payload=payload,
                settings_snapshot=snapshot,
                channels=request.channels,
                skip_duplicate_check=request.skip_duplicate_check,
            )
            for outcome in outcomes.values():
                if outcome.outcome == EnqueueOutcome.QUEUED:
                    summary.queued += 1
                elif outcome.outcome == EnqueueOutcome.SKIPPED:
                    summary.skipped += 1
                else:
                    summary.errors += 1

        await db.commit()
        return summary
