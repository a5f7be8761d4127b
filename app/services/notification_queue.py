"""
Notification Queue - durable outbound notifications with retry and idempotence.

Producers call ``enqueue``; the delivery worker calls ``drain``. A drain
claims items atomically (``FOR UPDATE SKIP LOCKED``) and commits the claim
before sending, so two overlapping drains never send the same item. Every
result is written with a compare-and-swap on ``status = 'processing'``.
"""

import enum
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select, update, func
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.company import User
from app.models.enums import (
    NotificationChannel,
    NotificationQueueStatus,
    NotificationType,
    RecipientType,
)
from app.models.notification import NotificationQueueItem, NotificationSettings
from app.models.property import Tenant
from app.schemas.notification import (
    NotificationSettingsSnapshot,
    TemplateData,
    parse_template_data,
)
from app.services import email_service, sms_service
from app.services.channels import ChannelSender, Recipient
from app.services.notification_templates import TemplateError, render
from app.utils.time import get_utc_now

logger = logging.getLogger(__name__)

# Statuses that count as "already recorded" for the duplicate window
_LIVE_STATUSES = (
    NotificationQueueStatus.PENDING,
    NotificationQueueStatus.PROCESSING,
    NotificationQueueStatus.SENT,
)


class EnqueueOutcome(str, enum.Enum):
    QUEUED = "queued"
    SKIPPED = "skipped"
    ERROR = "error"


@dataclass(frozen=True)
class EnqueueResult:
    outcome: EnqueueOutcome
    queue_id: Optional[UUID] = None
    reason: Optional[str] = None

    @property
    def queued(self) -> bool:
        return self.outcome == EnqueueOutcome.QUEUED

    @property
    def skipped(self) -> bool:
        return self.outcome == EnqueueOutcome.SKIPPED


@dataclass
class DrainResult:
    processed: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    retried: int = 0
    reclaimed: int = 0


# --- Settings snapshots ---

async def load_settings_snapshot(db: AsyncSession, company_id: UUID) -> NotificationSettingsSnapshot:
    """Company settings as an immutable snapshot; defaults when no row exists."""
    row = await db.scalar(
        select(NotificationSettings).where(NotificationSettings.company_id == company_id)
    )
    if row is None:
        return NotificationSettingsSnapshot(company_id=company_id)
    return NotificationSettingsSnapshot.model_validate(row)


async def load_settings_snapshots(
    db: AsyncSession,
    company_ids: Iterable[UUID],
) -> Dict[UUID, NotificationSettingsSnapshot]:
    """One query for every company involved in a run."""
    ids = set(company_ids)
    if not ids:
        return {}
    result = await db.execute(
        select(NotificationSettings).where(NotificationSettings.company_id.in_(ids))
    )
    snapshots = {
        row.company_id: NotificationSettingsSnapshot.model_validate(row)
        for row in result.scalars().all()
    }
    for company_id in ids - snapshots.keys():
        snapshots[company_id] = NotificationSettingsSnapshot(company_id=company_id)
    return snapshots


# --- Helpers ---

def retry_delay(attempts: int) -> timedelta:
    """Exponential backoff: base delay doubled for every attempt already made."""
    return timedelta(minutes=settings.NOTIFICATION_RETRY_DELAY_MINUTES * 2 ** max(0, attempts - 1))


def duplicate_window(notification_type: NotificationType) -> timedelta:
    if NotificationType(notification_type) == NotificationType.OVERDUE_NOTICE:
        return timedelta(hours=settings.OVERDUE_NOTICE_DUPLICATE_WINDOW_HOURS)
    return timedelta(hours=settings.NOTIFICATION_DUPLICATE_WINDOW_HOURS)


def missing_contact(channel: NotificationChannel, recipient: Optional[Recipient]) -> Optional[str]:
    """Reason the recipient cannot be reached on ``channel``, or None."""
    if recipient is None:
        return "Recipient not found"
    channel = NotificationChannel(channel)
    if channel == NotificationChannel.EMAIL and not recipient.email:
        return "Recipient has no email address"
    if channel == NotificationChannel.SMS:
        if not recipient.phone:
            return "Recipient has no phone number"
        if not sms_service.is_valid_phone(recipient.phone):
            return "Recipient phone number is invalid"
    return None


def default_senders() -> Dict[NotificationChannel, ChannelSender]:
    return {
        NotificationChannel.EMAIL: email_service.send_email,
        NotificationChannel.SMS: sms_service.send_sms,
    }


async def load_recipient(
    db: AsyncSession,
    company_id: UUID,
    recipient_type: RecipientType,
    recipient_id: UUID,
) -> Optional[Recipient]:
    if RecipientType(recipient_type) == RecipientType.TENANT:
        tenant = await db.scalar(
            select(Tenant).where(Tenant.id == recipient_id, Tenant.company_id == company_id)
        )
        if tenant is None:
            return None
        return Recipient(id=tenant.id, name=tenant.name, email=tenant.email, phone=tenant.phone)

    user = await db.scalar(
        select(User).where(User.id == recipient_id, User.company_id == company_id)
    )
    if user is None:
        return None
    return Recipient(id=user.id, name=user.full_name, email=user.email)


def tenant_recipient(tenant: Tenant) -> Recipient:
    return Recipient(id=tenant.id, name=tenant.name, email=tenant.email, phone=tenant.phone)


class NotificationQueueService:
    @staticmethod
    async def enqueue(
        db: AsyncSession,
        *,
        company_id: UUID,
        recipient_type: RecipientType,
        recipient_id: UUID,
        channel: NotificationChannel,
        payload: TemplateData,
        settings_snapshot: NotificationSettingsSnapshot,
        recipient: Optional[Recipient] = None,
        dedupe_key: Optional[str] = None,
        scheduled_at: Optional[datetime] = None,
        skip_duplicate_check: bool = False,
        now: Optional[datetime] = None,
    ) -> EnqueueResult:
        """
        Record one notification for later delivery.

        Does not commit: the caller's unit of work decides when the item
        becomes visible. The insert runs in a savepoint so a storage error
        here leaves the caller's transaction usable.
        """
        now = now or get_utc_now()
        channel = NotificationChannel(channel)
        notification_type = NotificationType(payload.notification_type)
        log_extra = {
            "company_id": str(company_id),
            "recipient_id": str(recipient_id),
            "notification_type": notification_type.value,
            "channel": channel.value,
        }

        if not settings_snapshot.is_enabled(channel, notification_type):
            logger.debug("Notification skipped: disabled in settings", extra=log_extra)
            return EnqueueResult(EnqueueOutcome.SKIPPED, reason="Disabled in notification settings")

        try:
            if recipient is None:
                recipient = await load_recipient(db, company_id, recipient_type, recipient_id)

            reason = missing_contact(channel, recipient)
            if reason:
                logger.info("Notification skipped: %s", reason, extra=log_extra)
                return EnqueueResult(EnqueueOutcome.SKIPPED, reason=reason)

            if dedupe_key is None and not skip_duplicate_check:
                since = now - duplicate_window(notification_type)
                existing = await db.scalar(
                    select(func.count()).select_from(NotificationQueueItem).where(
                        NotificationQueueItem.company_id == company_id,
                        NotificationQueueItem.recipient_id == recipient_id,
                        NotificationQueueItem.notification_type == notification_type,
                        NotificationQueueItem.channel == channel,
                        NotificationQueueItem.status.in_(_LIVE_STATUSES),
                        NotificationQueueItem.created_at >= since,
                    )
                )
                if existing:
                    logger.info("Notification skipped: duplicate within window", extra=log_extra)
                    return EnqueueResult(EnqueueOutcome.SKIPPED, reason="Duplicate notification")

            stmt = (
                pg_insert(NotificationQueueItem)
                .values(
                    company_id=company_id,
                    recipient_type=RecipientType(recipient_type),
                    recipient_id=recipient_id,
                    notification_type=notification_type,
                    channel=channel,
                    template_data=payload.model_dump(mode="json"),
                    status=NotificationQueueStatus.PENDING,
                    attempts=0,
                    scheduled_at=scheduled_at or now,
                    dedupe_key=dedupe_key,
                )
                .on_conflict_do_nothing(constraint="uq_notifications_queue_dedupe_key")
                .returning(NotificationQueueItem.id)
            )
            async with db.begin_nested():
                queue_id = (await db.execute(stmt)).scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("Failed to queue notification: %s", e, extra=log_extra)
            return EnqueueResult(EnqueueOutcome.ERROR, reason=str(e))

        if queue_id is None:
            logger.info("Notification skipped: already queued", extra={**log_extra, "dedupe_key": dedupe_key})
            return EnqueueResult(EnqueueOutcome.SKIPPED, reason="Already queued")

        return EnqueueResult(EnqueueOutcome.QUEUED, queue_id=queue_id)

    @staticmethod
    async def enqueue_for_channels(
        db: AsyncSession,
        *,
        company_id: UUID,
        recipient: Recipient,
        payload: TemplateData,
        settings_snapshot: NotificationSettingsSnapshot,
        dedupe_key_prefix: Optional[str] = None,
        channels: Optional[Iterable[NotificationChannel]] = None,
        skip_duplicate_check: bool = False,
        now: Optional[datetime] = None,
    ) -> Dict[NotificationChannel, EnqueueResult]:
        """Enqueue the same tenant payload on every channel; the key gets a channel suffix."""
        results = {}
        for channel in channels or list(NotificationChannel):
            channel = NotificationChannel(channel)
            results[channel] = await NotificationQueueService.enqueue(
                db,
                company_id=company_id,
                recipient_type=RecipientType.TENANT,
                recipient_id=recipient.id,
                channel=channel,
                payload=payload,
                settings_snapshot=settings_snapshot,
                recipient=recipient,
                dedupe_key=f"{dedupe_key_prefix}:{channel.value}" if dedupe_key_prefix else None,
                skip_duplicate_check=skip_duplicate_check,
                now=now,
            )
        return results

    @staticmethod
    async def drain(
        db: AsyncSession,
        batch_size: Optional[int] = None,
        senders: Optional[Dict[NotificationChannel, ChannelSender]] = None,
        now: Optional[datetime] = None,
        company_id: Optional[UUID] = None,
    ) -> DrainResult:
        """
        Deliver due notifications.

        1. Return stale claims (crashed workers) to pending, counting the attempt.
        2. Claim up to ``batch_size`` due items and commit the claim.
        3. Send each item and record the outcome with a CAS on this worker's claim.
        """
        now = now or get_utc_now()
        batch_size = batch_size or settings.NOTIFICATION_DRAIN_BATCH_SIZE
        senders = senders or default_senders()
        result = DrainResult()

        result.reclaimed = await NotificationQueueService._reclaim_stale(db, now, company_id)
        claimed = await NotificationQueueService._claim_batch(db, batch_size, now, company_id)
        await db.commit()

        snapshots: Dict[UUID, NotificationSettingsSnapshot] = {}
        for item in claimed:
            result.processed += 1
            if item.company_id not in snapshots:
                snapshots[item.company_id] = await load_settings_snapshot(db, item.company_id)
            await NotificationQueueService._deliver(db, item, senders, snapshots[item.company_id], result)
            await db.commit()

        logger.info(
            "Notification queue drained",
            extra={
                "processed": result.processed,
                "sent": result.sent,
                "failed": result.failed,
                "skipped": result.skipped,
                "retried": result.retried,
                "reclaimed": result.reclaimed,
            },
        )
        return result

    @staticmethod
    async def _reclaim_stale(db: AsyncSession, now: datetime, company_id: Optional[UUID] = None) -> int:
        cutoff = now - timedelta(seconds=settings.NOTIFICATION_CLAIM_TIMEOUT_SECONDS)
        query = (
            select(NotificationQueueItem)
            .where(
                NotificationQueueItem.status == NotificationQueueStatus.PROCESSING,
                NotificationQueueItem.claimed_at < cutoff,
            )
            .with_for_update(skip_locked=True)
        )
        if company_id is not None:
            query = query.where(NotificationQueueItem.company_id == company_id)

        stale = (await db.execute(query)).scalars().all()
        for item in stale:
            item.attempts = (item.attempts or 0) + 1
            item.claimed_at = None
            item.last_error = "Claim timed out before a result was recorded"
            if item.attempts >= settings.NOTIFICATION_MAX_ATTEMPTS:
                item.status = NotificationQueueStatus.FAILED
            else:
                item.status = NotificationQueueStatus.PENDING
                item.scheduled_at = now + retry_delay(item.attempts)
            logger.warning(
                "Reclaimed stale notification claim",
                extra={"queue_id": str(item.id), "attempts": item.attempts, "status": item.status.value},
            )
        if stale:
            await db.commit()
        return len(stale)

    @staticmethod
    async def _claim_batch(
        db: AsyncSession,
        batch_size: int,
        now: datetime,
        company_id: Optional[UUID] = None,
    ) -> List:
        due = (
            select(NotificationQueueItem.id)
            .where(
                NotificationQueueItem.status == NotificationQueueStatus.PENDING,
                NotificationQueueItem.scheduled_at <= now,
            )
            .order_by(NotificationQueueItem.scheduled_at)
            .limit(batch_size)
            .with_for_update(skip_locked=True)
        )
        if company_id is not None:
            due = due.where(NotificationQueueItem.company_id == company_id)

        stmt = (
            update(NotificationQueueItem)
            .where(NotificationQueueItem.id.in_(due))
            .values(status=NotificationQueueStatus.PROCESSING, claimed_at=now)
            .returning(
                NotificationQueueItem.id,
                NotificationQueueItem.company_id,
                NotificationQueueItem.recipient_type,
                NotificationQueueItem.recipient_id,
                NotificationQueueItem.notification_type,
                NotificationQueueItem.channel,
                NotificationQueueItem.template_data,
                NotificationQueueItem.attempts,
                NotificationQueueItem.scheduled_at,
                NotificationQueueItem.claimed_at,
            )
            .execution_options(synchronize_session=False)
        )
        rows = (await db.execute(stmt)).all()
        return sorted(rows, key=lambda r: r.scheduled_at)

    @staticmethod
    async def _finalize(db: AsyncSession, item, **values) -> bool:
        """
        Write a result only if this worker still owns the claim.

        A reclaimed and re-claimed item carries a newer ``claimed_at``, so a
        late write from the first worker matches nothing.
        """
        result = await db.execute(
            update(NotificationQueueItem)
            .where(
                NotificationQueueItem.id == item.id,
                NotificationQueueItem.status == NotificationQueueStatus.PROCESSING,
                NotificationQueueItem.claimed_at == item.claimed_at,
            )
            .values(claimed_at=None, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            logger.warning("Notification claim lost before result was written", extra={"queue_id": str(item.id)})
            return False
        return True

    @staticmethod
    async def _deliver(
        db: AsyncSession,
        item,
        senders: Dict[NotificationChannel, ChannelSender],
        snapshot: NotificationSettingsSnapshot,
        result: DrainResult,
    ) -> None:
        channel = NotificationChannel(item.channel)
        attempts = (item.attempts or 0) + 1
        log_extra = {"queue_id": str(item.id), "channel": channel.value, "attempts": attempts}

        try:
            payload = parse_template_data(item.template_data)
            message = render(channel, payload)
        except (PydanticValidationError, TemplateError) as e:
            logger.error("Notification payload cannot be rendered: %s", e, extra=log_extra)
            if await NotificationQueueService._finalize(
                db, item, status=NotificationQueueStatus.FAILED, attempts=attempts, last_error=str(e)[:1000],
            ):
                result.failed += 1
            return

        recipient = await load_recipient(db, item.company_id, item.recipient_type, item.recipient_id)
        reason = missing_contact(channel, recipient)
        if reason:
            logger.info("Notification skipped at delivery: %s", reason, extra=log_extra)
            if await NotificationQueueService._finalize(
                db, item, status=NotificationQueueStatus.SKIPPED, last_error=reason,
            ):
                result.skipped += 1
            return

        if channel == NotificationChannel.EMAIL:
            message = replace(message, sender_email=snapshot.sender_email, sender_name=snapshot.sender_name)

        sender = senders.get(channel)
        if sender is None:
            delivery_error, retryable = f"No sender configured for {channel.value}", False
        else:
            try:
                delivery = await sender(recipient, message)
                delivery_error = None if delivery.success else (delivery.error or "Delivery failed")
                retryable = delivery.retryable
            except Exception as e:
                logger.exception("Channel sender raised", extra=log_extra)
                delivery_error, retryable = str(e) or e.__class__.__name__, True

        finished_at = get_utc_now()
        if delivery_error is None:
            if await NotificationQueueService._finalize(
                db, item, status=NotificationQueueStatus.SENT, attempts=attempts, sent_at=finished_at, last_error=None,
            ):
                result.sent += 1
            return

        if not retryable or attempts >= settings.NOTIFICATION_MAX_ATTEMPTS:
            logger.error("Notification failed permanently: %s", delivery_error, extra=log_extra)
            if await NotificationQueueService._finalize(
                db, item, status=NotificationQueueStatus.FAILED, attempts=attempts, last_error=delivery_error,
            ):
                result.failed += 1
            return

        logger.warning("Notification delivery failed, will retry: %s", delivery_error, extra=log_extra)
        if await NotificationQueueService._finalize(
            db,
            item,
            status=NotificationQueueStatus.PENDING,
            attempts=attempts,
            last_error=delivery_error,
            scheduled_at=finished_at + retry_delay(attempts),
        ):
            result.retried += 1

    @staticmethod
    async def list_queue(
        db: AsyncSession,
        company_id: UUID,
        status: Optional[NotificationQueueStatus] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Tuple[List[NotificationQueueItem], int]:
        conditions = [NotificationQueueItem.company_id == company_id]
        if status is not None:
            conditions.append(NotificationQueueItem.status == status)

        total = await db.scalar(
            select(func.count()).select_from(NotificationQueueItem).where(*conditions)
        )
        result = await db.execute(
            select(NotificationQueueItem)
            .where(*conditions)
            .order_by(NotificationQueueItem.created_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all()), total or 0
