"""
Scheduled Triggers - daily batch jobs invoked by the external scheduler.

Every trigger loads each involved company's notification settings once per
run and reuses that snapshot for every enqueue. Idempotence keys make a
re-run on the same day a no-op.
"""

import logging
from dataclasses import dataclass, asdict
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional, Set
from uuid import UUID

from sqlalchemy import select, distinct
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.models.billing import Billing
from app.models.company import Company
from app.models.enums import BillingStatus, LeaseStatus
from app.models.property import Lease, Unit
from app.schemas.notification import LeaseExpiringData, NotificationSettingsSnapshot, OverdueNoticeData, PaymentReminderData
from app.services import billing_rules, fee_calculator
from app.services.notification_queue import (
    EnqueueOutcome,
    EnqueueResult,
    NotificationQueueService,
    load_settings_snapshots,
    tenant_recipient,
)
from app.utils.time import get_utc_now, get_utc_today

logger = logging.getLogger(__name__)


@dataclass
class TriggerResult:
    scanned: int = 0
    updated: int = 0
    queued: int = 0
    skipped: int = 0
    errors: int = 0

    def add(self, outcomes: Iterable[EnqueueResult]) -> None:
        for outcome in outcomes:
            if outcome.outcome == EnqueueOutcome.QUEUED:
                self.queued += 1
            elif outcome.outcome == EnqueueOutcome.SKIPPED:
                self.skipped += 1
            else:
                self.errors += 1

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


async def _load_companies(db: AsyncSession, company_ids: Set[UUID]) -> Dict[UUID, Company]:
    if not company_ids:
        return {}
    result = await db.execute(select(Company).where(Company.id.in_(company_ids)))
    return {c.id: c for c in result.scalars().all()}


def _target_dates(today: date, snapshots: Iterable[NotificationSettingsSnapshot], attr: str) -> List[date]:
    offsets = set()
    for snapshot in snapshots:
        offsets.update(getattr(snapshot, attr))
    return sorted(today + timedelta(days=d) for d in offsets)


async def run_lease_expiry(db: AsyncSession, today: Optional[date] = None) -> TriggerResult:
    """Remind tenants whose active lease ends in one of the company's lead times."""
    today = today or get_utc_today()
    result = TriggerResult()

    company_ids = set((await db.execute(
        select(distinct(Lease.company_id)).where(Lease.status == LeaseStatus.ACTIVE, Lease.end_date > today)
    )).scalars().all())
    snapshots = await load_settings_snapshots(db, company_ids)
    targets = _target_dates(today, snapshots.values(), "lease_expiry_days")
    if not targets:
        return result

    leases = (await db.execute(
        select(Lease)
        .options(selectinload(Lease.tenant), selectinload(Lease.unit).selectinload(Unit.property))
        .where(Lease.status == LeaseStatus.ACTIVE, Lease.end_date.in_(targets))
    )).scalars().all()
    companies = await _load_companies(db, {lease.company_id for lease in leases})

    for lease in leases:
        result.scanned += 1
        snapshot = snapshots.get(lease.company_id) or NotificationSettingsSnapshot(company_id=lease.company_id)
        days_left = (lease.end_date - today).days
        if days_left not in snapshot.lease_expiry_days or lease.tenant is None:
            continue

        company = companies.get(lease.company_id)
        payload = LeaseExpiringData(
            tenant_name=lease.tenant.name,
            company_name=company.name if company else "",
            property_name=lease.unit.property.name if lease.unit and lease.unit.property else "",
            unit_number=lease.unit.unit_number if lease.unit else "",
            end_date=lease.end_date,
            days_left=days_left,
            company_phone=(company.phone or "") if company else "",
        )
        outcomes = await NotificationQueueService.enqueue_for_channels(
            db,
            company_id=lease.company_id,
            recipient=tenant_recipient(lease.tenant),
            payload=payload,
            settings_snapshot=snapshot,
            dedupe_key_prefix=f"lease_expiring:{lease.id}:{days_left}",
        )
        result.add(outcomes.values())

    await db.commit()
    logger.info("Lease expiry trigger finished", extra={"job": "lease-expiry", **result.as_dict()})
    return result


async def run_billing_reminders(db: AsyncSession, today: Optional[date] = None) -> TriggerResult:
    """Remind tenants of pending billings due in one of the company's lead times."""
    today = today or get_utc_today()
    result = TriggerResult()

    company_ids = set((await db.execute(
        select(distinct(Billing.company_id)).where(
            Billing.status == BillingStatus.PENDING, Billing.due_date > today,
        )
    )).scalars().all())
    snapshots = await load_settings_snapshots(db, company_ids)
    targets = _target_dates(today, snapshots.values(), "payment_reminder_days")
    if not targets:
        return result

    billings = (await db.execute(
        select(Billing)
        .options(selectinload(Billing.tenant))
        .where(Billing.status == BillingStatus.PENDING, Billing.due_date.in_(targets))
    )).scalars().all()
    companies = await _load_companies(db, {b.company_id for b in billings})

    for billing in billings:
        result.scanned += 1
        snapshot = snapshots.get(billing.company_id) or NotificationSettingsSnapshot(company_id=billing.company_id)
        days_left = (billing.due_date - today).days
        if days_left not in snapshot.payment_reminder_days or billing.tenant is None:
            continue

        company = companies.get(billing.company_id)
        payload = PaymentReminderData(
            tenant_name=billing.tenant.name,
            company_name=company.name if company else "",
            billing_number=billing.billing_number,
            billing_month=f"{billing.billing_month:%Y-%m}",
            total_amount=fee_calculator.calculate_outstanding(billing.total_amount, billing.paid_amount),
            due_date=billing.due_date,
            days_left=days_left,
        )
        outcomes = await NotificationQueueService.enqueue_for_channels(
            db,
            company_id=billing.company_id,
            recipient=tenant_recipient(billing.tenant),
            payload=payload,
            settings_snapshot=snapshot,
            dedupe_key_prefix=f"payment_reminder:{billing.id}:{days_left}",
        )
        result.add(outcomes.values())

    await db.commit()
    logger.info("Billing reminder trigger finished", extra={"job": "billing-reminders", **result.as_dict()})
    return result


async def run_overdue_sweep(db: AsyncSession, today: Optional[date] = None) -> TriggerResult:
    """
    Move past-due pending/partial billings to overdue, then notify every
    overdue billing that has not been notified yet.
    """
    today = today or get_utc_today()
    now = get_utc_now()
    result = TriggerResult()

    # Phase 1: status transition. Rows locked by a concurrent payment are
    # skipped and picked up by the next run.
    candidates = (await db.execute(
        select(Billing)
        .where(
            Billing.status.in_(billing_rules.OVERDUE_SWEEP_STATUSES),
            Billing.due_date < today,
        )
        .with_for_update(skip_locked=True)
    )).scalars().all()
    for billing in candidates:
        result.scanned += 1
        if billing_rules.is_overdue_candidate(billing.status, billing.due_date, today):
            billing.status = BillingStatus.OVERDUE
            result.updated += 1
    await db.commit()

    # Phase 2: notices
    to_notify = (await db.execute(
        select(Billing)
        .options(selectinload(Billing.tenant))
        .where(Billing.status == BillingStatus.OVERDUE, Billing.overdue_notified_at.is_(None))
        .with_for_update(skip_locked=True, of=Billing)
    )).scalars().all()
    company_ids = {b.company_id for b in to_notify}
    snapshots = await load_settings_snapshots(db, company_ids)
    companies = await _load_companies(db, company_ids)

    for billing in to_notify:
        if billing.tenant is None:
            continue
        snapshot = snapshots.get(billing.company_id) or NotificationSettingsSnapshot(company_id=billing.company_id)
        company = companies.get(billing.company_id)
        payload = OverdueNoticeData(
            tenant_name=billing.tenant.name,
            company_name=company.name if company else "",
            billing_number=billing.billing_number,
            billing_month=f"{billing.billing_month:%Y-%m}",
            total_amount=billing.total_amount,
            outstanding_amount=fee_calculator.calculate_outstanding(billing.total_amount, billing.paid_amount),
            due_date=billing.due_date,
            days_overdue=(today - billing.due_date).days,
            company_phone=(company.phone or "") if company else "",
        )
        outcomes = await NotificationQueueService.enqueue_for_channels(
            db,
            company_id=billing.company_id,
            recipient=tenant_recipient(billing.tenant),
            payload=payload,
            settings_snapshot=snapshot,
            dedupe_key_prefix=f"overdue_notice:{billing.id}:{today.isoformat()}",
        )
        result.add(outcomes.values())
        # Errors leave the stamp unset so the next sweep tries again
        if all(o.outcome != EnqueueOutcome.ERROR for o in outcomes.values()):
            billing.overdue_notified_at = now

    await db.commit()
    logger.info("Overdue sweep finished", extra={"job": "overdue-check", **result.as_dict()})
    return result


JOBS = {
    "overdue-check": run_overdue_sweep,
    "billing-reminders": run_billing_reminders,
    "lease-expiry": run_lease_expiry,
}
