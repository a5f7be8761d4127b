"""Unit tests for the scheduled trigger jobs."""

import pytest
from datetime import date, timedelta
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.billing import Billing
from app.models.company import Company
from app.models.enums import BillingStatus, LeaseStatus, NotificationChannel
from app.models.property import Lease, Property, Tenant, Unit
from app.schemas.notification import NotificationSettingsSnapshot
from app.services import scheduled_triggers
from app.services.notification_queue import EnqueueOutcome, EnqueueResult, NotificationQueueService

TODAY = date(2026, 3, 15)


def _scalars(items):
    result = MagicMock()
    result.scalars.return_value.all.return_value = items
    return result


def _billing(company_id, status, due, total=100000, paid=0):
    billing = Billing(
        id=uuid4(),
        company_id=company_id,
        tenant_id=uuid4(),
        unit_id=uuid4(),
        billing_number="INV-202603-0001",
        billing_month=date(2026, 3, 1),
        issue_date=date(2026, 3, 1),
        due_date=due,
        total_amount=total,
        paid_amount=paid,
        status=status,
    )
    billing.tenant = Tenant(id=billing.tenant_id, company_id=company_id, name="Bat", email="bat@example.com")
    return billing


def _outcomes(*outcomes):
    return {channel: EnqueueResult(outcome) for channel, outcome in zip(NotificationChannel, outcomes)}


def test_target_dates_union_of_company_offsets():
    snapshots = [
        NotificationSettingsSnapshot(company_id=uuid4(), payment_reminder_days=(7, 3)),
        NotificationSettingsSnapshot(company_id=uuid4(), payment_reminder_days=(5, 3)),
    ]
    targets = scheduled_triggers._target_dates(TODAY, snapshots, "payment_reminder_days")
    assert targets == [TODAY + timedelta(days=d) for d in (3, 5, 7)]


def test_trigger_result_counts_outcomes():
    result = scheduled_triggers.TriggerResult()
    result.add(_outcomes(EnqueueOutcome.QUEUED, EnqueueOutcome.SKIPPED).values())
    result.add([EnqueueResult(EnqueueOutcome.ERROR)])
    assert result.as_dict() == {"scanned": 0, "updated": 0, "queued": 1, "skipped": 1, "errors": 1}


@pytest.mark.asyncio
async def test_overdue_sweep_marks_and_notifies():
    db = AsyncMock(spec=AsyncSession)
    company_id = uuid4()
    pending = _billing(company_id, BillingStatus.PENDING, TODAY - timedelta(days=2))
    partial = _billing(company_id, BillingStatus.PARTIAL, TODAY - timedelta(days=1), paid=40000)
    db.execute.side_effect = [_scalars([pending, partial]), _scalars([pending, partial])]

    with patch("app.services.scheduled_triggers.load_settings_snapshots", new_callable=AsyncMock) as mock_snapshots, \
            patch("app.services.scheduled_triggers._load_companies", new_callable=AsyncMock) as mock_companies, \
            patch.object(NotificationQueueService, "enqueue_for_channels", new_callable=AsyncMock) as mock_enqueue:
        mock_snapshots.return_value = {company_id: NotificationSettingsSnapshot(company_id=company_id)}
        mock_companies.return_value = {company_id: Company(id=company_id, name="Sunrise", phone="7011-2233")}
        mock_enqueue.return_value = _outcomes(EnqueueOutcome.QUEUED, EnqueueOutcome.SKIPPED)

        result = await scheduled_triggers.run_overdue_sweep(db, today=TODAY)

    assert pending.status == BillingStatus.OVERDUE
    assert partial.status == BillingStatus.OVERDUE
    assert result.scanned == 2
    assert result.updated == 2
    assert result.queued == 2
    assert result.skipped == 2
    assert pending.overdue_notified_at is not None
    # Status change is committed before notices are queued
    assert db.commit.await_count == 2

    first_call = mock_enqueue.await_args_list[0].kwargs
    assert first_call["dedupe_key_prefix"] == f"overdue_notice:{pending.id}:{TODAY.isoformat()}"
    payload = mock_enqueue.await_args_list[1].kwargs["payload"]
    assert payload.outstanding_amount == 60000
    assert payload.days_overdue == 1
    assert payload.company_phone == "7011-2233"


@pytest.mark.asyncio
async def test_overdue_sweep_twice_equals_once():
    db = AsyncMock(spec=AsyncSession)
    company_id = uuid4()
    billings = [
        _billing(company_id, BillingStatus.PENDING, TODAY - timedelta(days=2)),
        _billing(company_id, BillingStatus.PARTIAL, TODAY - timedelta(days=1), paid=40000),
        _billing(company_id, BillingStatus.PENDING, TODAY + timedelta(days=3)),
    ]
    calls = []

    async def execute(stmt):
        # Alternates between the transition query and the notice query
        calls.append(stmt)
        if len(calls) % 2:
            rows = [b for b in billings if b.status in (BillingStatus.PENDING, BillingStatus.PARTIAL)
                    and b.due_date < TODAY]
        else:
            rows = [b for b in billings if b.status == BillingStatus.OVERDUE and b.overdue_notified_at is None]
        return _scalars(rows)

    db.execute.side_effect = execute

    with patch("app.services.scheduled_triggers.load_settings_snapshots", new_callable=AsyncMock) as mock_snapshots, \
            patch("app.services.scheduled_triggers._load_companies", new_callable=AsyncMock) as mock_companies, \
            patch.object(NotificationQueueService, "enqueue_for_channels", new_callable=AsyncMock) as mock_enqueue:
        mock_snapshots.return_value = {}
        mock_companies.return_value = {}
        mock_enqueue.return_value = _outcomes(EnqueueOutcome.QUEUED, EnqueueOutcome.SKIPPED)

        first = await scheduled_triggers.run_overdue_sweep(db, today=TODAY)
        after_first = [(b.status, b.overdue_notified_at) for b in billings]
        second = await scheduled_triggers.run_overdue_sweep(db, today=TODAY)

    assert first.updated == 2
    assert first.queued == 2
    assert second.updated == 0
    assert second.scanned == 0
    assert second.queued == 0
    assert mock_enqueue.await_count == 2
    assert [(b.status, b.overdue_notified_at) for b in billings] == after_first
    assert billings[2].status == BillingStatus.PENDING


@pytest.mark.asyncio
async def test_overdue_sweep_leaves_stamp_unset_on_error():
    db = AsyncMock(spec=AsyncSession)
    company_id = uuid4()
    overdue = _billing(company_id, BillingStatus.OVERDUE, TODAY - timedelta(days=3))
    db.execute.side_effect = [_scalars([]), _scalars([overdue])]

    with patch("app.services.scheduled_triggers.load_settings_snapshots", new_callable=AsyncMock) as mock_snapshots, \
            patch("app.services.scheduled_triggers._load_companies", new_callable=AsyncMock) as mock_companies, \
            patch.object(NotificationQueueService, "enqueue_for_channels", new_callable=AsyncMock) as mock_enqueue:
        mock_snapshots.return_value = {}
        mock_companies.return_value = {}
        mock_enqueue.return_value = _outcomes(EnqueueOutcome.ERROR, EnqueueOutcome.SKIPPED)

        result = await scheduled_triggers.run_overdue_sweep(db, today=TODAY)

    assert result.updated == 0
    assert result.errors == 1
    assert overdue.overdue_notified_at is None


@pytest.mark.asyncio
async def test_billing_reminders_use_company_lead_times():
    db = AsyncMock(spec=AsyncSession)
    company_id = uuid4()
    due_in_7 = _billing(company_id, BillingStatus.PENDING, TODAY + timedelta(days=7))
    due_in_5 = _billing(company_id, BillingStatus.PENDING, TODAY + timedelta(days=5))
    db.execute.side_effect = [_scalars([company_id]), _scalars([due_in_7, due_in_5])]

    with patch("app.services.scheduled_triggers.load_settings_snapshots", new_callable=AsyncMock) as mock_snapshots, \
            patch("app.services.scheduled_triggers._load_companies", new_callable=AsyncMock) as mock_companies, \
            patch.object(NotificationQueueService, "enqueue_for_channels", new_callable=AsyncMock) as mock_enqueue:
        mock_snapshots.return_value = {
            company_id: NotificationSettingsSnapshot(company_id=company_id, payment_reminder_days=(7, 3)),
        }
        mock_companies.return_value = {company_id: Company(id=company_id, name="Sunrise")}
        mock_enqueue.return_value = _outcomes(EnqueueOutcome.QUEUED, EnqueueOutcome.SKIPPED)

        result = await scheduled_triggers.run_billing_reminders(db, today=TODAY)

    assert result.scanned == 2
    assert mock_enqueue.await_count == 1
    kwargs = mock_enqueue.await_args.kwargs
    assert kwargs["dedupe_key_prefix"] == f"payment_reminder:{due_in_7.id}:7"
    assert kwargs["payload"].days_left == 7
    assert kwargs["payload"].total_amount == 100000
    assert kwargs["payload"].billing_month == "2026-03"
    assert db.commit.called


@pytest.mark.asyncio
async def test_billing_reminders_nothing_due():
    db = AsyncMock(spec=AsyncSession)
    db.execute.return_value = _scalars([])

    with patch("app.services.scheduled_triggers.load_settings_snapshots", new_callable=AsyncMock) as mock_snapshots:
        mock_snapshots.return_value = {}
        result = await scheduled_triggers.run_billing_reminders(db, today=TODAY)

    assert result.as_dict() == {"scanned": 0, "updated": 0, "queued": 0, "skipped": 0, "errors": 0}
    assert db.execute.await_count == 1


@pytest.mark.asyncio
async def test_lease_expiry_reminder_payload():
    db = AsyncMock(spec=AsyncSession)
    company_id = uuid4()
    prop = Property(id=uuid4(), company_id=company_id, name="Tower A")
    unit = Unit(id=uuid4(), company_id=company_id, unit_number="1204")
    unit.property = prop
    tenant = Tenant(id=uuid4(), company_id=company_id, name="Bat", phone="99112233")
    lease = Lease(
        id=uuid4(),
        company_id=company_id,
        tenant_id=tenant.id,
        unit_id=unit.id,
        start_date=date(2025, 4, 15),
        end_date=TODAY + timedelta(days=30),
        status=LeaseStatus.ACTIVE,
    )
    lease.tenant = tenant
    lease.unit = unit
    db.execute.side_effect = [_scalars([company_id]), _scalars([lease])]

    with patch("app.services.scheduled_triggers.load_settings_snapshots", new_callable=AsyncMock) as mock_snapshots, \
            patch("app.services.scheduled_triggers._load_companies", new_callable=AsyncMock) as mock_companies, \
            patch.object(NotificationQueueService, "enqueue_for_channels", new_callable=AsyncMock) as mock_enqueue:
        mock_snapshots.return_value = {company_id: NotificationSettingsSnapshot(company_id=company_id)}
        mock_companies.return_value = {company_id: Company(id=company_id, name="Sunrise", phone="7011-2233")}
        mock_enqueue.return_value = _outcomes(EnqueueOutcome.QUEUED, EnqueueOutcome.QUEUED)

        result = await scheduled_triggers.run_lease_expiry(db, today=TODAY)

    assert result.queued == 2
    kwargs = mock_enqueue.await_args.kwargs
    assert kwargs["dedupe_key_prefix"] == f"lease_expiring:{lease.id}:30"
    payload = kwargs["payload"]
    assert payload.property_name == "Tower A"
    assert payload.unit_number == "1204"
    assert payload.days_left == 30
    assert kwargs["recipient"].phone == "99112233"
