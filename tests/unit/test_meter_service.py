"""Unit tests for MeterService readings and tenant submissions."""

import logging

import pytest
from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from app.models.company import User
from app.models.enums import FeeCalculationType, SubmissionStatus, UserRole
from app.models.fee import FeeType
from app.models.meter import MeterReading, TenantMeterSubmission
from app.models.property import Lease, Tenant, Unit
from app.schemas.meter import MeterReadingBulkCreate, MeterReadingCreate, TenantSubmissionCreate
from app.services.meter_service import MeterService


def _metered_fee_type(company_id, default_unit_price=500):
    return FeeType(
        id=uuid4(),
        company_id=company_id,
        name="Electricity",
        calculation_type=FeeCalculationType.METERED,
        default_unit_price=default_unit_price,
        unit_label="kWh",
        is_active=True,
    )


def _reading(current, unit_price=500):
    return MeterReading(
        id=uuid4(),
        previous_reading=Decimal("0"),
        current_reading=Decimal(current),
        unit_price=unit_price,
    )


def _submission(company_id, status=SubmissionStatus.PENDING, submitted="150"):
    return TenantMeterSubmission(
        id=uuid4(),
        company_id=company_id,
        tenant_id=uuid4(),
        unit_id=uuid4(),
        fee_type_id=uuid4(),
        submitted_reading=Decimal(submitted),
        status=status,
    )


def test_reading_consumption_property():
    reading = MeterReading(previous_reading=Decimal("100"), current_reading=Decimal("150"))
    assert reading.consumption == Decimal("50")


@pytest.mark.asyncio
async def test_record_reading_defaults_previous_and_freezes_price():
    db = AsyncMock(spec=AsyncSession)
    company_id = uuid4()
    unit = Unit(id=uuid4(), company_id=company_id, unit_number="101")
    fee_type = _metered_fee_type(company_id)
    db.scalar.return_value = unit
    data = MeterReadingCreate(
        unit_id=unit.id, fee_type_id=fee_type.id, current_reading=Decimal("150"), reading_date=date(2026, 3, 1),
    )

    with patch.object(MeterService, "_get_metered_fee_type", new_callable=AsyncMock) as mock_ft, \
            patch.object(MeterService, "get_latest_reading", new_callable=AsyncMock) as mock_latest, \
            patch.object(MeterService, "resolve_unit_price", new_callable=AsyncMock) as mock_price:
        mock_ft.return_value = fee_type
        mock_latest.return_value = _reading("100")
        mock_price.return_value = 500
        reading = await MeterService.record_reading(db, company_id, data)

    assert reading.previous_reading == Decimal("100")
    assert reading.current_reading == Decimal("150")
    assert reading.unit_price == 500
    assert reading.consumption == Decimal("50")
    db.add.assert_called_once_with(reading)
    assert db.commit.called


@pytest.mark.asyncio
async def test_record_reading_below_previous_rejected():
    db = AsyncMock(spec=AsyncSession)
    company_id = uuid4()
    unit = Unit(id=uuid4(), company_id=company_id, unit_number="101")
    fee_type = _metered_fee_type(company_id)
    db.scalar.return_value = unit
    data = MeterReadingCreate(unit_id=unit.id, fee_type_id=fee_type.id, current_reading=Decimal("90"))

    with patch.object(MeterService, "_get_metered_fee_type", new_callable=AsyncMock) as mock_ft, \
            patch.object(MeterService, "get_latest_reading", new_callable=AsyncMock) as mock_latest:
        mock_ft.return_value = fee_type
        mock_latest.return_value = _reading("100")
        with pytest.raises(ValidationError):
            await MeterService.record_reading(db, company_id, data)

    assert not db.add.called


@pytest.mark.asyncio
async def test_record_reading_unknown_unit():
    db = AsyncMock(spec=AsyncSession)
    db.scalar.return_value = None
    data = MeterReadingCreate(unit_id=uuid4(), fee_type_id=uuid4(), current_reading=Decimal("10"))

    with pytest.raises(NotFoundError):
        await MeterService.record_reading(db, uuid4(), data)


@pytest.mark.asyncio
async def test_non_metered_fee_type_rejected():
    db = AsyncMock(spec=AsyncSession)
    company_id = uuid4()
    db.scalar.return_value = FeeType(
        id=uuid4(), company_id=company_id, name="Cleaning", calculation_type=FeeCalculationType.FIXED,
    )

    with pytest.raises(ValidationError) as exc:
        await MeterService._get_metered_fee_type(db, uuid4(), company_id)
    assert exc.value.details["calculation_type"] == "fixed"


@pytest.mark.asyncio
async def test_bulk_record_collects_row_errors(caplog):
    db = AsyncMock(spec=AsyncSession)
    company_id = uuid4()
    good = MeterReadingCreate(unit_id=uuid4(), fee_type_id=uuid4(), current_reading=Decimal("10"))
    bad = MeterReadingCreate(unit_id=uuid4(), fee_type_id=uuid4(), current_reading=Decimal("5"))
    clash = MeterReadingCreate(unit_id=uuid4(), fee_type_id=uuid4(), current_reading=Decimal("7"))
    created_reading = _reading("10")

    with patch.object(MeterService, "record_reading", new_callable=AsyncMock) as mock_record:
        mock_record.side_effect = [
            created_reading,
            ValidationError("Current reading cannot be less than previous reading"),
            IntegrityError("INSERT", {}, Exception("check constraint")),
        ]
        with caplog.at_level(logging.INFO, logger="app.services.meter_service"):
            created, errors = await MeterService.bulk_record_readings(
                db, company_id, MeterReadingBulkCreate(readings=[good, bad, clash])
            )

    assert created == [created_reading]
    assert [e.index for e in errors] == [1, 2]
    assert errors[0].error == "Current reading cannot be less than previous reading"
    assert errors[1].unit_id == clash.unit_id
    assert db.commit.await_count == 1
    # Every row runs in its own savepoint without committing
    assert all(call.kwargs["auto_commit"] is False for call in mock_record.await_args_list)
    summary = [r for r in caplog.records if r.getMessage() == "Bulk meter readings recorded"]
    assert summary[0].created_count == 1
    assert summary[0].error_count == 2


# --- Tenant submissions ---

@pytest.mark.asyncio
async def test_submit_without_active_lease_rejected():
    db = AsyncMock(spec=AsyncSession)
    tenant = Tenant(id=uuid4(), company_id=uuid4(), name="Bat")

    with patch.object(MeterService, "get_active_lease", new_callable=AsyncMock) as mock_lease:
        mock_lease.return_value = None
        with pytest.raises(ValidationError):
            await MeterService.submit_reading(
                db, tenant, TenantSubmissionCreate(fee_type_id=uuid4(), submitted_reading=Decimal("10"))
            )


@pytest.mark.asyncio
async def test_submit_with_pending_submission_conflicts():
    db = AsyncMock(spec=AsyncSession)
    company_id = uuid4()
    tenant = Tenant(id=uuid4(), company_id=company_id, name="Bat")
    lease = Lease(id=uuid4(), tenant_id=tenant.id, unit_id=uuid4(), company_id=company_id)
    fee_type = _metered_fee_type(company_id)
    existing_id = uuid4()
    db.scalar.return_value = existing_id

    with patch.object(MeterService, "get_active_lease", new_callable=AsyncMock) as mock_lease, \
            patch.object(MeterService, "_get_metered_fee_type", new_callable=AsyncMock) as mock_ft:
        mock_lease.return_value = lease
        mock_ft.return_value = fee_type
        with pytest.raises(ConflictError) as exc:
            await MeterService.submit_reading(
                db, tenant, TenantSubmissionCreate(fee_type_id=fee_type.id, submitted_reading=Decimal("10"))
            )

    assert exc.value.details["submission_id"] == str(existing_id)
    assert not db.add.called


@pytest.mark.asyncio
async def test_submit_below_latest_reading_rejected():
    db = AsyncMock(spec=AsyncSession)
    company_id = uuid4()
    tenant = Tenant(id=uuid4(), company_id=company_id, name="Bat")
    lease = Lease(id=uuid4(), tenant_id=tenant.id, unit_id=uuid4(), company_id=company_id)
    fee_type = _metered_fee_type(company_id)
    db.scalar.return_value = None

    with patch.object(MeterService, "get_active_lease", new_callable=AsyncMock) as mock_lease, \
            patch.object(MeterService, "_get_metered_fee_type", new_callable=AsyncMock) as mock_ft, \
            patch.object(MeterService, "get_latest_reading", new_callable=AsyncMock) as mock_latest:
        mock_lease.return_value = lease
        mock_ft.return_value = fee_type
        mock_latest.return_value = _reading("200")
        with pytest.raises(ValidationError):
            await MeterService.submit_reading(
                db, tenant, TenantSubmissionCreate(fee_type_id=fee_type.id, submitted_reading=Decimal("150"))
            )


@pytest.mark.asyncio
async def test_submit_race_on_unique_index_conflicts():
    db = AsyncMock(spec=AsyncSession)
    company_id = uuid4()
    tenant = Tenant(id=uuid4(), company_id=company_id, name="Bat")
    lease = Lease(id=uuid4(), tenant_id=tenant.id, unit_id=uuid4(), company_id=company_id)
    fee_type = _metered_fee_type(company_id)
    db.scalar.return_value = None
    db.flush.side_effect = IntegrityError("INSERT", {}, Exception("uq_tenant_meter_submissions_pending"))

    with patch.object(MeterService, "get_active_lease", new_callable=AsyncMock) as mock_lease, \
            patch.object(MeterService, "_get_metered_fee_type", new_callable=AsyncMock) as mock_ft, \
            patch.object(MeterService, "get_latest_reading", new_callable=AsyncMock) as mock_latest:
        mock_lease.return_value = lease
        mock_ft.return_value = fee_type
        mock_latest.return_value = None
        with pytest.raises(ConflictError):
            await MeterService.submit_reading(
                db, tenant, TenantSubmissionCreate(fee_type_id=fee_type.id, submitted_reading=Decimal("150"))
            )

    assert db.rollback.called
    assert not db.commit.called


@pytest.mark.asyncio
async def test_submit_creates_pending_submission_and_staff_notice():
    db = AsyncMock(spec=AsyncSession)
    company_id = uuid4()
    tenant = Tenant(id=uuid4(), company_id=company_id, name="Bat")
    lease = Lease(id=uuid4(), tenant_id=tenant.id, unit_id=uuid4(), company_id=company_id)
    fee_type = _metered_fee_type(company_id)
    db.scalar.return_value = None

    with patch.object(MeterService, "get_active_lease", new_callable=AsyncMock) as mock_lease, \
            patch.object(MeterService, "_get_metered_fee_type", new_callable=AsyncMock) as mock_ft, \
            patch.object(MeterService, "get_latest_reading", new_callable=AsyncMock) as mock_latest:
        mock_lease.return_value = lease
        mock_ft.return_value = fee_type
        mock_latest.return_value = _reading("100")
        submission = await MeterService.submit_reading(
            db, tenant, TenantSubmissionCreate(fee_type_id=fee_type.id, submitted_reading=Decimal("150"))
        )

    assert submission.status == SubmissionStatus.PENDING
    assert submission.unit_id == lease.unit_id
    # Submission plus the in-app notice for staff
    assert db.add.call_count == 2
    assert db.commit.called


@pytest.mark.asyncio
async def test_approve_creates_reading_with_frozen_price():
    db = AsyncMock(spec=AsyncSession)
    company_id = uuid4()
    approver = User(id=uuid4(), company_id=company_id, role=UserRole.COMPANY_STAFF)
    submission = _submission(company_id, submitted="150")
    fee_type = _metered_fee_type(company_id)
    db.get.return_value = fee_type

    with patch.object(MeterService, "_get_submission_for_update", new_callable=AsyncMock) as mock_get, \
            patch.object(MeterService, "get_latest_reading", new_callable=AsyncMock) as mock_latest, \
            patch.object(MeterService, "resolve_unit_price", new_callable=AsyncMock) as mock_price:
        mock_get.return_value = submission
        mock_latest.return_value = _reading("100")
        mock_price.return_value = 500
        approved = await MeterService.approve_submission(db, submission.id, approver, reading_date=date(2026, 3, 31))

    reading = db.add.call_args.args[0]
    assert isinstance(reading, MeterReading)
    assert reading.previous_reading == Decimal("100")
    assert reading.current_reading == Decimal("150")
    assert reading.unit_price == 500
    assert approved.status == SubmissionStatus.APPROVED
    assert approved.reviewed_by == approver.id
    assert approved.meter_reading_id == reading.id


@pytest.mark.asyncio
async def test_approve_below_latest_reading_rejected():
    db = AsyncMock(spec=AsyncSession)
    company_id = uuid4()
    approver = User(id=uuid4(), company_id=company_id, role=UserRole.COMPANY_STAFF)
    submission = _submission(company_id, submitted="150")

    with patch.object(MeterService, "_get_submission_for_update", new_callable=AsyncMock) as mock_get, \
            patch.object(MeterService, "get_latest_reading", new_callable=AsyncMock) as mock_latest:
        mock_get.return_value = submission
        mock_latest.return_value = _reading("180")
        with pytest.raises(ValidationError):
            await MeterService.approve_submission(db, submission.id, approver)

    assert submission.status == SubmissionStatus.PENDING
    assert not db.commit.called


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [SubmissionStatus.APPROVED, SubmissionStatus.REJECTED])
async def test_review_of_decided_submission_conflicts(status):
    db = AsyncMock(spec=AsyncSession)
    company_id = uuid4()
    reviewer = User(id=uuid4(), company_id=company_id, role=UserRole.COMPANY_STAFF)
    submission = _submission(company_id, status=status)

    with patch.object(MeterService, "_get_submission_for_update", new_callable=AsyncMock) as mock_get:
        mock_get.return_value = submission
        with pytest.raises(ConflictError) as exc:
            await MeterService.approve_submission(db, submission.id, reviewer)
        with pytest.raises(ConflictError):
            await MeterService.reject_submission(db, submission.id, reviewer, "blurry photo")

    assert exc.value.current_status == status.value
    assert exc.value.allowed_transitions == []


@pytest.mark.asyncio
async def test_reject_requires_reason():
    db = AsyncMock(spec=AsyncSession)
    reviewer = User(id=uuid4(), company_id=uuid4(), role=UserRole.COMPANY_STAFF)

    with pytest.raises(ValidationError):
        await MeterService.reject_submission(db, uuid4(), reviewer, "   ")

    assert not db.scalar.called


@pytest.mark.asyncio
async def test_reject_records_reason():
    db = AsyncMock(spec=AsyncSession)
    company_id = uuid4()
    reviewer = User(id=uuid4(), company_id=company_id, role=UserRole.COMPANY_STAFF)
    submission = _submission(company_id)

    with patch.object(MeterService, "_get_submission_for_update", new_callable=AsyncMock) as mock_get:
        mock_get.return_value = submission
        rejected = await MeterService.reject_submission(db, submission.id, reviewer, " Photo unreadable ")

    assert rejected.status == SubmissionStatus.REJECTED
    assert rejected.rejection_reason == "Photo unreadable"
    assert rejected.meter_reading_id is None
    assert not db.add.called


@pytest.mark.asyncio
async def test_reviewer_from_other_company_denied():
    db = AsyncMock(spec=AsyncSession)
    submission = _submission(uuid4())
    reviewer = User(id=uuid4(), company_id=uuid4(), role=UserRole.COMPANY_STAFF)
    db.scalar.side_effect = [submission, submission.company_id]

    with pytest.raises(PermissionDeniedError):
        await MeterService._get_submission_for_update(db, submission.id, reviewer)


@pytest.mark.asyncio
async def test_resolve_unit_price_prefers_active_override():
    db = AsyncMock(spec=AsyncSession)
    fee_type = _metered_fee_type(uuid4(), default_unit_price=500)
    override = MagicMock(is_active=True, custom_amount=None, custom_unit_price=350)
    db.scalar.return_value = override

    assert await MeterService.resolve_unit_price(db, uuid4(), fee_type) == 350

    override.is_active = False
    assert await MeterService.resolve_unit_price(db, uuid4(), fee_type) == 500
