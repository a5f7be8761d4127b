"""Unit tests for BillingService."""

import pytest
from datetime import date, timedelta
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from app.models.billing import Billing, Payment
from app.models.enums import BillingStatus, FeeCalculationType, PaymentStatus
from app.schemas.billing import BillingGenerateRequest, PaymentCreate
from app.services.billing_service import BillingService

TODAY = date(2026, 3, 15)


def _billing(company_id, status=BillingStatus.PENDING, total=100000, paid=0, due=None):
    return Billing(
        id=uuid4(),
        company_id=company_id,
        tenant_id=uuid4(),
        unit_id=uuid4(),
        billing_number="INV-202603-0001",
        billing_month=date(2026, 3, 1),
        issue_date=date(2026, 3, 1),
        due_date=due or TODAY + timedelta(days=10),
        total_amount=total,
        paid_amount=paid,
        status=status,
    )


@pytest.mark.asyncio
async def test_record_partial_payment():
    db = AsyncMock(spec=AsyncSession)
    company_id = uuid4()
    billing = _billing(company_id)

    with patch.object(BillingService, "_get_billing_for_update", new_callable=AsyncMock) as mock_get, \
            patch.object(BillingService, "_notify_payment_confirmed", new_callable=AsyncMock) as mock_notify:
        mock_get.return_value = billing
        payment, updated = await BillingService.record_payment(
            db, billing.id, company_id, PaymentCreate(amount=40000, payment_date=TODAY), today=TODAY,
        )

    assert updated.status == BillingStatus.PARTIAL
    assert updated.paid_amount == 40000
    assert updated.paid_at is None
    assert payment.status == PaymentStatus.COMPLETED
    assert payment.amount == 40000
    db.add.assert_called_once_with(payment)
    assert db.commit.called
    mock_notify.assert_awaited_once()


@pytest.mark.asyncio
async def test_record_partial_payment_on_overdue_stays_overdue():
    db = AsyncMock(spec=AsyncSession)
    company_id = uuid4()
    billing = _billing(company_id, status=BillingStatus.OVERDUE, due=TODAY - timedelta(days=1))
    billing.overdue_notified_at = TODAY

    with patch.object(BillingService, "_get_billing_for_update", new_callable=AsyncMock) as mock_get, \
            patch.object(BillingService, "_notify_payment_confirmed", new_callable=AsyncMock):
        mock_get.return_value = billing
        _, updated = await BillingService.record_payment(
            db, billing.id, company_id, PaymentCreate(amount=40000, payment_date=TODAY), today=TODAY,
        )

    assert updated.status == BillingStatus.OVERDUE
    # Still overdue: the notice stamp is kept
    assert updated.overdue_notified_at == TODAY


@pytest.mark.asyncio
async def test_full_payment_sets_paid_at():
    db = AsyncMock(spec=AsyncSession)
    company_id = uuid4()
    billing = _billing(company_id, status=BillingStatus.PARTIAL, paid=40000)

    with patch.object(BillingService, "_get_billing_for_update", new_callable=AsyncMock) as mock_get, \
            patch.object(BillingService, "_notify_payment_confirmed", new_callable=AsyncMock):
        mock_get.return_value = billing
        _, updated = await BillingService.record_payment(
            db, billing.id, company_id, PaymentCreate(amount=60000, payment_date=TODAY), today=TODAY,
        )

    assert updated.status == BillingStatus.PAID
    assert updated.paid_at is not None


@pytest.mark.asyncio
async def test_payment_on_cancelled_billing_conflicts():
    db = AsyncMock(spec=AsyncSession)
    company_id = uuid4()
    billing = _billing(company_id, status=BillingStatus.CANCELLED)

    with patch.object(BillingService, "_get_billing_for_update", new_callable=AsyncMock) as mock_get:
        mock_get.return_value = billing
        with pytest.raises(ConflictError):
            await BillingService.record_payment(
                db, billing.id, company_id, PaymentCreate(amount=1000, payment_date=TODAY), today=TODAY,
            )

    assert not db.add.called
    assert not db.commit.called


@pytest.mark.asyncio
async def test_get_billing_for_update_checks_company():
    db = AsyncMock(spec=AsyncSession)
    billing = _billing(uuid4())
    db.scalar.return_value = billing

    with pytest.raises(PermissionDeniedError):
        await BillingService._get_billing_for_update(db, billing.id, uuid4())


@pytest.mark.asyncio
async def test_get_billing_for_update_not_found():
    db = AsyncMock(spec=AsyncSession)
    db.scalar.return_value = None

    with pytest.raises(NotFoundError):
        await BillingService._get_billing_for_update(db, uuid4(), uuid4())


@pytest.mark.asyncio
async def test_remove_completed_payment_reverts_status():
    db = AsyncMock(spec=AsyncSession)
    company_id = uuid4()
    billing = _billing(company_id, status=BillingStatus.PAID, paid=100000)
    payment = Payment(
        id=uuid4(), company_id=company_id, billing_id=billing.id, amount=60000,
        payment_date=TODAY, status=PaymentStatus.COMPLETED,
    )
    db.get.return_value = payment
    db.scalar.return_value = payment

    with patch.object(BillingService, "_get_billing_for_update", new_callable=AsyncMock) as mock_get:
        mock_get.return_value = billing
        updated = await BillingService.remove_payment(db, payment.id, company_id, today=TODAY)

    assert updated.paid_amount == 40000
    assert updated.status == BillingStatus.PARTIAL
    assert updated.paid_at is None
    db.delete.assert_awaited_once_with(payment)


@pytest.mark.asyncio
async def test_remove_pending_claim_leaves_billing_untouched():
    db = AsyncMock(spec=AsyncSession)
    company_id = uuid4()
    billing = _billing(company_id, status=BillingStatus.PARTIAL, paid=40000)
    payment = Payment(
        id=uuid4(), company_id=company_id, billing_id=billing.id, amount=60000,
        payment_date=TODAY, status=PaymentStatus.PENDING,
    )
    db.get.return_value = payment
    db.scalar.return_value = payment

    with patch.object(BillingService, "_get_billing_for_update", new_callable=AsyncMock) as mock_get:
        mock_get.return_value = billing
        updated = await BillingService.remove_payment(db, payment.id, company_id, today=TODAY)

    assert updated.paid_amount == 40000
    assert updated.status == BillingStatus.PARTIAL


@pytest.mark.asyncio
async def test_remove_payment_already_removed_by_concurrent_request():
    db = AsyncMock(spec=AsyncSession)
    company_id = uuid4()
    # A concurrent removal already reversed the 60000 payment
    billing = _billing(company_id, status=BillingStatus.PARTIAL, paid=40000)
    stale = Payment(
        id=uuid4(), company_id=company_id, billing_id=billing.id, amount=60000,
        payment_date=TODAY, status=PaymentStatus.COMPLETED,
    )
    db.get.return_value = stale
    db.scalar.return_value = None

    with patch.object(BillingService, "_get_billing_for_update", new_callable=AsyncMock) as mock_get:
        mock_get.return_value = billing
        with pytest.raises(NotFoundError):
            await BillingService.remove_payment(db, stale.id, company_id, today=TODAY)

    assert billing.paid_amount == 40000
    assert billing.status == BillingStatus.PARTIAL
    assert not db.delete.called
    assert not db.commit.called


@pytest.mark.asyncio
async def test_remove_claim_confirmed_concurrently_reverses_payment():
    db = AsyncMock(spec=AsyncSession)
    company_id = uuid4()
    billing = _billing(company_id, status=BillingStatus.PARTIAL, paid=60000)
    payment_id = uuid4()
    stale = Payment(
        id=payment_id, company_id=company_id, billing_id=billing.id, amount=60000,
        payment_date=TODAY, status=PaymentStatus.PENDING,
    )
    confirmed = Payment(
        id=payment_id, company_id=company_id, billing_id=billing.id, amount=60000,
        payment_date=TODAY, status=PaymentStatus.COMPLETED,
    )
    db.get.return_value = stale
    db.scalar.return_value = confirmed

    with patch.object(BillingService, "_get_billing_for_update", new_callable=AsyncMock) as mock_get:
        mock_get.return_value = billing
        updated = await BillingService.remove_payment(db, payment_id, company_id, today=TODAY)

    assert updated.paid_amount == 0
    assert updated.status == BillingStatus.PENDING
    db.delete.assert_awaited_once_with(confirmed)


@pytest.mark.asyncio
async def test_remove_payment_other_company_not_found():
    db = AsyncMock(spec=AsyncSession)
    db.get.return_value = Payment(id=uuid4(), company_id=uuid4(), billing_id=uuid4(), amount=1)

    with pytest.raises(NotFoundError):
        await BillingService.remove_payment(db, uuid4(), uuid4(), today=TODAY)


@pytest.mark.asyncio
async def test_confirm_already_completed_payment_conflicts():
    db = AsyncMock(spec=AsyncSession)
    company_id = uuid4()
    billing = _billing(company_id)
    payment = Payment(
        id=uuid4(), company_id=company_id, billing_id=billing.id, amount=1000,
        payment_date=TODAY, status=PaymentStatus.COMPLETED,
    )
    db.get.return_value = payment
    db.scalar.return_value = payment

    with patch.object(BillingService, "_get_billing_for_update", new_callable=AsyncMock) as mock_get:
        mock_get.return_value = billing
        with pytest.raises(ConflictError) as exc:
            await BillingService.confirm_payment(db, payment.id, company_id, today=TODAY)

    assert billing.paid_amount == 0
    assert exc.value.current_status == "completed"
    assert exc.value.allowed_transitions == []


@pytest.mark.asyncio
async def test_confirm_pending_claim_applies_payment():
    db = AsyncMock(spec=AsyncSession)
    company_id = uuid4()
    billing = _billing(company_id)
    payment = Payment(
        id=uuid4(), company_id=company_id, billing_id=billing.id, amount=100000,
        payment_date=TODAY, status=PaymentStatus.PENDING,
    )
    db.get.return_value = payment
    db.scalar.return_value = payment

    with patch.object(BillingService, "_get_billing_for_update", new_callable=AsyncMock) as mock_get, \
            patch.object(BillingService, "_notify_payment_confirmed", new_callable=AsyncMock):
        mock_get.return_value = billing
        confirmed, updated = await BillingService.confirm_payment(db, payment.id, company_id, today=TODAY)

    assert confirmed.status == PaymentStatus.COMPLETED
    assert confirmed.confirmed_at is not None
    assert updated.status == BillingStatus.PAID


@pytest.mark.asyncio
async def test_cancel_paid_billing_conflicts():
    db = AsyncMock(spec=AsyncSession)
    company_id = uuid4()
    billing = _billing(company_id, status=BillingStatus.PAID, paid=100000)

    with patch.object(BillingService, "_get_billing_for_update", new_callable=AsyncMock) as mock_get:
        mock_get.return_value = billing
        with pytest.raises(ConflictError) as exc:
            await BillingService.cancel_billing(db, billing.id, company_id)

    assert exc.value.current_status == "paid"
    assert not db.commit.called


@pytest.mark.asyncio
async def test_cancel_pending_billing_appends_reason():
    db = AsyncMock(spec=AsyncSession)
    company_id = uuid4()
    billing = _billing(company_id)

    with patch.object(BillingService, "_get_billing_for_update", new_callable=AsyncMock) as mock_get:
        mock_get.return_value = billing
        updated = await BillingService.cancel_billing(db, billing.id, company_id, reason="Tenant moved out")

    assert updated.status == BillingStatus.CANCELLED
    assert updated.cancelled_at is not None
    assert updated.notes == "Tenant moved out"


def test_build_items_orders_rent_override_then_defaults():
    unit = SimpleNamespace(area_sqm=Decimal("50"))
    lease = SimpleNamespace(monthly_rent=800000, unit=unit)
    cleaning = SimpleNamespace(
        id=uuid4(), name="Cleaning", calculation_type=FeeCalculationType.FIXED,
        default_amount=20000, default_unit_price=None, unit_label=None,
    )
    heating = SimpleNamespace(
        id=uuid4(), name="Heating", calculation_type=FeeCalculationType.PER_SQM,
        default_amount=None, default_unit_price=1000, unit_label="m²",
    )
    electricity = SimpleNamespace(
        id=uuid4(), name="Electricity", calculation_type=FeeCalculationType.METERED,
        default_amount=None, default_unit_price=500, unit_label="kWh",
    )
    parking = SimpleNamespace(
        id=uuid4(), name="Parking", calculation_type=FeeCalculationType.CUSTOM,
        default_amount=None, default_unit_price=None, unit_label=None,
    )
    overrides = {
        heating.id: SimpleNamespace(is_active=True, custom_amount=None, custom_unit_price=800),
    }
    reading = SimpleNamespace(id=uuid4(), consumption=Decimal("50"), unit_price=500)

    items = BillingService.build_items(
        lease, [cleaning, heating, electricity, parking], overrides, {electricity.id: reading}, "2026-03",
    )

    names = [line.fee_name for line, _, _ in items]
    # Parking is custom without an override: zero amount, dropped
    assert names == ["Rent", "Heating", "Cleaning", "Electricity"]
    amounts = {line.fee_name: line.amount for line, _, _ in items}
    assert amounts == {"Rent": 800000, "Heating": 40000, "Cleaning": 20000, "Electricity": 25000}
    rent_line, rent_fee_type, _ = items[0]
    assert rent_fee_type is None
    assert rent_line.quantity == Decimal("1")
    _, electricity_fee_type, reading_id = items[3]
    assert electricity_fee_type == electricity.id
    assert reading_id == reading.id


@pytest.mark.asyncio
async def test_generate_rejects_due_before_issue():
    db = AsyncMock(spec=AsyncSession)
    request = BillingGenerateRequest(
        billing_month="2026-03", issue_date=date(2026, 3, 10), due_date=date(2026, 3, 1),
    )

    with pytest.raises(ValidationError):
        await BillingService.generate_billings(db, uuid4(), request)

    assert not db.execute.called


@pytest.mark.asyncio
async def test_generate_without_leases_not_found():
    db = AsyncMock(spec=AsyncSession)
    empty = MagicMock()
    empty.scalars.return_value.all.return_value = []
    db.execute.return_value = empty
    request = BillingGenerateRequest(
        billing_month="2026-03", issue_date=date(2026, 3, 1), due_date=date(2026, 3, 25),
    )

    with pytest.raises(NotFoundError):
        await BillingService.generate_billings(db, uuid4(), request)


@pytest.mark.asyncio
async def test_generate_all_units_billed_conflicts():
    db = AsyncMock(spec=AsyncSession)
    unit_id = uuid4()
    lease = SimpleNamespace(id=uuid4(), unit_id=unit_id, tenant_id=uuid4())
    leases_result = MagicMock()
    leases_result.scalars.return_value.all.return_value = [lease]
    billed_result = MagicMock()
    billed_result.scalars.return_value.all.return_value = [unit_id]
    db.execute.side_effect = [leases_result, billed_result]
    request = BillingGenerateRequest(
        billing_month="2026-03", issue_date=date(2026, 3, 1), due_date=date(2026, 3, 25),
    )

    with pytest.raises(ConflictError):
        await BillingService.generate_billings(db, uuid4(), request)

    assert not db.add.called
