"""Billing Service - issuance, payments and status transitions"""

import logging
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.config import settings
from app.core.exceptions import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from app.models.billing import Billing, BillingItem, Payment
from app.models.company import Company
from app.models.enums import BillingStatus, LeaseStatus, PaymentMethod, PaymentStatus
from app.models.fee import FeeType, UnitFeeOverride
from app.models.meter import MeterReading
from app.models.property import Lease, Tenant
from app.schemas.billing import BillingGenerateRequest, PaymentClaimCreate, PaymentCreate
from app.schemas.notification import BillingIssuedData, PaymentConfirmedData
from app.services import billing_rules, fee_calculator
from app.services.fee_calculator import LineItem, MeterUsage
from app.services.notification_queue import (
    NotificationQueueService,
    load_settings_snapshot,
    tenant_recipient,
)
from app.services.notification_service import NotificationService
from app.utils.time import get_utc_now, get_utc_today, month_bounds, parse_billing_month

logger = logging.getLogger(__name__)

# Claims are confirmed once; completed payments can only be removed
PAYMENT_TRANSITIONS = {
    PaymentStatus.PENDING: [PaymentStatus.COMPLETED.value],
    PaymentStatus.COMPLETED: [],
}


def _apply_outcome(billing: Billing, outcome: billing_rules.PaymentOutcome) -> None:
    previous = BillingStatus(billing.status)
    billing.paid_amount = outcome.paid_amount
    billing.status = outcome.status
    if outcome.status == BillingStatus.PAID:
        if previous != BillingStatus.PAID:
            billing.paid_at = get_utc_now()
    else:
        billing.paid_at = None
    # A billing that leaves overdue gets a fresh notice if it becomes overdue again
    if previous == BillingStatus.OVERDUE and outcome.status != BillingStatus.OVERDUE:
        billing.overdue_notified_at = None


class BillingService:
    @staticmethod
    async def _get_billing_for_update(db: AsyncSession, billing_id: UUID, company_id: UUID) -> Billing:
        """Load and row-lock a billing for the rest of the transaction."""
        billing = await db.scalar(
            select(Billing).where(Billing.id == billing_id).with_for_update()
        )
        if not billing:
            raise NotFoundError("Billing not found")
        if billing.company_id != company_id:
            raise PermissionDeniedError("Billing belongs to another company")
        return billing

    @staticmethod
    async def _get_payment_for_update(db: AsyncSession, payment_id: UUID) -> Payment:
        """Row-lock and re-read a payment; call only while holding its billing's lock."""
        payment = await db.scalar(
            select(Payment)
            .where(Payment.id == payment_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        if not payment:
            raise NotFoundError("Payment not found")
        return payment

    @staticmethod
    async def get_billing(db: AsyncSession, billing_id: UUID, company_id: UUID) -> Billing:
        billing = await db.scalar(
            select(Billing)
            .options(selectinload(Billing.items), selectinload(Billing.payments))
            .where(Billing.id == billing_id, Billing.company_id == company_id)
        )
        if not billing:
            raise NotFoundError("Billing not found")
        return billing

    @staticmethod
    async def list_billings(
        db: AsyncSession,
        company_id: UUID,
        status: Optional[BillingStatus] = None,
        billing_month: Optional[date] = None,
        tenant_id: Optional[UUID] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Tuple[List[Billing], int]:
        conditions = [Billing.company_id == company_id]
        if status is not None:
            conditions.append(Billing.status == status)
        if billing_month is not None:
            conditions.append(Billing.billing_month == billing_month)
        if tenant_id is not None:
            conditions.append(Billing.tenant_id == tenant_id)

        total = await db.scalar(select(func.count()).select_from(Billing).where(*conditions))
        result = await db.execute(
            select(Billing)
            .where(*conditions)
            .order_by(Billing.billing_month.desc(), Billing.billing_number.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all()), total or 0

    @staticmethod
    async def list_tenant_billings(db: AsyncSession, tenant: Tenant) -> List[Billing]:
        result = await db.execute(
            select(Billing)
            .options(selectinload(Billing.items), selectinload(Billing.payments))
            .where(
                Billing.tenant_id == tenant.id,
                Billing.company_id == tenant.company_id,
                Billing.status != BillingStatus.CANCELLED,
            )
            .order_by(Billing.billing_month.desc())
        )
        return list(result.scalars().all())

    @staticmethod
    async def list_payments(db: AsyncSession, billing_id: UUID, company_id: UUID) -> List[Payment]:
        result = await db.execute(
            select(Payment)
            .where(Payment.billing_id == billing_id, Payment.company_id == company_id)
            .order_by(Payment.payment_date.desc(), Payment.created_at.desc())
        )
        return list(result.scalars().all())

    @staticmethod
    async def record_payment(
        db: AsyncSession,
        billing_id: UUID,
        company_id: UUID,
        data: PaymentCreate,
        recorded_by: Optional[UUID] = None,
        today: Optional[date] = None,
    ) -> Tuple[Payment, Billing]:
        """
        Record a completed payment and move the billing through the status machine.
        Overpayment is stored as-is and logged.
        """
        today = today or get_utc_today()
        billing = await BillingService._get_billing_for_update(db, billing_id, company_id)

        outcome = billing_rules.status_after_payment(
            billing.status, billing.total_amount, billing.paid_amount, data.amount, billing.due_date, today,
        )
        if outcome.overpaid_by:
            logger.warning(
                "Overpayment recorded",
                extra={
                    "billing_id": str(billing.id),
                    "total_amount": billing.total_amount,
                    "paid_amount": outcome.paid_amount,
                    "overpaid_by": outcome.overpaid_by,
                },
            )

        now = get_utc_now()
        payment = Payment(
            company_id=company_id,
            billing_id=billing.id,
            lease_id=billing.lease_id,
            amount=data.amount,
            payment_date=data.payment_date,
            payment_method=data.payment_method,
            reference_number=data.reference_number,
            notes=data.notes,
            status=PaymentStatus.COMPLETED,
            recorded_by=recorded_by,
            confirmed_at=now,
        )
        db.add(payment)
        _apply_outcome(billing, outcome)
        await db.flush()

        await BillingService._notify_payment_confirmed(db, billing, payment)
        await db.commit()
        await db.refresh(payment)
        await db.refresh(billing)
        logger.info(
            "Payment recorded",
            extra={"billing_id": str(billing.id), "amount": data.amount, "status": billing.status.value},
        )
        return payment, billing

    @staticmethod
    async def confirm_payment(
        db: AsyncSession,
        payment_id: UUID,
        company_id: UUID,
        confirmed_by: Optional[UUID] = None,
        today: Optional[date] = None,
    ) -> Tuple[Payment, Billing]:
        """Turn a tenant's pending payment claim into a completed payment."""
        today = today or get_utc_today()
        payment = await db.get(Payment, payment_id)
        if not payment or payment.company_id != company_id:
            raise NotFoundError("Payment not found")

        billing = await BillingService._get_billing_for_update(db, payment.billing_id, company_id)
        # Re-read under the billing lock; a concurrent confirm or remove may have won
        payment = await BillingService._get_payment_for_update(db, payment_id)
        if payment.status != PaymentStatus.PENDING:
            raise ConflictError(
                "Payment is already confirmed",
                current_status=payment.status.value,
                allowed_transitions=PAYMENT_TRANSITIONS[PaymentStatus(payment.status)],
            )

        outcome = billing_rules.status_after_payment(
            billing.status, billing.total_amount, billing.paid_amount, payment.amount, billing.due_date, today,
        )
        if outcome.overpaid_by:
            logger.warning(
                "Overpayment confirmed",
                extra={"billing_id": str(billing.id), "overpaid_by": outcome.overpaid_by},
            )

        payment.status = PaymentStatus.COMPLETED
        payment.confirmed_at = get_utc_now()
        payment.recorded_by = confirmed_by or payment.recorded_by
        _apply_outcome(billing, outcome)

        await BillingService._notify_payment_confirmed(db, billing, payment)
        await db.commit()
        await db.refresh(payment)
        await db.refresh(billing)
        return payment, billing

    @staticmethod
    async def remove_payment(
        db: AsyncSession,
        payment_id: UUID,
        company_id: UUID,
        today: Optional[date] = None,
    ) -> Billing:
        """Delete a payment; completed payments are reversed out of the billing first."""
        today = today or get_utc_today()
        payment = await db.get(Payment, payment_id)
        if not payment or payment.company_id != company_id:
            raise NotFoundError("Payment not found")

        billing = await BillingService._get_billing_for_update(db, payment.billing_id, company_id)
        # The status read before the lock may be stale, or the row already deleted
        payment = await BillingService._get_payment_for_update(db, payment_id)
        if payment.status == PaymentStatus.COMPLETED:
            outcome = billing_rules.status_after_payment_removal(
                billing.status, billing.total_amount, billing.paid_amount, payment.amount, billing.due_date, today,
            )
            _apply_outcome(billing, outcome)

        await db.delete(payment)
        await db.commit()
        await db.refresh(billing)
        logger.info(
            "Payment removed",
            extra={"billing_id": str(billing.id), "payment_id": str(payment_id), "status": billing.status.value},
        )
        return billing

    @staticmethod
    async def cancel_billing(
        db: AsyncSession,
        billing_id: UUID,
        company_id: UUID,
        reason: Optional[str] = None,
    ) -> Billing:
        billing = await BillingService._get_billing_for_update(db, billing_id, company_id)
        billing_rules.ensure_can_cancel(billing.status)

        billing.status = BillingStatus.CANCELLED
        billing.cancelled_at = get_utc_now()
        if reason:
            billing.notes = f"{billing.notes}\n{reason}" if billing.notes else reason

        await db.commit()
        await db.refresh(billing)
        logger.info("Billing cancelled", extra={"billing_id": str(billing.id)})
        return billing

    @staticmethod
    async def submit_payment_claim(
        db: AsyncSession,
        tenant: Tenant,
        data: PaymentClaimCreate,
        today: Optional[date] = None,
    ) -> Payment:
        """
        Tenant reports a payment. It stays PENDING, does not touch paid_amount,
        and staff are notified in-app to confirm it.
        """
        today = today or get_utc_today()
        billing = await db.scalar(
            select(Billing).where(Billing.id == data.billing_id, Billing.tenant_id == tenant.id)
        )
        if not billing:
            raise NotFoundError("Billing not found")
        billing_rules.ensure_accepts_payment(billing.status)

        payment = Payment(
            company_id=billing.company_id,
            billing_id=billing.id,
            lease_id=billing.lease_id,
            amount=data.amount,
            payment_date=today,
            payment_method=PaymentMethod.BANK_TRANSFER,
            notes=data.notes,
            status=PaymentStatus.PENDING,
        )
        db.add(payment)
        await db.flush()

        NotificationService.create_in_app(
            db,
            company_id=billing.company_id,
            title="Payment claim submitted",
            message=(
                f"{tenant.name} reported a payment of "
                f"{settings.CURRENCY_SYMBOL}{data.amount:,} for {billing.billing_number}"
            ),
            related_type="payment",
            related_id=payment.id,
        )
        await db.commit()
        await db.refresh(payment)
        return payment

    @staticmethod
    async def _notify_payment_confirmed(db: AsyncSession, billing: Billing, payment: Payment) -> None:
        tenant = await db.get(Tenant, billing.tenant_id)
        company = await db.get(Company, billing.company_id)
        if tenant is None or company is None:
            return
        snapshot = await load_settings_snapshot(db, billing.company_id)
        payload = PaymentConfirmedData(
            tenant_name=tenant.name,
            company_name=company.name,
            billing_number=billing.billing_number,
            paid_amount=payment.amount,
            payment_date=payment.payment_date,
            remaining_amount=fee_calculator.calculate_outstanding(billing.total_amount, billing.paid_amount),
        )
        await NotificationQueueService.enqueue_for_channels(
            db,
            company_id=billing.company_id,
            recipient=tenant_recipient(tenant),
            payload=payload,
            settings_snapshot=snapshot,
            # One confirmation per payment, whichever path confirmed it
            dedupe_key_prefix=f"payment_confirmed:{payment.id}",
        )

    # --- Monthly issuance ---

    @staticmethod
    async def _next_sequence(db: AsyncSession, company_id: UUID, month_start: date) -> int:
        prefix = f"INV-{month_start:%Y%m}-"
        count = await db.scalar(
            select(func.count()).select_from(Billing).where(
                Billing.company_id == company_id,
                Billing.billing_number.like(f"{prefix}%"),
            )
        )
        return (count or 0) + 1

    @staticmethod
    def build_items(
        lease: Lease,
        fee_types: List[FeeType],
        overrides: Dict[UUID, UnitFeeOverride],
        readings: Dict[UUID, MeterReading],
        billing_month: str,
    ) -> List[Tuple[LineItem, Optional[UUID], Optional[UUID]]]:
        """
        Line items for one lease: rent first, then fee types with an active
        unit override, then the remaining company-wide fee types. Zero-amount
        fee lines are dropped. Returns (line, fee_type_id, meter_reading_id).
        """
        items = []
        if lease.monthly_rent:
            rent = int(lease.monthly_rent)
            items.append((
                LineItem(fee_name="Rent", quantity=Decimal("1"), unit_price=rent, amount=rent, description=billing_month),
                None,
                None,
            ))

        def has_override(ft: FeeType) -> bool:
            o = overrides.get(ft.id)
            return o is not None and o.is_active

        ordered = [ft for ft in fee_types if has_override(ft)] + [ft for ft in fee_types if not has_override(ft)]
        area = lease.unit.area_sqm if lease.unit is not None else None

        for fee_type in ordered:
            reading = readings.get(fee_type.id)
            meter = MeterUsage(reading.consumption, int(reading.unit_price)) if reading is not None else None
            context = fee_calculator.context_from_override(overrides.get(fee_type.id), area, meter)
            line = fee_calculator.build_line_item(fee_type, context)
            if line.amount <= 0:
                continue
            items.append((line, fee_type.id, reading.id if meter is not None else None))
        return items

    @staticmethod
    async def generate_billings(
        db: AsyncSession,
        company_id: UUID,
        request: BillingGenerateRequest,
    ) -> Tuple[List[Billing], int]:
        """
        Issue one billing per active lease for the month.
        Units already billed for the month (non-cancelled) are skipped.
        Returns (created billings, skipped unit count).
        """
        try:
            month_start = parse_billing_month(request.billing_month)
        except ValueError as e:
            raise ValidationError(str(e))
        if request.due_date < request.issue_date:
            raise ValidationError("due_date cannot be before issue_date")
        _, month_end = month_bounds(month_start)

        lease_query = (
            select(Lease)
            .options(selectinload(Lease.tenant), selectinload(Lease.unit))
            .where(
                Lease.company_id == company_id,
                Lease.status == LeaseStatus.ACTIVE,
                Lease.start_date < month_end,
                Lease.end_date >= month_start,
            )
        )
        if request.lease_ids:
            lease_query = lease_query.where(Lease.id.in_(request.lease_ids))
        leases = list((await db.execute(lease_query)).scalars().all())
        if not leases:
            raise NotFoundError("No active leases found")

        billed = await db.execute(
            select(Billing.unit_id).where(
                Billing.company_id == company_id,
                Billing.billing_month == month_start,
                Billing.status != BillingStatus.CANCELLED,
            )
        )
        billed_units = set(billed.scalars().all())
        eligible = []
        for lease in leases:
            if lease.unit_id in billed_units:
                continue
            billed_units.add(lease.unit_id)
            eligible.append(lease)
        skipped = len(leases) - len(eligible)
        if not eligible:
            raise ConflictError("All selected units already have billings for this month")

        unit_ids = [lease.unit_id for lease in eligible]
        fee_types = list((await db.execute(
            select(FeeType)
            .where(FeeType.company_id == company_id, FeeType.is_active.is_(True))
            .order_by(FeeType.display_order, FeeType.name)
        )).scalars().all())

        overrides: Dict[UUID, Dict[UUID, UnitFeeOverride]] = {}
        for o in (await db.execute(
            select(UnitFeeOverride).where(UnitFeeOverride.unit_id.in_(unit_ids))
        )).scalars().all():
            overrides.setdefault(o.unit_id, {})[o.fee_type_id] = o

        # Latest reading in the month per (unit, fee type)
        readings: Dict[UUID, Dict[UUID, MeterReading]] = {}
        for r in (await db.execute(
            select(MeterReading)
            .where(
                MeterReading.company_id == company_id,
                MeterReading.unit_id.in_(unit_ids),
                MeterReading.reading_date >= month_start,
                MeterReading.reading_date < month_end,
            )
            .order_by(MeterReading.reading_date.desc(), MeterReading.created_at.desc())
        )).scalars().all():
            readings.setdefault(r.unit_id, {}).setdefault(r.fee_type_id, r)

        sequence = await BillingService._next_sequence(db, company_id, month_start)
        created: List[Billing] = []
        for lease in eligible:
            lines = BillingService.build_items(
                lease, fee_types, overrides.get(lease.unit_id, {}), readings.get(lease.unit_id, {}),
                request.billing_month,
            )
            subtotal = fee_calculator.calculate_subtotal(line.amount for line, _, _ in lines)
            tax = fee_calculator.calculate_tax(subtotal)
            billing = Billing(
                company_id=company_id,
                lease_id=lease.id,
                tenant_id=lease.tenant_id,
                unit_id=lease.unit_id,
                billing_number=f"INV-{month_start:%Y%m}-{sequence:04d}",
                billing_month=month_start,
                issue_date=request.issue_date,
                due_date=request.due_date,
                subtotal=subtotal,
                tax_amount=tax,
                total_amount=fee_calculator.calculate_billing_total((line.amount for line, _, _ in lines), tax),
                paid_amount=0,
                status=BillingStatus.PENDING,
            )
            billing.items = [
                BillingItem(
                    position=position,
                    fee_type_id=fee_type_id,
                    meter_reading_id=reading_id,
                    fee_name=line.fee_name,
                    description=line.description,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    amount=line.amount,
                )
                for position, (line, fee_type_id, reading_id) in enumerate(lines)
            ]
            db.add(billing)
            created.append(billing)
            sequence += 1

        try:
            await db.flush()
        except IntegrityError:
            await db.rollback()
            raise ConflictError("A billing for one of these units was created concurrently; retry the request")

        if request.notify_tenants:
            await BillingService._notify_billings_issued(db, company_id, created, eligible)

        await db.commit()
        logger.info(
            "Billings generated",
            extra={
                "company_id": str(company_id),
                "billing_month": request.billing_month,
                "count": len(created),
                "skipped_units": skipped,
            },
        )
        return created, skipped

    @staticmethod
    async def _notify_billings_issued(
        db: AsyncSession,
        company_id: UUID,
        billings: List[Billing],
        leases: List[Lease],
    ) -> None:
        company = await db.get(Company, company_id)
        snapshot = await load_settings_snapshot(db, company_id)
        tenants = {lease.tenant_id: lease.tenant for lease in leases}
        for billing in billings:
            tenant = tenants.get(billing.tenant_id)
            if tenant is None:
                continue
            payload = BillingIssuedData(
                tenant_name=tenant.name,
                company_name=company.name if company else settings.APP_NAME,
                billing_number=billing.billing_number,
                billing_month=f"{billing.billing_month:%Y-%m}",
                total_amount=billing.total_amount,
                due_date=billing.due_date,
                portal_url=settings.PORTAL_URL,
            )
            await NotificationQueueService.enqueue_for_channels(
                db,
                company_id=company_id,
                recipient=tenant_recipient(tenant),
                payload=payload,
                settings_snapshot=snapshot,
                dedupe_key_prefix=f"billing_issued:{billing.id}",
            )
