"""Meter Service - reading ledger and tenant submission review"""

import logging
from datetime import date
from decimal import Decimal
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    AppError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from app.models.company import User
from app.models.enums import FeeCalculationType, LeaseStatus, SubmissionStatus
from app.models.fee import FeeType, UnitFeeOverride
from app.models.meter import MeterReading, TenantMeterSubmission
from app.models.property import Lease, Tenant, Unit
from app.schemas.meter import (
    BulkReadingError,
    MeterReadingBulkCreate,
    MeterReadingCreate,
    TenantSubmissionCreate,
)
from app.services import fee_calculator
from app.services.notification_service import NotificationService
from app.utils.time import get_utc_now, get_utc_today

logger = logging.getLogger(__name__)

SUBMISSION_TRANSITIONS = {
    SubmissionStatus.PENDING: [SubmissionStatus.APPROVED.value, SubmissionStatus.REJECTED.value],
    SubmissionStatus.APPROVED: [],
    SubmissionStatus.REJECTED: [],
}


def _ensure_pending(submission: TenantMeterSubmission) -> None:
    status = SubmissionStatus(submission.status)
    if status != SubmissionStatus.PENDING:
        raise ConflictError(
            f"Submission is already {status.value}",
            current_status=status.value,
            allowed_transitions=SUBMISSION_TRANSITIONS[status],
        )


class MeterService:
    @staticmethod
    async def get_latest_reading(
        db: AsyncSession,
        unit_id: UUID,
        fee_type_id: UUID,
    ) -> Optional[MeterReading]:
        """Most recent accepted reading; the baseline for the next one."""
        return await db.scalar(
            select(MeterReading)
            .where(MeterReading.unit_id == unit_id, MeterReading.fee_type_id == fee_type_id)
            .order_by(MeterReading.reading_date.desc(), MeterReading.created_at.desc())
            .limit(1)
        )

    @staticmethod
    async def resolve_unit_price(db: AsyncSession, unit_id: UUID, fee_type: FeeType) -> int:
        """Active unit override price, else the fee type default, else 0."""
        override = await db.scalar(
            select(UnitFeeOverride).where(
                UnitFeeOverride.unit_id == unit_id,
                UnitFeeOverride.fee_type_id == fee_type.id,
            )
        )
        context = fee_calculator.context_from_override(override)
        return fee_calculator.resolve_unit_price(fee_type, context)

    @staticmethod
    async def _get_metered_fee_type(db: AsyncSession, fee_type_id: UUID, company_id: UUID) -> FeeType:
        fee_type = await db.scalar(
            select(FeeType).where(FeeType.id == fee_type_id, FeeType.company_id == company_id)
        )
        if not fee_type:
            raise NotFoundError("Fee type not found")
        if FeeCalculationType(fee_type.calculation_type) != FeeCalculationType.METERED:
            raise ValidationError(
                "Readings can only be recorded for metered fee types",
                details={"calculation_type": FeeCalculationType(fee_type.calculation_type).value},
            )
        return fee_type

    @staticmethod
    async def record_reading(
        db: AsyncSession,
        company_id: UUID,
        data: MeterReadingCreate,
        recorded_by: Optional[UUID] = None,
        auto_commit: bool = True,
    ) -> MeterReading:
        """
        Staff direct entry. The previous reading defaults to the latest
        accepted one and the unit price is frozen on the new row.
        """
        unit = await db.scalar(select(Unit).where(Unit.id == data.unit_id, Unit.company_id == company_id))
        if not unit:
            raise NotFoundError("Unit not found")
        fee_type = await MeterService._get_metered_fee_type(db, data.fee_type_id, company_id)

        previous = data.previous_reading
        if previous is None:
            latest = await MeterService.get_latest_reading(db, unit.id, fee_type.id)
            previous = latest.current_reading if latest else Decimal("0")
        fee_calculator.calculate_meter_consumption(data.current_reading, previous)

        unit_price = data.unit_price
        if unit_price is None:
            unit_price = await MeterService.resolve_unit_price(db, unit.id, fee_type)

        reading = MeterReading(
            company_id=company_id,
            unit_id=unit.id,
            fee_type_id=fee_type.id,
            reading_date=data.reading_date or get_utc_today(),
            previous_reading=previous,
            current_reading=data.current_reading,
            unit_price=unit_price,
            recorded_by=recorded_by,
            notes=data.notes,
        )
        db.add(reading)
        if auto_commit:
            await db.commit()
            await db.refresh(reading)
        else:
            await db.flush()
        return reading

    @staticmethod
    async def bulk_record_readings(
        db: AsyncSession,
        company_id: UUID,
        data: MeterReadingBulkCreate,
        recorded_by: Optional[UUID] = None,
    ) -> Tuple[List[MeterReading], List[BulkReadingError]]:
        """Record many readings; a bad row is reported and does not block the others."""
        created: List[MeterReading] = []
        errors: List[BulkReadingError] = []
        for index, item in enumerate(data.readings):
            try:
                async with db.begin_nested():
                    reading = await MeterService.record_reading(
                        db, company_id, item, recorded_by=recorded_by, auto_commit=False
                    )
                created.append(reading)
            except (AppError, IntegrityError) as e:
                message = e.message if isinstance(e, AppError) else "Reading violates a ledger constraint"
                errors.append(BulkReadingError(
                    index=index, unit_id=item.unit_id, fee_type_id=item.fee_type_id, error=message,
                ))

        await db.commit()
        for reading in created:
            await db.refresh(reading)
        logger.info(
            "Bulk meter readings recorded",
            extra={"company_id": str(company_id), "created_count": len(created), "error_count": len(errors)},
        )
        return created, errors

    @staticmethod
    async def list_readings(
        db: AsyncSession,
        company_id: UUID,
        unit_id: Optional[UUID] = None,
        fee_type_id: Optional[UUID] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        limit: int = 100,
    ) -> List[MeterReading]:
        query = select(MeterReading).where(MeterReading.company_id == company_id)
        if unit_id:
            query = query.where(MeterReading.unit_id == unit_id)
        if fee_type_id:
            query = query.where(MeterReading.fee_type_id == fee_type_id)
        if date_from:
            query = query.where(MeterReading.reading_date >= date_from)
        if date_to:
            query = query.where(MeterReading.reading_date <= date_to)
        result = await db.execute(
            query.order_by(MeterReading.reading_date.desc(), MeterReading.created_at.desc()).limit(limit)
        )
        return list(result.scalars().all())

    # --- Tenant submissions ---

    @staticmethod
    async def get_active_lease(db: AsyncSession, tenant: Tenant) -> Optional[Lease]:
        return await db.scalar(
            select(Lease)
            .where(
                Lease.tenant_id == tenant.id,
                Lease.company_id == tenant.company_id,
                Lease.status == LeaseStatus.ACTIVE,
            )
            .order_by(Lease.start_date.desc())
            .limit(1)
        )

    @staticmethod
    async def submit_reading(
        db: AsyncSession,
        tenant: Tenant,
        data: TenantSubmissionCreate,
    ) -> TenantMeterSubmission:
        """
        Tenant proposes a reading for review. At most one pending submission
        per (tenant, fee type); the partial unique index backs the check.
        """
        lease = await MeterService.get_active_lease(db, tenant)
        if not lease:
            raise ValidationError("No active lease found for tenant")
        fee_type = await MeterService._get_metered_fee_type(db, data.fee_type_id, tenant.company_id)

        pending = await db.scalar(
            select(TenantMeterSubmission.id).where(
                TenantMeterSubmission.tenant_id == tenant.id,
                TenantMeterSubmission.fee_type_id == fee_type.id,
                TenantMeterSubmission.status == SubmissionStatus.PENDING,
            )
        )
        if pending:
            raise ConflictError(
                "A pending submission already exists for this meter",
                current_status=SubmissionStatus.PENDING.value,
                details={"submission_id": str(pending)},
            )

        latest = await MeterService.get_latest_reading(db, lease.unit_id, fee_type.id)
        if latest and data.submitted_reading < latest.current_reading:
            raise ValidationError(
                "Submitted reading is lower than the previous reading",
                details={
                    "submitted_reading": str(data.submitted_reading),
                    "previous_reading": str(latest.current_reading),
                },
            )

        submission = TenantMeterSubmission(
            company_id=tenant.company_id,
            tenant_id=tenant.id,
            unit_id=lease.unit_id,
            fee_type_id=fee_type.id,
            submitted_reading=data.submitted_reading,
            photo_url=data.photo_url,
            notes=data.notes,
            status=SubmissionStatus.PENDING,
            submitted_at=get_utc_now(),
        )
        db.add(submission)
        try:
            await db.flush()
        except IntegrityError:
            # Lost the race against a concurrent submit
            await db.rollback()
            raise ConflictError(
                "A pending submission already exists for this meter",
                current_status=SubmissionStatus.PENDING.value,
            )

        NotificationService.create_in_app(
            db,
            company_id=tenant.company_id,
            title="New meter reading submission",
            message=f"{tenant.name} submitted a {fee_type.name} reading of {data.submitted_reading}",
            related_type="meter_submission",
            related_id=submission.id,
        )
        await db.commit()
        await db.refresh(submission)
        logger.info(
            "Meter reading submitted",
            extra={"submission_id": str(submission.id), "tenant_id": str(tenant.id)},
        )
        return submission

    @staticmethod
    async def _get_submission_for_update(
        db: AsyncSession,
        submission_id: UUID,
        reviewer: User,
    ) -> TenantMeterSubmission:
        submission = await db.scalar(
            select(TenantMeterSubmission)
            .where(TenantMeterSubmission.id == submission_id)
            .with_for_update()
        )
        if not submission:
            raise NotFoundError("Submission not found")
        unit_company_id = await db.scalar(select(Unit.company_id).where(Unit.id == submission.unit_id))
        if reviewer.company_id != unit_company_id:
            raise PermissionDeniedError("Submission belongs to another company")
        return submission

    @staticmethod
    async def approve_submission(
        db: AsyncSession,
        submission_id: UUID,
        approver: User,
        reading_date: Optional[date] = None,
    ) -> TenantMeterSubmission:
        """Accept a pending submission into the ledger as a new MeterReading."""
        submission = await MeterService._get_submission_for_update(db, submission_id, approver)
        _ensure_pending(submission)

        latest = await MeterService.get_latest_reading(db, submission.unit_id, submission.fee_type_id)
        previous = latest.current_reading if latest else Decimal("0")
        fee_calculator.calculate_meter_consumption(submission.submitted_reading, previous)

        fee_type = await db.get(FeeType, submission.fee_type_id)
        unit_price = await MeterService.resolve_unit_price(db, submission.unit_id, fee_type)

        reading = MeterReading(
            company_id=submission.company_id,
            unit_id=submission.unit_id,
            fee_type_id=submission.fee_type_id,
            reading_date=reading_date or get_utc_today(),
            previous_reading=previous,
            current_reading=submission.submitted_reading,
            unit_price=unit_price,
            recorded_by=approver.id,
            notes="Approved tenant submission",
        )
        db.add(reading)
        await db.flush()

        submission.status = SubmissionStatus.APPROVED
        submission.reviewed_by = approver.id
        submission.reviewed_at = get_utc_now()
        submission.meter_reading_id = reading.id

        await db.commit()
        await db.refresh(submission)
        logger.info(
            "Meter submission approved",
            extra={"submission_id": str(submission.id), "meter_reading_id": str(reading.id)},
        )
        return submission

    @staticmethod
    async def reject_submission(
        db: AsyncSession,
        submission_id: UUID,
        reviewer: User,
        rejection_reason: str,
    ) -> TenantMeterSubmission:
        reason = (rejection_reason or "").strip()
        if not reason:
            raise ValidationError("Rejection reason is required")

        submission = await MeterService._get_submission_for_update(db, submission_id, reviewer)
        _ensure_pending(submission)

        submission.status = SubmissionStatus.REJECTED
        submission.reviewed_by = reviewer.id
        submission.reviewed_at = get_utc_now()
        submission.rejection_reason = reason

        await db.commit()
        await db.refresh(submission)
        logger.info("Meter submission rejected", extra={"submission_id": str(submission.id)})
        return submission

    @staticmethod
    async def list_submissions(
        db: AsyncSession,
        company_id: UUID,
        status: Optional[SubmissionStatus] = None,
        limit: int = 100,
    ) -> List[TenantMeterSubmission]:
        query = select(TenantMeterSubmission).where(TenantMeterSubmission.company_id == company_id)
        if status is not None:
            query = query.where(TenantMeterSubmission.status == status)
        result = await db.execute(query.order_by(TenantMeterSubmission.submitted_at.desc()).limit(limit))
        return list(result.scalars().all())

    @staticmethod
    async def list_tenant_submissions(db: AsyncSession, tenant: Tenant) -> List[TenantMeterSubmission]:
        result = await db.execute(
            select(TenantMeterSubmission)
            .where(TenantMeterSubmission.tenant_id == tenant.id)
            .order_by(TenantMeterSubmission.submitted_at.desc())
        )
        return list(result.scalars().all())
