"""Domain 3: Meter ledger and tenant submissions"""

from decimal import Decimal

from sqlalchemy import (
    Column, String, Text, Date, DateTime, Numeric, BigInteger, ForeignKey,
    CheckConstraint, Index, text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.models.base import BaseModel, CompanyScopedMixin, pg_enum
from app.models.enums import SubmissionStatus
from app.utils.time import get_utc_now


class MeterReading(BaseModel, CompanyScopedMixin):
    """
    Accepted, immutable measurement for one (unit, fee type).
    unit_price is frozen at creation so historical bills never move.
    """
    __tablename__ = "meter_readings"
    __table_args__ = (
        CheckConstraint("current_reading >= previous_reading", name="ck_meter_readings_monotonic"),
        Index("ix_meter_readings_unit_fee_date", "unit_id", "fee_type_id", "reading_date"),
    )

    unit_id = Column(UUID(as_uuid=True), ForeignKey("units.id", ondelete="CASCADE"), nullable=False, index=True)
    fee_type_id = Column(UUID(as_uuid=True), ForeignKey("fee_types.id", ondelete="RESTRICT"), nullable=False, index=True)
    reading_date = Column(Date, nullable=False)
    previous_reading = Column(Numeric(14, 2), nullable=False)
    current_reading = Column(Numeric(14, 2), nullable=False)
    unit_price = Column(BigInteger, nullable=False)
    recorded_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    notes = Column(Text, nullable=True)

    fee_type = relationship("FeeType")

    @property
    def consumption(self) -> Decimal:
        return Decimal(self.current_reading) - Decimal(self.previous_reading)

    def __repr__(self) -> str:
        return f"<MeterReading {self.previous_reading} -> {self.current_reading}>"


class TenantMeterSubmission(BaseModel, CompanyScopedMixin):
    """
    A tenant-proposed reading awaiting company review.
    The partial unique index keeps one pending submission per (tenant, fee type).
    """
    __tablename__ = "tenant_meter_submissions"
    __table_args__ = (
        Index(
            "uq_tenant_meter_submissions_pending",
            "tenant_id",
            "fee_type_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
        ),
    )

    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    unit_id = Column(UUID(as_uuid=True), ForeignKey("units.id", ondelete="CASCADE"), nullable=False, index=True)
    fee_type_id = Column(UUID(as_uuid=True), ForeignKey("fee_types.id", ondelete="RESTRICT"), nullable=False)
    submitted_reading = Column(Numeric(14, 2), nullable=False)
    photo_url = Column(String(500), nullable=True)
    notes = Column(Text, nullable=True)
    status = Column(pg_enum(SubmissionStatus, "submission_status"), default=SubmissionStatus.PENDING, nullable=False, index=True)
    submitted_at = Column(DateTime, default=get_utc_now, nullable=False)

    reviewed_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    meter_reading_id = Column(UUID(as_uuid=True), ForeignKey("meter_readings.id", ondelete="SET NULL"), nullable=True)

    fee_type = relationship("FeeType")
    meter_reading = relationship("MeterReading")

    def __repr__(self) -> str:
        return f"<TenantMeterSubmission {self.submitted_reading} - {self.status}>"
