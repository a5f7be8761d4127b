"""Domain 4: Billing Models"""

from sqlalchemy import (
    Column, String, Text, Date, DateTime, Numeric, Integer, BigInteger, ForeignKey, Index, text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.models.base import BaseModel, CompanyScopedMixin, pg_enum
from app.models.enums import BillingStatus, PaymentStatus, PaymentMethod


class Billing(BaseModel, CompanyScopedMixin):
    """
    Monthly charge document for one tenancy.
    Status moves through the payment state machine in app.services.billing_rules.
    """
    __tablename__ = "billings"
    __table_args__ = (
        Index(
            "uq_billings_unit_month_active",
            "unit_id",
            "billing_month",
            unique=True,
            postgresql_where=text("status <> 'cancelled'"),
        ),
        Index("ix_billings_status_due_date", "status", "due_date"),
    )

    lease_id = Column(UUID(as_uuid=True), ForeignKey("leases.id", ondelete="SET NULL"), nullable=True, index=True)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    unit_id = Column(UUID(as_uuid=True), ForeignKey("units.id", ondelete="CASCADE"), nullable=False, index=True)

    billing_number = Column(String(30), nullable=False, index=True)
    billing_month = Column(Date, nullable=False)
    issue_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=False)

    subtotal = Column(BigInteger, nullable=False, default=0)
    tax_amount = Column(BigInteger, nullable=False, default=0)
    total_amount = Column(BigInteger, nullable=False, default=0)
    paid_amount = Column(BigInteger, nullable=False, default=0)

    status = Column(pg_enum(BillingStatus, "billing_status"), default=BillingStatus.PENDING, nullable=False, index=True)
    paid_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    overdue_notified_at = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)

    # Relationships
    items = relationship("BillingItem", back_populates="billing", cascade="all, delete-orphan", order_by="BillingItem.position")
    payments = relationship("Payment", back_populates="billing")
    tenant = relationship("Tenant")
    unit = relationship("Unit")

    def __repr__(self) -> str:
        return f"<Billing {self.billing_number} {self.total_amount} - {self.status}>"


class BillingItem(BaseModel):
    """A computed line; owned exclusively by one Billing."""
    __tablename__ = "billing_items"

    billing_id = Column(UUID(as_uuid=True), ForeignKey("billings.id", ondelete="CASCADE"), nullable=False, index=True)
    fee_type_id = Column(UUID(as_uuid=True), ForeignKey("fee_types.id", ondelete="RESTRICT"), nullable=True)
    meter_reading_id = Column(UUID(as_uuid=True), ForeignKey("meter_readings.id", ondelete="RESTRICT"), nullable=True)

    position = Column(Integer, nullable=False, default=0)
    fee_name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    quantity = Column(Numeric(14, 2), nullable=False, default=1)
    unit_price = Column(BigInteger, nullable=False, default=0)
    amount = Column(BigInteger, nullable=False, default=0)

    billing = relationship("Billing", back_populates="items")

    def __repr__(self) -> str:
        return f"<BillingItem {self.fee_name} {self.amount}>"


class Payment(BaseModel, CompanyScopedMixin):
    """
    Money applied against a billing.
    Only COMPLETED payments count toward Billing.paid_amount.
    """
    __tablename__ = "payments"

    billing_id = Column(UUID(as_uuid=True), ForeignKey("billings.id", ondelete="CASCADE"), nullable=False, index=True)
    lease_id = Column(UUID(as_uuid=True), ForeignKey("leases.id", ondelete="SET NULL"), nullable=True)

    amount = Column(BigInteger, nullable=False)
    payment_date = Column(Date, nullable=False)
    payment_method = Column(pg_enum(PaymentMethod, "payment_method"), default=PaymentMethod.CASH, nullable=False)
    reference_number = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    status = Column(pg_enum(PaymentStatus, "payment_status"), default=PaymentStatus.COMPLETED, nullable=False, index=True)
    recorded_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    confirmed_at = Column(DateTime, nullable=True)

    billing = relationship("Billing", back_populates="payments")

    def __repr__(self) -> str:
        return f"<Payment {self.amount} - {self.status}>"
