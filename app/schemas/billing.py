from typing import Optional, List
from pydantic import BaseModel, ConfigDict, Field, computed_field
from uuid import UUID
from datetime import datetime, date
from decimal import Decimal

from app.models.enums import BillingStatus, PaymentStatus, PaymentMethod


class BillingItemResponse(BaseModel):
    id: UUID
    fee_type_id: Optional[UUID] = None
    meter_reading_id: Optional[UUID] = None
    fee_name: str
    description: Optional[str] = None
    quantity: Decimal
    unit_price: int
    amount: int

    model_config = ConfigDict(from_attributes=True)


class PaymentCreate(BaseModel):
    """Staff-recorded payment."""
    amount: int = Field(..., gt=0)
    payment_date: date
    payment_method: PaymentMethod = PaymentMethod.CASH
    reference_number: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None


class PaymentClaimCreate(BaseModel):
    """Tenant's claim that they paid; stays pending until staff confirm it."""
    billing_id: UUID
    amount: int = Field(..., gt=0)
    notes: Optional[str] = None


class PaymentResponse(BaseModel):
    id: UUID
    billing_id: UUID
    amount: int
    payment_date: date
    payment_method: PaymentMethod
    reference_number: Optional[str] = None
    notes: Optional[str] = None
    status: PaymentStatus
    confirmed_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BillingResponse(BaseModel):
    id: UUID
    billing_number: str
    lease_id: Optional[UUID] = None
    tenant_id: UUID
    unit_id: UUID
    billing_month: date
    issue_date: date
    due_date: date
    subtotal: int
    tax_amount: int
    total_amount: int
    paid_amount: int
    status: BillingStatus
    paid_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @computed_field
    @property
    def outstanding_amount(self) -> int:
        # Overpayment is stored as-is; only the displayed balance is clamped
        return max(0, self.total_amount - self.paid_amount)


class BillingDetailResponse(BillingResponse):
    items: List[BillingItemResponse] = []
    payments: List[PaymentResponse] = []


class BillingGenerateRequest(BaseModel):
    billing_month: str = Field(..., pattern=r"^\d{4}-(0[1-9]|1[0-2])$", description="YYYY-MM")
    issue_date: date
    due_date: date
    lease_ids: Optional[List[UUID]] = None
    notify_tenants: bool = False


class BillingGenerateResponse(BaseModel):
    count: int
    skipped_units: int
    billings: List[BillingResponse]


class PaymentResult(BaseModel):
    """Outcome of a payment mutation: the payment plus the billing's new state."""
    payment: PaymentResponse
    billing_status: BillingStatus
    paid_amount: int
    outstanding_amount: int


class BillingCancel(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)
