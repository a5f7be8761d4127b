from typing import Optional, List
from pydantic import BaseModel, ConfigDict, Field
from uuid import UUID
from datetime import datetime, date
from decimal import Decimal

from app.models.enums import SubmissionStatus


class MeterReadingCreate(BaseModel):
    """
    Staff direct entry. previous_reading defaults to the latest accepted
    reading and unit_price to the unit's effective price.
    """
    unit_id: UUID
    fee_type_id: UUID
    current_reading: Decimal = Field(..., ge=0)
    previous_reading: Optional[Decimal] = Field(None, ge=0)
    reading_date: Optional[date] = None
    unit_price: Optional[int] = Field(None, ge=0)
    notes: Optional[str] = None


class MeterReadingBulkCreate(BaseModel):
    readings: List[MeterReadingCreate] = Field(..., min_length=1, max_length=500)


class MeterReadingResponse(BaseModel):
    id: UUID
    unit_id: UUID
    fee_type_id: UUID
    reading_date: date
    previous_reading: Decimal
    current_reading: Decimal
    consumption: Decimal
    unit_price: int
    recorded_by: Optional[UUID] = None
    notes: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BulkReadingError(BaseModel):
    index: int
    unit_id: UUID
    fee_type_id: UUID
    error: str


class MeterReadingBulkResult(BaseModel):
    created: List[MeterReadingResponse]
    errors: List[BulkReadingError]


class TenantSubmissionCreate(BaseModel):
    fee_type_id: UUID
    submitted_reading: Decimal = Field(..., ge=0)
    photo_url: Optional[str] = Field(None, max_length=500)
    notes: Optional[str] = None


class SubmissionReject(BaseModel):
    rejection_reason: str


class SubmissionResponse(BaseModel):
    id: UUID
    tenant_id: UUID
    unit_id: UUID
    fee_type_id: UUID
    submitted_reading: Decimal
    photo_url: Optional[str] = None
    notes: Optional[str] = None
    status: SubmissionStatus
    submitted_at: datetime
    reviewed_by: Optional[UUID] = None
    reviewed_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    meter_reading_id: Optional[UUID] = None

    model_config = ConfigDict(from_attributes=True)
