"""Meter reading endpoints - staff entry and history"""

from datetime import date
from typing import Any, Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from uuid import UUID

from app.api import deps
from app.models.company import User
from app.schemas.meter import (
    MeterReadingBulkCreate,
    MeterReadingBulkResult,
    MeterReadingCreate,
    MeterReadingResponse,
)
from app.schemas.responses import SuccessResponse
from app.services.meter_service import MeterService

router = APIRouter()


@router.get("", response_model=SuccessResponse[list[MeterReadingResponse]])
async def list_readings(
    unit_id: Optional[UUID] = None,
    fee_type_id: Optional[UUID] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    limit: int = Query(100, ge=1, le=500),
    current_user: User = Depends(deps.require_company_staff),
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    readings = await MeterService.list_readings(
        db,
        current_user.company_id,
        unit_id=unit_id,
        fee_type_id=fee_type_id,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
    )
    return SuccessResponse(data=[MeterReadingResponse.model_validate(r) for r in readings])


@router.post("", response_model=SuccessResponse[MeterReadingResponse], status_code=status.HTTP_201_CREATED)
async def record_reading(
    reading_in: MeterReadingCreate,
    current_user: User = Depends(deps.require_company_staff),
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    reading = await MeterService.record_reading(
        db, current_user.company_id, reading_in, recorded_by=current_user.id
    )
    return SuccessResponse(data=MeterReadingResponse.model_validate(reading), message="Reading recorded")


@router.post("/bulk", response_model=SuccessResponse[MeterReadingBulkResult])
async def bulk_record_readings(
    bulk_in: MeterReadingBulkCreate,
    current_user: User = Depends(deps.require_company_staff),
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    """Record many readings; rows that fail validation are returned in ``errors``."""
    created, errors = await MeterService.bulk_record_readings(
        db, current_user.company_id, bulk_in, recorded_by=current_user.id
    )
    return SuccessResponse(
        data=MeterReadingBulkResult(
            created=[MeterReadingResponse.model_validate(r) for r in created],
            errors=errors,
        ),
        message=f"{len(created)} readings recorded, {len(errors)} failed",
    )
