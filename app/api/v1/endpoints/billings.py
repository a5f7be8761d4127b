"""Billing endpoints - issuance, detail, cancellation and staff-recorded payments"""

import math
from typing import Any, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from uuid import UUID

from app.api import deps
from app.models.company import User
from app.models.enums import BillingStatus
from app.schemas.billing import (
    BillingCancel,
    BillingDetailResponse,
    BillingGenerateRequest,
    BillingGenerateResponse,
    BillingResponse,
    PaymentCreate,
    PaymentResponse,
    PaymentResult,
)
from app.schemas.responses import PaginatedResponse, SuccessResponse
from app.services.billing_service import BillingService
from app.services.fee_calculator import calculate_outstanding
from app.utils.time import parse_billing_month

router = APIRouter()


@router.get("", response_model=PaginatedResponse[BillingResponse])
async def list_billings(
    status_filter: Optional[BillingStatus] = Query(None, alias="status"),
    billing_month: Optional[str] = Query(None, description="YYYY-MM"),
    tenant_id: Optional[UUID] = None,
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Items per page"),
    current_user: User = Depends(deps.require_company_staff),
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    month = None
    if billing_month:
        try:
            month = parse_billing_month(billing_month)
        except ValueError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    billings, total = await BillingService.list_billings(
        db,
        current_user.company_id,
        status=status_filter,
        billing_month=month,
        tenant_id=tenant_id,
        page=page,
        page_size=page_size,
    )
    return PaginatedResponse(
        data=[BillingResponse.model_validate(b) for b in billings],
        meta={
            "page": page,
            "page_size": page_size,
            "total": total,
            "total_pages": math.ceil(total / page_size),
        },
    )


@router.post("/generate", response_model=SuccessResponse[BillingGenerateResponse], status_code=status.HTTP_201_CREATED)
async def generate_billings(
    request: BillingGenerateRequest,
    current_user: User = Depends(deps.require_company_staff),
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    """Issue the month's billings for every active lease (or the listed leases)."""
    billings, skipped = await BillingService.generate_billings(db, current_user.company_id, request)
    return SuccessResponse(
        data=BillingGenerateResponse(
            count=len(billings),
            skipped_units=skipped,
            billings=[BillingResponse.model_validate(b) for b in billings],
        ),
        message=f"{len(billings)} billings generated",
    )


@router.get("/{billing_id}", response_model=SuccessResponse[BillingDetailResponse])
async def get_billing(
    billing_id: UUID,
    current_user: User = Depends(deps.require_company_staff),
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    billing = await BillingService.get_billing(db, billing_id, current_user.company_id)
    return SuccessResponse(data=BillingDetailResponse.model_validate(billing))


@router.post("/{billing_id}/cancel", response_model=SuccessResponse[BillingResponse])
async def cancel_billing(
    billing_id: UUID,
    body: Optional[BillingCancel] = None,
    current_user: User = Depends(deps.require_company_staff),
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    """Cancel a billing. Fully paid billings cannot be cancelled."""
    billing = await BillingService.cancel_billing(
        db, billing_id, current_user.company_id, reason=body.reason if body else None
    )
    return SuccessResponse(data=BillingResponse.model_validate(billing), message="Billing cancelled")


@router.get("/{billing_id}/payments", response_model=SuccessResponse[list[PaymentResponse]])
async def list_payments(
    billing_id: UUID,
    current_user: User = Depends(deps.require_company_staff),
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    payments = await BillingService.list_payments(db, billing_id, current_user.company_id)
    return SuccessResponse(data=[PaymentResponse.model_validate(p) for p in payments])


@router.post(
    "/{billing_id}/payments",
    response_model=SuccessResponse[PaymentResult],
    status_code=status.HTTP_201_CREATED,
)
async def record_payment(
    billing_id: UUID,
    payment_in: PaymentCreate,
    current_user: User = Depends(deps.require_company_staff),
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    """Record a completed payment; the billing status follows the payment rule."""
    payment, billing = await BillingService.record_payment(
        db, billing_id, current_user.company_id, payment_in, recorded_by=current_user.id
    )
    return SuccessResponse(
        data=PaymentResult(
            payment=PaymentResponse.model_validate(payment),
            billing_status=billing.status,
            paid_amount=billing.paid_amount,
            outstanding_amount=calculate_outstanding(billing.total_amount, billing.paid_amount),
        ),
        message="Payment recorded",
    )
