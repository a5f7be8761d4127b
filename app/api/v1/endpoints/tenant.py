"""Tenant portal endpoints - own billings, payment claims and meter submissions"""

from typing import Any
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.models.property import Tenant
from app.schemas.billing import BillingDetailResponse, PaymentClaimCreate, PaymentResponse
from app.schemas.meter import SubmissionResponse, TenantSubmissionCreate
from app.schemas.responses import SuccessResponse
from app.services.billing_service import BillingService
from app.services.meter_service import MeterService

router = APIRouter()


@router.get("/billings", response_model=SuccessResponse[list[BillingDetailResponse]])
async def list_my_billings(
    tenant: Tenant = Depends(deps.get_current_tenant),
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    billings = await BillingService.list_tenant_billings(db, tenant)
    return SuccessResponse(data=[BillingDetailResponse.model_validate(b) for b in billings])


@router.post("/payments", response_model=SuccessResponse[PaymentResponse], status_code=status.HTTP_201_CREATED)
async def claim_payment(
    claim_in: PaymentClaimCreate,
    tenant: Tenant = Depends(deps.get_current_tenant),
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    """Report a payment. It counts toward the billing once staff confirm it."""
    payment = await BillingService.submit_payment_claim(db, tenant, claim_in)
    return SuccessResponse(
        data=PaymentResponse.model_validate(payment),
        message="Payment submitted for confirmation",
    )


@router.get("/meter-submissions", response_model=SuccessResponse[list[SubmissionResponse]])
async def list_my_submissions(
    tenant: Tenant = Depends(deps.get_current_tenant),
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    submissions = await MeterService.list_tenant_submissions(db, tenant)
    return SuccessResponse(data=[SubmissionResponse.model_validate(s) for s in submissions])


@router.post(
    "/meter-submissions",
    response_model=SuccessResponse[SubmissionResponse],
    status_code=status.HTTP_201_CREATED,
)
async def submit_reading(
    submission_in: TenantSubmissionCreate,
    tenant: Tenant = Depends(deps.get_current_tenant),
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    submission = await MeterService.submit_reading(db, tenant, submission_in)
    return SuccessResponse(
        data=SubmissionResponse.model_validate(submission),
        message="Reading submitted for review",
    )
