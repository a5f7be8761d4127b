"""Payment endpoints - confirm tenant claims, remove payments"""

from typing import Any
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from uuid import UUID

from app.api import deps
from app.models.company import User
from app.schemas.billing import BillingResponse, PaymentResponse, PaymentResult
from app.schemas.responses import SuccessResponse
from app.services.billing_service import BillingService
from app.services.fee_calculator import calculate_outstanding

router = APIRouter()


@router.post("/{payment_id}/confirm", response_model=SuccessResponse[PaymentResult])
async def confirm_payment(
    payment_id: UUID,
    current_user: User = Depends(deps.require_company_staff),
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    """Confirm a tenant's pending payment claim and apply it to the billing."""
    payment, billing = await BillingService.confirm_payment(
        db, payment_id, current_user.company_id, confirmed_by=current_user.id
    )
    return SuccessResponse(
        data=PaymentResult(
            payment=PaymentResponse.model_validate(payment),
            billing_status=billing.status,
            paid_amount=billing.paid_amount,
            outstanding_amount=calculate_outstanding(billing.total_amount, billing.paid_amount),
        ),
        message="Payment confirmed",
    )


@router.delete("/{payment_id}", response_model=SuccessResponse[BillingResponse])
async def remove_payment(
    payment_id: UUID,
    current_user: User = Depends(deps.require_company_staff),
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    """Delete a payment and recompute the billing status."""
    billing = await BillingService.remove_payment(db, payment_id, current_user.company_id)
    return SuccessResponse(data=BillingResponse.model_validate(billing), message="Payment removed")
