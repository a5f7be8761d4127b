"""Meter submission endpoints - staff review of tenant readings"""

from typing import Any, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from uuid import UUID

from app.api import deps
from app.models.company import User
from app.models.enums import SubmissionStatus
from app.schemas.meter import SubmissionReject, SubmissionResponse
from app.schemas.responses import SuccessResponse
from app.services.meter_service import MeterService

router = APIRouter()


@router.get("", response_model=SuccessResponse[list[SubmissionResponse]])
async def list_submissions(
    status_filter: Optional[SubmissionStatus] = Query(None, alias="status"),
    current_user: User = Depends(deps.require_company_staff),
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    submissions = await MeterService.list_submissions(db, current_user.company_id, status=status_filter)
    return SuccessResponse(data=[SubmissionResponse.model_validate(s) for s in submissions])


@router.post("/{submission_id}/approve", response_model=SuccessResponse[SubmissionResponse])
async def approve_submission(
    submission_id: UUID,
    current_user: User = Depends(deps.require_company_staff),
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    """Approve a pending submission; creates the meter reading."""
    submission = await MeterService.approve_submission(db, submission_id, current_user)
    return SuccessResponse(data=SubmissionResponse.model_validate(submission), message="Submission approved")


@router.post("/{submission_id}/reject", response_model=SuccessResponse[SubmissionResponse])
async def reject_submission(
    submission_id: UUID,
    body: SubmissionReject,
    current_user: User = Depends(deps.require_company_staff),
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    submission = await MeterService.reject_submission(db, submission_id, current_user, body.rejection_reason)
    return SuccessResponse(data=SubmissionResponse.model_validate(submission), message="Submission rejected")
