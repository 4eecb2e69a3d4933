"""
Confirmations Router

Endpoints:
- POST /confirmations/confirm - Confirm participation with the emailed code
- POST /confirmations/applicants/{applicant_id}/reissue - Issue a new code (staff)

Confirming is public: the code itself is the credential. Requests are rate
limited per client IP to slow down guessing.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from admissions.core.auth import StaffUser, get_current_staff_user
from admissions.core.database import get_db
from admissions.core.errors import ServiceError, handle_service_error, internal_error
from admissions.core.rate_limit import rate_limit
from admissions.modules.confirmations import service
from admissions.modules.confirmations.schemas import (
    ConfirmationResponse,
    ConfirmParticipationRequest,
    ReissueCodeResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/confirm",
    response_model=ConfirmationResponse,
    summary="Confirm participation",
    responses={
        404: {"description": "Unknown confirmation code"},
        409: {"description": "Applicant is not awaiting confirmation"},
        410: {"description": "Confirmation code expired"},
        429: {"description": "Too many attempts from this client"},
    },
)
@rate_limit(limit=20, window_seconds=600)
async def confirm_participation(
    request: Request,
    data: ConfirmParticipationRequest,
    db: AsyncSession = Depends(get_db),
) -> ConfirmationResponse:
    """
    Confirm attendance in the final round.

    Idempotent: confirming again with the same code returns the same result.
    """
    try:
        record = await service.confirm(db, data.code)
        return ConfirmationResponse.model_validate(record)
    except ServiceError as e:
        raise handle_service_error(e) from e
    except HTTPException:
        raise
    except Exception as e:
        raise internal_error(e, "confirming participation") from e


@router.post(
    "/applicants/{applicant_id}/reissue",
    response_model=ReissueCodeResponse,
    summary="Reissue a confirmation code",
    responses={
        404: {"description": "Applicant not found"},
        409: {"description": "Applicant already confirmed or not awaiting confirmation"},
    },
)
async def reissue_confirmation_code(
    applicant_id: UUID,
    db: AsyncSession = Depends(get_db),
    staff: StaffUser = Depends(get_current_staff_user),
) -> ReissueCodeResponse:
    """
    Replace a finalist's lost or expired code and email the new one.

    The old code is invalidated. `delivered` reports whether the email went out.
    """
    try:
        result = await service.reissue_code(db, applicant_id, actor=staff)
        return ReissueCodeResponse.model_validate(result)
    except ServiceError as e:
        raise handle_service_error(e) from e
    except HTTPException:
        raise
    except Exception as e:
        raise internal_error(e, "reissuing confirmation code") from e
