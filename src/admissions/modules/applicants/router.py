"""
Applicants Router

Endpoints:
- POST /applicants/register - Register for the competition (public)
- GET /applicants/me - Current applicant profile (applicant session)
- POST /applicants/me/withdraw - Withdraw from the competition (applicant session)
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from admissions.core.database import get_db
from admissions.core.errors import ServiceError, handle_service_error, internal_error
from admissions.core.rate_limit import rate_limit
from admissions.modules.applicants import service
from admissions.modules.applicants.models import Applicant
from admissions.modules.applicants.schemas import (
    ApplicantProfile,
    ApplicantRegisterRequest,
    ApplicantRegisterResponse,
)
from admissions.modules.sessions.dependencies import get_current_applicant
from admissions.modules.stages import service as stages_service

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/register",
    response_model=ApplicantRegisterResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register as an applicant",
    responses={
        409: {"description": "Email or phone already registered"},
        429: {"description": "Too many registrations from this client"},
    },
)
@rate_limit(limit=10, window_seconds=3600)
async def register(
    request: Request,
    data: ApplicantRegisterRequest,
    db: AsyncSession = Depends(get_db),
) -> ApplicantRegisterResponse:
    """
    Register with a name and an email address and/or phone number.

    The applicant starts at the Registration stage. The registration ID in
    the response is also sent by email when an address is given.
    """
    try:
        applicant = await service.register_applicant(db, data)
        return ApplicantRegisterResponse(
            applicant=ApplicantProfile.from_applicant(applicant),
            message="Registration received. Sign in with your email or phone to follow your progress.",
        )
    except ServiceError as e:
        raise handle_service_error(e) from e
    except HTTPException:
        raise
    except Exception as e:
        raise internal_error(e, "registering applicant") from e


@router.get(
    "/me",
    response_model=ApplicantProfile,
    summary="Get my profile",
)
async def get_me(
    applicant: Applicant = Depends(get_current_applicant),
) -> ApplicantProfile:
    return ApplicantProfile.from_applicant(applicant)


@router.post(
    "/me/withdraw",
    response_model=ApplicantProfile,
    summary="Withdraw from the competition",
    responses={409: {"description": "Already eliminated, withdrawn or confirmed"}},
)
async def withdraw_me(
    applicant: Applicant = Depends(get_current_applicant),
    db: AsyncSession = Depends(get_db),
) -> ApplicantProfile:
    """Withdraw permanently. This cannot be undone."""
    try:
        withdrawn = await stages_service.withdraw(db, applicant.id)
        return ApplicantProfile.from_applicant(withdrawn)
    except ServiceError as e:
        raise handle_service_error(e) from e
    except HTTPException:
        raise
    except Exception as e:
        raise internal_error(e, "withdrawing applicant") from e
