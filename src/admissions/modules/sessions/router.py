"""
Sessions Router

Passwordless applicant login endpoints.

Endpoints:
- POST /auth/otp/request - Send a login code to an email or phone
- POST /auth/otp/verify - Exchange a code for a session token
- POST /auth/logout - Revoke the current session token
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from admissions.core.config import settings
from admissions.core.database import get_db
from admissions.core.errors import ServiceError, handle_service_error, internal_error
from admissions.modules.applicants.schemas import ApplicantProfile
from admissions.modules.sessions import service
from admissions.modules.sessions.dependencies import get_bearer_token
from admissions.modules.sessions.schemas import (
    LogoutResponse,
    OtpRequest,
    OtpRequestAcknowledgement,
    OtpVerifyRequest,
    OtpVerifyResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/otp/request",
    response_model=OtpRequestAcknowledgement,
    summary="Request a login code",
    description="""
Send a one-time login code to a registered email address or phone number.

The response is identical whether or not the identifier is registered.
Requests are limited per identifier; exceeding the limit returns 429 with
a `Retry-After` header.
""",
)
async def request_otp(
    data: OtpRequest,
    db: AsyncSession = Depends(get_db),
) -> OtpRequestAcknowledgement:
    try:
        message = await service.request_otp(db, data.identifier)
        return OtpRequestAcknowledgement(
            message=message,
            expires_in_seconds=settings.otp_ttl_minutes * 60,
        )
    except ServiceError as e:
        raise handle_service_error(e) from e
    except HTTPException:
        raise
    except Exception as e:
        raise internal_error(e, "requesting OTP") from e


@router.post(
    "/otp/verify",
    response_model=OtpVerifyResponse,
    summary="Verify a login code",
)
async def verify_otp(
    data: OtpVerifyRequest,
    db: AsyncSession = Depends(get_db),
) -> OtpVerifyResponse:
    """
    Verify a login code and return a session token plus the applicant profile.

    Each code verifies once. After too many wrong attempts the code is
    destroyed and a new one must be requested.
    """
    try:
        verified = await service.verify_otp(db, data.identifier, data.code)
        return OtpVerifyResponse(
            access_token=verified.token,
            expires_at=verified.expires_at,
            applicant=ApplicantProfile.from_applicant(verified.applicant),
        )
    except ServiceError as e:
        raise handle_service_error(e) from e
    except HTTPException:
        raise
    except Exception as e:
        raise internal_error(e, "verifying OTP") from e


@router.post(
    "/logout",
    response_model=LogoutResponse,
    status_code=status.HTTP_200_OK,
    summary="Sign out",
)
async def logout(
    token: str = Depends(get_bearer_token),
    db: AsyncSession = Depends(get_db),
) -> LogoutResponse:
    """Revoke the presented session token. Idempotent."""
    try:
        await service.logout(db, token)
        return LogoutResponse(message="Signed out.")
    except Exception as e:
        raise internal_error(e, "signing out") from e
