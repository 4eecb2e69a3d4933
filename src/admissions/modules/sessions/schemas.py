"""
Sessions Schemas
"""

from datetime import datetime

from pydantic import BaseModel, Field

from admissions.modules.applicants.schemas import ApplicantProfile


class OtpRequest(BaseModel):
    """Request body for POST /auth/otp/request."""

    identifier: str = Field(..., min_length=3, max_length=255, description="Email or phone number")


class OtpRequestAcknowledgement(BaseModel):
    """Identical for registered and unknown identifiers."""

    message: str
    expires_in_seconds: int


class OtpVerifyRequest(BaseModel):
    identifier: str = Field(..., min_length=3, max_length=255)
    code: str = Field(..., min_length=4, max_length=10)


class OtpVerifyResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_at: datetime
    applicant: ApplicantProfile


class LogoutResponse(BaseModel):
    message: str
