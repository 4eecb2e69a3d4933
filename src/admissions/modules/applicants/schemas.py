"""
Applicants Schemas

Pydantic schemas for registration and the applicant's public profile.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from admissions.modules.applicants.helpers import (
    mask_email,
    mask_phone,
    normalize_email,
    normalize_phone,
)
from admissions.modules.applicants.models import Applicant, ApplicantStatus, StageStatus
from admissions.modules.stages.pipeline import stage_name


class ApplicantRegisterRequest(BaseModel):
    """Request body for POST /applicants/register."""

    name: str = Field(..., min_length=1, max_length=200)
    email: EmailStr | None = None
    phone: str | None = Field(None, max_length=25)

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str | None) -> str | None:
        return normalize_email(value) if value else None

    @field_validator("phone")
    @classmethod
    def _normalize_phone(cls, value: str | None) -> str | None:
        return normalize_phone(value) if value else None

    @model_validator(mode="after")
    def validate_contact(self) -> "ApplicantRegisterRequest":
        if not self.email and not self.phone:
            raise ValueError("At least one of email or phone is required")
        self.name = self.name.strip()
        return self


class ApplicantProfile(BaseModel):
    """Public view of an applicant. Contact details are masked."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    registration_id: str
    name: str
    email: str | None = None
    phone: str | None = None
    current_stage: int
    current_stage_name: str
    stage_status: StageStatus
    status: ApplicantStatus
    effective_status: str
    created_at: datetime

    @classmethod
    def from_applicant(cls, applicant: Applicant) -> "ApplicantProfile":
        return cls(
            id=applicant.id,
            registration_id=applicant.registration_id,
            name=applicant.name,
            email=mask_email(applicant.email) if applicant.email else None,
            phone=mask_phone(applicant.phone) if applicant.phone else None,
            current_stage=applicant.current_stage,
            current_stage_name=stage_name(applicant.current_stage),
            stage_status=applicant.stage_status,
            status=applicant.status,
            effective_status=applicant.effective_status,
            created_at=applicant.created_at,
        )


class ApplicantRegisterResponse(BaseModel):
    applicant: ApplicantProfile
    message: str
