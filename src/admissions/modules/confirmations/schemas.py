"""
Confirmations Schemas
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from admissions.modules.confirmations.models import ConfirmationStatus


class ConfirmParticipationRequest(BaseModel):
    code: str = Field(..., min_length=8, max_length=128)


class ConfirmationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    applicant_id: UUID
    status: ConfirmationStatus
    issued_at: datetime
    expires_at: datetime
    consumed_at: datetime | None = None
    message: str = "Your participation has been confirmed."


class ReissueCodeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    applicant_id: UUID
    expires_at: datetime
    delivered: bool
    message: str = "A new confirmation code has been issued; the previous one no longer works."
