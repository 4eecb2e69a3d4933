"""
Confirmation Models

Participation confirmation codes, one per applicant, issued after
selection into the final stage.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from admissions.core.database import Base
from admissions.modules.applicants.models import enum_values


class ConfirmationStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    EXPIRED = "expired"


class ConfirmationCode(Base):
    """
    Single-use participation code. Only its SHA-256 hash is stored.

    `applicant_id` is unique: re-issuing rotates the code in place.
    """

    __tablename__ = "confirmation_codes"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    applicant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("applicants.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    code_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    status: Mapped[ConfirmationStatus] = mapped_column(
        Enum(ConfirmationStatus, name="confirmation_status", values_callable=enum_values),
        nullable=False,
        default=ConfirmationStatus.PENDING,
    )
    issued_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    consumed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
