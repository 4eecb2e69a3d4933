"""
Applicant Models

An applicant is created at registration and never physically deleted.
`current_stage` and `stage_status` are a cached projection of the latest
SelectionRecord, maintained by the stages module.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Enum, Index, Integer, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from admissions.core.database import Base


def enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """Persist enum values (not member names) in PostgreSQL enum types."""
    return [member.value for member in enum_cls]


class ApplicantStatus(str, enum.Enum):
    """Overall applicant status. Everything except ACTIVE is terminal."""

    ACTIVE = "active"
    ELIMINATED = "eliminated"
    WITHDRAWN = "withdrawn"
    CONFIRMED = "confirmed"


TERMINAL_APPLICANT_STATUSES = frozenset(
    {ApplicantStatus.ELIMINATED, ApplicantStatus.WITHDRAWN, ApplicantStatus.CONFIRMED}
)


class StageStatus(str, enum.Enum):
    """Where an active applicant stands within their current stage."""

    PENDING_REVIEW = "pending_review"
    AWAITING_PAYMENT = "awaiting_payment"
    AWAITING_CONFIRMATION = "awaiting_confirmation"


class Applicant(Base):
    """A person progressing through the competition pipeline."""

    __tablename__ = "applicants"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    registration_id: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)

    # Login identifiers, stored normalized. At least one is required.
    email: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    phone: Mapped[str | None] = mapped_column(String(20), unique=True, nullable=True)

    # Progression projection
    current_stage: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    stage_status: Mapped[StageStatus] = mapped_column(
        Enum(StageStatus, name="stage_status", values_callable=enum_values),
        nullable=False,
        default=StageStatus.PENDING_REVIEW,
    )
    status: Mapped[ApplicantStatus] = mapped_column(
        Enum(ApplicantStatus, name="applicant_status", values_callable=enum_values),
        nullable=False,
        default=ApplicantStatus.ACTIVE,
    )

    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    withdrawn_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint(
            "email IS NOT NULL OR phone IS NOT NULL", name="ck_applicants_email_or_phone"
        ),
        Index("ix_applicants_status", "status"),
        Index("ix_applicants_current_stage", "current_stage"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_APPLICANT_STATUSES

    @property
    def effective_status(self) -> str:
        """Terminal status if any, otherwise the per-stage status."""
        if self.is_terminal:
            return self.status.value
        return self.stage_status.value

    def __repr__(self) -> str:
        return f"<Applicant(id={self.id}, registration_id={self.registration_id})>"
