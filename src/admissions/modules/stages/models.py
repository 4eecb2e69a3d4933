"""
Stage Models

SelectionRecord is the append-only audit trail of stage decisions. The
latest record's `next_stage` always equals the applicant's cached
`current_stage`.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, Index, Integer, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from admissions.core.database import Base
from admissions.modules.applicants.models import enum_values


class Decision(str, enum.Enum):
    SELECTED = "selected"
    NOT_SELECTED = "not_selected"


class DecisionSource(str, enum.Enum):
    SINGLE = "single"
    BULK_IMPORT = "bulk_import"


class SelectionRecord(Base):
    """One stage-transition decision. Never updated or deleted."""

    __tablename__ = "selection_records"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    applicant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("applicants.id", ondelete="RESTRICT"),
        nullable=False,
    )
    from_stage: Mapped[int] = mapped_column(Integer, nullable=False)
    decision: Mapped[Decision] = mapped_column(
        Enum(Decision, name="selection_decision", values_callable=enum_values), nullable=False
    )
    next_stage: Mapped[int] = mapped_column(Integer, nullable=False)
    source: Mapped[DecisionSource] = mapped_column(
        Enum(DecisionSource, name="decision_source", values_callable=enum_values), nullable=False
    )
    # Staff user who made the decision (no FK: development tokens have no user row)
    actor_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    batch_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    applied_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.clock_timestamp(), nullable=False
    )

    __table_args__ = (
        Index("ix_selection_records_applicant_applied", "applicant_id", "applied_at"),
        Index("ix_selection_records_batch_id", "batch_id"),
    )
