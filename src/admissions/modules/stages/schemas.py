"""
Stages Schemas

Bulk rows are deliberately loose: they come from spreadsheets, and a bad
cell must become a per-row failure in the summary rather than a 422 for
the whole batch.
"""

import enum
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from admissions.modules.applicants.models import ApplicantStatus, StageStatus
from admissions.modules.stages.models import Decision, DecisionSource

_DECISION_ALIASES = {
    "selected": Decision.SELECTED,
    "select": Decision.SELECTED,
    "not_selected": Decision.NOT_SELECTED,
    "not selected": Decision.NOT_SELECTED,
    "not-selected": Decision.NOT_SELECTED,
    "notselected": Decision.NOT_SELECTED,
    "rejected": Decision.NOT_SELECTED,
}


def parse_decision(value: str | Decision) -> Decision:
    """
    Accept API and spreadsheet spellings ("selected", "Not Selected", ...).

    Raises:
        ValueError: For anything else
    """
    if isinstance(value, Decision):
        return value
    decision = _DECISION_ALIASES.get(str(value).strip().lower())
    if decision is None:
        raise ValueError(f"Unknown decision '{value}'. Use 'Selected' or 'Not Selected'.")
    return decision


class DecisionRequest(BaseModel):
    """Request body for POST /stages/decisions."""

    applicant_id: UUID
    from_stage: int = Field(..., ge=0)
    decision: Decision
    next_stage: int = Field(..., ge=0)

    @field_validator("decision", mode="before")
    @classmethod
    def _parse_decision(cls, value):
        return parse_decision(value)


class BulkDecisionRow(BaseModel):
    """One spreadsheet row. Values are validated per row by the service."""

    applicant_ref: str | None = Field(None, description="Applicant UUID or registration ID")
    from_stage: int | str | None = None
    decision: str | None = None
    next_stage: int | str | None = None
    row_number: int | None = Field(None, description="Source row number for error reporting")


class BulkDecisionRequest(BaseModel):
    rows: list[BulkDecisionRow] = Field(..., min_length=1, max_length=5000)


class EffectiveStatus(str, enum.Enum):
    """Terminal status if any, otherwise the per-stage status."""

    PENDING_REVIEW = StageStatus.PENDING_REVIEW.value
    AWAITING_PAYMENT = StageStatus.AWAITING_PAYMENT.value
    AWAITING_CONFIRMATION = StageStatus.AWAITING_CONFIRMATION.value
    ELIMINATED = ApplicantStatus.ELIMINATED.value
    WITHDRAWN = ApplicantStatus.WITHDRAWN.value
    CONFIRMED = ApplicantStatus.CONFIRMED.value


class StageProjection(BaseModel):
    """Read projection of where an applicant stands."""

    applicant_id: UUID
    registration_id: str
    current_stage: int
    current_stage_name: str
    stage_status: StageStatus
    status: ApplicantStatus
    effective_status: str
    pending_payment_type: str | None = None


class SelectionRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    applicant_id: UUID
    from_stage: int
    decision: Decision
    next_stage: int
    source: DecisionSource
    actor_id: UUID | None = None
    batch_id: UUID | None = None
    applied_at: datetime


class DecisionResponse(BaseModel):
    record: SelectionRecordResponse
    applicant: StageProjection


class BulkRowFailure(BaseModel):
    row_number: int
    applicant_ref: str | None
    error_code: str
    reason: str


class BulkRowSkipped(BaseModel):
    row_number: int
    applicant_ref: str | None
    reason: str = "superseded"
    superseded_by_row: int


class BulkDecisionSummary(BaseModel):
    batch_id: UUID
    total_rows: int
    applied: int = 0
    skipped: int = 0
    failed: int = 0
    failures: list[BulkRowFailure] = Field(default_factory=list)
    skipped_rows: list[BulkRowSkipped] = Field(default_factory=list)


class BulkTemplateResponse(BaseModel):
    columns: list[str]
    decision_values: list[str]
    stages: list[dict]


class PipelineStageResponse(BaseModel):
    index: int
    name: str
    payment_type: str | None = None
    fee_amount: str | None = None


class StageCount(BaseModel):
    """How many applicants sit at one stage, by effective status."""

    index: int
    name: str
    total: int
    by_status: dict[EffectiveStatus, int]


class ApplicantListResponse(BaseModel):
    applicants: list[StageProjection]
    total: int
    skip: int
    limit: int
