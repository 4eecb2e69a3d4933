"""
Stages Service Layer

The stage engine. Every decision runs under a row lock on the applicant
(SELECT ... FOR UPDATE), so single decisions, bulk rows, payment
settlement and confirmation for the same applicant are serialized.

Rules for a decision against an applicant at stage N:
- The applicant must be active (not eliminated, withdrawn or confirmed)
- from_stage must equal N
- The applicant must not still owe the fee for stage N
- "selected" must name N+1; "not_selected" must name N

Selected into a fee stage -> awaiting_payment, unless that fee is already paid
Selected into the final stage -> awaiting_confirmation (code issued)
Not selected -> eliminated, stage unchanged
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from admissions.core.auth import StaffUser
from admissions.core.config import settings
from admissions.core.email import send_confirmation_code, send_stage_result
from admissions.core.errors import ConflictError, InputError, ServiceError
from admissions.modules.applicants import repository as applicants_repository
from admissions.modules.applicants.models import Applicant, ApplicantStatus, StageStatus
from admissions.modules.applicants.service import (
    UnknownApplicantError,
    get_applicant,
    resolve_applicant_ref,
)
from admissions.modules.confirmations import service as confirmations_service
from admissions.modules.payments import repository as payments_repository
from admissions.modules.stages import pipeline, repository
from admissions.modules.stages.models import Decision, DecisionSource, SelectionRecord
from admissions.modules.stages.schemas import (
    BulkDecisionRow,
    BulkDecisionSummary,
    BulkRowFailure,
    BulkRowSkipped,
    EffectiveStatus,
    StageCount,
    StageProjection,
    parse_decision,
)

logger = logging.getLogger(__name__)

BULK_TEMPLATE_COLUMNS = ["applicant_ref", "from_stage", "decision", "next_stage"]


# =============================================================================
# Errors
# =============================================================================


class StageMismatchError(ConflictError):
    def __init__(self, expected: int, actual: int):
        super().__init__(
            f"Decision is for stage {expected} but the applicant is at stage {actual}.",
            "STAGE_MISMATCH",
        )


class AlreadyEliminatedError(ConflictError):
    def __init__(self, status: ApplicantStatus):
        super().__init__(
            f"Applicant is already {status.value} and cannot progress further.",
            "ALREADY_ELIMINATED",
        )


class AwaitingPaymentError(ConflictError):
    def __init__(self):
        super().__init__(
            "Applicant has not yet paid the fee for the current stage.",
            "AWAITING_PAYMENT",
        )


class InvalidDecisionError(InputError):
    def __init__(self, message: str):
        super().__init__(message, "INVALID_DECISION")


# =============================================================================
# Value objects
# =============================================================================


@dataclass(frozen=True)
class StageDecision:
    from_stage: int
    decision: Decision
    next_stage: int


@dataclass
class SettlementResult:
    """Outcome of settle_payment. confirmation_code is set when it was issued."""

    settled: bool
    confirmation_code: str | None = None


@dataclass
class _Notice:
    """Snapshot of what to tell an applicant once the transaction is committed."""

    applicant_id: UUID
    email: str | None
    name: str
    stage_name: str
    selected: bool
    payment_required: bool = False
    confirmation_code: str | None = None


@dataclass
class _AppliedDecision:
    record: SelectionRecord
    notice: _Notice


# =============================================================================
# Decision rules
# =============================================================================


def validate_decision_shape(decision: StageDecision) -> None:
    """
    Check that a decision is well formed, independent of applicant state.

    Raises:
        InvalidDecisionError: If next_stage doesn't fit the decision
    """
    if pipeline.get_stage(decision.from_stage) is None:
        raise InvalidDecisionError(f"Stage {decision.from_stage} does not exist.")

    if decision.decision == Decision.SELECTED:
        target = pipeline.next_stage(decision.from_stage)
        if target is None:
            raise InvalidDecisionError(
                f"Stage {decision.from_stage} is the final stage; nobody can be selected past it."
            )
        if decision.next_stage != target.index:
            raise InvalidDecisionError(
                f"A selected applicant at stage {decision.from_stage} can only move to "
                f"stage {target.index}, not {decision.next_stage}."
            )
    elif decision.next_stage != decision.from_stage:
        raise InvalidDecisionError("A not-selected decision must keep next_stage equal to from_stage.")


async def _fee_paid(db: AsyncSession, applicant_id: UUID, payment_type: str) -> bool:
    return await payments_repository.get_successful_order(db, applicant_id, payment_type) is not None


async def _clear_stage(db: AsyncSession, applicant: Applicant, stage: pipeline.Stage) -> str | None:
    """
    Mark a locked applicant as clear to proceed at `stage`.

    Returns the confirmation code when `stage` is the final stage.
    """
    if pipeline.is_final(stage.index):
        applicant.stage_status = StageStatus.AWAITING_CONFIRMATION
        return await confirmations_service.issue_code(db, applicant)

    applicant.stage_status = StageStatus.PENDING_REVIEW
    return None


async def _apply_decision(
    db: AsyncSession,
    applicant: Applicant,
    decision: StageDecision,
    *,
    source: DecisionSource,
    actor_id: UUID | None,
    batch_id: UUID | None = None,
) -> _AppliedDecision:
    """Apply a validated decision to a locked applicant. Does not commit."""
    if applicant.is_terminal:
        raise AlreadyEliminatedError(applicant.status)
    if decision.from_stage != applicant.current_stage:
        raise StageMismatchError(decision.from_stage, applicant.current_stage)
    if applicant.stage_status == StageStatus.AWAITING_PAYMENT:
        raise AwaitingPaymentError()

    confirmation_code = None
    payment_required = False

    if decision.decision == Decision.SELECTED:
        target = pipeline.get_stage(decision.next_stage)
        applicant.current_stage = target.index
        if target.requires_payment and not await _fee_paid(db, applicant.id, target.payment_type):
            applicant.stage_status = StageStatus.AWAITING_PAYMENT
            payment_required = True
        else:
            confirmation_code = await _clear_stage(db, applicant, target)
    else:
        applicant.status = ApplicantStatus.ELIMINATED

    record = await repository.append_record(
        db,
        applicant_id=applicant.id,
        from_stage=decision.from_stage,
        decision=decision.decision,
        next_stage=decision.next_stage,
        source=source,
        actor_id=actor_id,
        batch_id=batch_id,
    )

    notice = _Notice(
        applicant_id=applicant.id,
        email=applicant.email,
        name=applicant.name,
        stage_name=pipeline.stage_name(decision.next_stage),
        selected=decision.decision == Decision.SELECTED,
        payment_required=payment_required,
        confirmation_code=confirmation_code,
    )
    return _AppliedDecision(record=record, notice=notice)


async def _notify(notice: _Notice) -> None:
    """Best-effort result mail after commit. Failures are logged."""
    if not notice.email:
        logger.info(f"Applicant {notice.applicant_id} has no email; skipping stage result mail")
        return

    try:
        if notice.confirmation_code:
            sent = await send_confirmation_code(
                to_email=notice.email,
                applicant_name=notice.name,
                code=notice.confirmation_code,
                ttl_hours=settings.confirmation_code_ttl_hours,
            )
        else:
            sent = await send_stage_result(
                to_email=notice.email,
                applicant_name=notice.name,
                stage_name=notice.stage_name,
                selected=notice.selected,
                payment_required=notice.payment_required,
            )
        if not sent:
            logger.error(f"Failed to send stage result for applicant {notice.applicant_id}")
    except Exception as e:
        logger.error(f"Exception sending stage result for {notice.applicant_id}: {e}")


def project(applicant: Applicant) -> StageProjection:
    """Read projection of an applicant's position in the pipeline."""
    stage = pipeline.get_stage(applicant.current_stage)
    pending_payment_type = None
    if (
        stage is not None
        and applicant.status == ApplicantStatus.ACTIVE
        and applicant.stage_status == StageStatus.AWAITING_PAYMENT
    ):
        pending_payment_type = stage.payment_type

    return StageProjection(
        applicant_id=applicant.id,
        registration_id=applicant.registration_id,
        current_stage=applicant.current_stage,
        current_stage_name=pipeline.stage_name(applicant.current_stage),
        stage_status=applicant.stage_status,
        status=applicant.status,
        effective_status=applicant.effective_status,
        pending_payment_type=pending_payment_type,
    )


# =============================================================================
# Decisions
# =============================================================================


async def record_single_decision(
    db: AsyncSession,
    applicant_id: UUID,
    decision: StageDecision,
    actor: StaffUser | None = None,
) -> tuple[SelectionRecord, Applicant]:
    """
    Record one decision for one applicant.

    Raises:
        InvalidDecisionError: Malformed decision
        UnknownApplicantError: No such applicant
        AlreadyEliminatedError: Applicant is eliminated, withdrawn or confirmed
        StageMismatchError: from_stage is not the applicant's current stage
        AwaitingPaymentError: The current stage's fee is unpaid
    """
    validate_decision_shape(decision)

    applicant = await applicants_repository.get_for_update(db, applicant_id)
    if applicant is None:
        await db.rollback()
        raise UnknownApplicantError(applicant_id)

    try:
        applied = await _apply_decision(
            db,
            applicant,
            decision,
            source=DecisionSource.SINGLE,
            actor_id=actor.id if actor else None,
        )
        await db.commit()
    except ServiceError:
        await db.rollback()
        raise

    logger.info(
        f"Decision {decision.decision.value} for applicant {applicant_id} "
        f"(stage {decision.from_stage} -> {decision.next_stage}) by {actor or 'system'}"
    )

    await _notify(applied.notice)
    return applied.record, applicant


def _coerce_stage(value: int | str | None, column: str) -> int:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise InvalidDecisionError(f"Missing {column}.")
    try:
        return int(str(value).strip())
    except ValueError as e:
        raise InvalidDecisionError(f"{column} must be a whole number, got '{value}'.") from e


def parse_bulk_row(row: BulkDecisionRow) -> StageDecision:
    """
    Validate one spreadsheet row into a decision.

    Raises:
        InvalidDecisionError: Missing or malformed cells
    """
    if not row.applicant_ref or not row.applicant_ref.strip():
        raise InvalidDecisionError("Missing applicant_ref.")
    if not row.decision:
        raise InvalidDecisionError("Missing decision.")

    try:
        decision = parse_decision(row.decision)
    except ValueError as e:
        raise InvalidDecisionError(str(e)) from e

    parsed = StageDecision(
        from_stage=_coerce_stage(row.from_stage, "from_stage"),
        decision=decision,
        next_stage=_coerce_stage(row.next_stage, "next_stage"),
    )
    validate_decision_shape(parsed)
    return parsed


async def apply_bulk_decisions(
    db: AsyncSession,
    rows: list[BulkDecisionRow],
    actor: StaffUser | None = None,
) -> BulkDecisionSummary:
    """
    Apply a batch of spreadsheet decisions.

    Each row is committed on its own; a failing row is reported in the
    summary and never aborts the batch. When several rows target the same
    applicant, the last one wins and the earlier ones are skipped.
    A malformed row still wins over earlier rows for the applicant it names
    and is reported as failed, so nothing is applied for that applicant.
    """
    batch_id = uuid4()
    summary = BulkDecisionSummary(batch_id=batch_id, total_rows=len(rows))
    actor_id = actor.id if actor else None

    def fail(row_number: int, ref: str | None, error: ServiceError) -> None:
        summary.failures.append(
            BulkRowFailure(
                row_number=row_number,
                applicant_ref=ref,
                error_code=error.error_code,
                reason=error.message,
            )
        )

    # Pass 1: resolve applicants, then validate rows. A malformed row that
    # names a real applicant still takes part in supersession.
    candidates: list[tuple[int, str, UUID, StageDecision | ServiceError]] = []
    for index, row in enumerate(rows):
        row_number = row.row_number or index + 1
        ref = row.applicant_ref.strip() if row.applicant_ref else None
        if not ref:
            fail(row_number, ref, InvalidDecisionError("Missing applicant_ref."))
            continue
        try:
            applicant = await resolve_applicant_ref(db, ref)
        except ServiceError as e:
            fail(row_number, ref, e)
            continue
        try:
            outcome = parse_bulk_row(row)
        except InvalidDecisionError as e:
            outcome = e
        candidates.append((row_number, ref, applicant.id, outcome))

    # Pass 2: later rows for the same applicant supersede earlier ones
    winners: dict[UUID, int] = {}
    for position, (_, _, applicant_id, _) in enumerate(candidates):
        winners[applicant_id] = position

    # Pass 3: apply winners in input order, one transaction per row
    notices: list[_Notice] = []
    for position, (row_number, ref, applicant_id, decision) in enumerate(candidates):
        winner_position = winners[applicant_id]
        if position != winner_position:
            summary.skipped_rows.append(
                BulkRowSkipped(
                    row_number=row_number,
                    applicant_ref=ref,
                    superseded_by_row=candidates[winner_position][0],
                )
            )
            continue

        if isinstance(decision, ServiceError):
            fail(row_number, ref, decision)
            continue

        try:
            applicant = await applicants_repository.get_for_update(db, applicant_id)
            if applicant is None:
                raise UnknownApplicantError(ref)
            applied = await _apply_decision(
                db,
                applicant,
                decision,
                source=DecisionSource.BULK_IMPORT,
                actor_id=actor_id,
                batch_id=batch_id,
            )
            await db.commit()
            summary.applied += 1
            notices.append(applied.notice)
        except ServiceError as e:
            await db.rollback()
            fail(row_number, ref, e)
        except Exception as e:
            await db.rollback()
            logger.error(f"Unexpected error applying bulk row {row_number} ({ref}): {e}")
            fail(
                row_number,
                ref,
                ServiceError("Unexpected error applying this row.", "INTERNAL_ERROR", status_code=500),
            )

    summary.failed = len(summary.failures)
    summary.skipped = len(summary.skipped_rows)

    logger.info(
        f"Bulk batch {batch_id} by {actor or 'system'}: {summary.applied} applied, "
        f"{summary.skipped} skipped, {summary.failed} failed of {summary.total_rows}"
    )

    for notice in notices:
        await _notify(notice)

    return summary


def bulk_template() -> dict:
    """Column layout for the external spreadsheet generator."""
    return {
        "columns": list(BULK_TEMPLATE_COLUMNS),
        "decision_values": ["Selected", "Not Selected"],
        "stages": [{"index": s.index, "name": s.name} for s in pipeline.PIPELINE],
    }


# =============================================================================
# Reads
# =============================================================================


async def current_stage(db: AsyncSession, applicant_id: UUID) -> StageProjection:
    """
    Raises:
        UnknownApplicantError: If the applicant doesn't exist
    """
    return project(await get_applicant(db, applicant_id))


async def get_history(db: AsyncSession, applicant_id: UUID) -> list[SelectionRecord]:
    """
    Selection records for an applicant, oldest first.

    Raises:
        UnknownApplicantError: If the applicant doesn't exist
    """
    await get_applicant(db, applicant_id)
    return await repository.list_for_applicant(db, applicant_id)


def _effective_status(status: ApplicantStatus, stage_status: StageStatus) -> EffectiveStatus:
    if status != ApplicantStatus.ACTIVE:
        return EffectiveStatus(status.value)
    return EffectiveStatus(stage_status.value)


async def stage_counts(db: AsyncSession) -> list[StageCount]:
    """
    Applicants per pipeline stage, broken down by effective status.

    Every stage and every status is listed, with zero where nobody matches.
    """
    counts = {stage.index: dict.fromkeys(EffectiveStatus, 0) for stage in pipeline.PIPELINE}

    for index, status, stage_status, count in await applicants_repository.count_by_stage(db):
        by_status = counts.get(index)
        if by_status is None:
            logger.warning(f"{count} applicant(s) at stage {index}, which is not in the pipeline")
            continue
        by_status[_effective_status(status, stage_status)] += count

    return [
        StageCount(
            index=stage.index,
            name=stage.name,
            total=sum(counts[stage.index].values()),
            by_status=counts[stage.index],
        )
        for stage in pipeline.PIPELINE
    ]


async def list_applicants(
    db: AsyncSession,
    *,
    stage: int | None = None,
    effective_status: EffectiveStatus | None = None,
    skip: int = 0,
    limit: int = 50,
) -> tuple[list[StageProjection], int]:
    """
    Page through applicants by stage and effective status.

    Returns:
        Tuple of (projections on this page, total count matching filters)

    Raises:
        InvalidDecisionError: If the stage is not in the pipeline
    """
    if stage is not None and pipeline.get_stage(stage) is None:
        raise InvalidDecisionError(f"Stage {stage} does not exist.")

    status = None
    stage_status = None
    if effective_status is not None:
        if effective_status.value in {s.value for s in StageStatus}:
            status = ApplicantStatus.ACTIVE
            stage_status = StageStatus(effective_status.value)
        else:
            status = ApplicantStatus(effective_status.value)

    applicants, total = await applicants_repository.list_filtered(
        db,
        stage=stage,
        status=status,
        stage_status=stage_status,
        skip=skip,
        limit=limit,
    )
    return [project(a) for a in applicants], total


# =============================================================================
# Applicant self-service and collaborators
# =============================================================================


async def withdraw(db: AsyncSession, applicant_id: UUID) -> Applicant:
    """
    Withdraw an applicant from the competition. Absorbing.

    Raises:
        UnknownApplicantError: If the applicant doesn't exist
        AlreadyEliminatedError: If the applicant is already terminal
    """
    applicant = await applicants_repository.get_for_update(db, applicant_id)
    if applicant is None:
        await db.rollback()
        raise UnknownApplicantError(applicant_id)

    if applicant.is_terminal:
        await db.rollback()
        raise AlreadyEliminatedError(applicant.status)

    applicant.status = ApplicantStatus.WITHDRAWN
    applicant.withdrawn_at = datetime.now(UTC)
    await db.commit()

    logger.info(f"Applicant {applicant_id} withdrew at stage {applicant.current_stage}")
    return applicant


async def settle_payment(db: AsyncSession, applicant_id: UUID, payment_type: str) -> SettlementResult:
    """
    Release an applicant waiting on a fee. Does not commit.

    Called by the payment ledger from inside the transaction that moved an
    order to success. A payment that doesn't gate the applicant's current
    stage is a no-op, so redelivery is harmless.
    """
    applicant = await applicants_repository.get_for_update(db, applicant_id)
    if applicant is None:
        raise UnknownApplicantError(applicant_id)

    stage = pipeline.get_stage(applicant.current_stage)
    if (
        applicant.status != ApplicantStatus.ACTIVE
        or applicant.stage_status != StageStatus.AWAITING_PAYMENT
        or stage is None
        or stage.payment_type != payment_type
    ):
        logger.info(
            f"Payment '{payment_type}' for applicant {applicant_id} does not gate "
            f"stage {applicant.current_stage}; nothing to settle"
        )
        return SettlementResult(settled=False)

    confirmation_code = await _clear_stage(db, applicant, stage)

    logger.info(f"Settled '{payment_type}' payment for applicant {applicant_id} at stage {stage.index}")
    return SettlementResult(settled=True, confirmation_code=confirmation_code)
