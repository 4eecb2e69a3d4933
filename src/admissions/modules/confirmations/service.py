"""
Confirmations Service Layer

Participation confirmation after final selection.

- issue_code: create or rotate the applicant's single-use code. Called by
  the stage engine inside its own transaction; the caller commits and
  mails the returned plaintext code.
- reissue_code: staff action for a lost or expired code. Rotates the code
  under the applicant's row lock and mails the new one.
- confirm: consume a code and mark the applicant confirmed. Confirming an
  already-confirmed code returns the same record without side effects.
  There is no reversal.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from admissions.core.auth import StaffUser
from admissions.core.config import settings
from admissions.core.email import send_confirmation_code
from admissions.core.errors import ConflictError, NotFoundError, ServiceError
from admissions.core.security import generate_opaque_token, hash_token
from admissions.modules.applicants import repository as applicants_repository
from admissions.modules.applicants.models import Applicant, ApplicantStatus, StageStatus
from admissions.modules.applicants.service import UnknownApplicantError
from admissions.modules.confirmations import repository
from admissions.modules.confirmations.models import ConfirmationCode, ConfirmationStatus

logger = logging.getLogger(__name__)

CODE_BYTES = 24


class UnknownCodeError(NotFoundError):
    def __init__(self):
        super().__init__("Invalid confirmation code.", "UNKNOWN_CODE")


class ConfirmationExpiredError(ServiceError):
    def __init__(self):
        super().__init__(
            "This confirmation code has expired. Please contact the organisers.",
            "CONFIRMATION_EXPIRED",
            status_code=410,
        )


class InvalidApplicantStateError(ConflictError):
    def __init__(self, message: str = "This applicant is not awaiting confirmation."):
        super().__init__(message, "INVALID_APPLICANT_STATE")


class AlreadyConfirmedError(ConflictError):
    def __init__(self):
        super().__init__("This applicant has already confirmed participation.", "ALREADY_CONFIRMED")


@dataclass
class ReissuedCode:
    applicant_id: UUID
    expires_at: datetime
    delivered: bool


async def _store_code(db: AsyncSession, applicant_id: UUID) -> tuple[str, datetime]:
    code = generate_opaque_token(CODE_BYTES)
    issued_at = datetime.now(UTC)
    expires_at = issued_at + timedelta(hours=settings.confirmation_code_ttl_hours)

    code_id = await repository.upsert_for_applicant(
        db,
        applicant_id=applicant_id,
        code_hash=hash_token(code),
        issued_at=issued_at,
        expires_at=expires_at,
    )
    if code_id is None:
        raise AlreadyConfirmedError()

    return code, expires_at


async def issue_code(db: AsyncSession, applicant: Applicant) -> str:
    """
    Issue (or rotate) the applicant's confirmation code. Does not commit.

    Returns:
        The plaintext code, to be delivered to the applicant

    Raises:
        AlreadyConfirmedError: The applicant's code was already used
    """
    code, _ = await _store_code(db, applicant.id)
    logger.info(f"Issued confirmation code for applicant {applicant.id}")
    return code


async def reissue_code(
    db: AsyncSession,
    applicant_id: UUID,
    actor: StaffUser | None = None,
) -> ReissuedCode:
    """
    Replace a finalist's confirmation code and mail the new one.

    The previous code stops working immediately. Mail delivery is best
    effort; the new code is stored either way.

    Raises:
        UnknownApplicantError: No such applicant
        AlreadyConfirmedError: The applicant already confirmed
        InvalidApplicantStateError: The applicant is not awaiting confirmation
    """
    # Serialize with confirm() and stage decisions for the same applicant
    applicant = await applicants_repository.get_for_update(db, applicant_id)
    if applicant is None:
        await db.rollback()
        raise UnknownApplicantError(applicant_id)

    if applicant.status == ApplicantStatus.CONFIRMED:
        await db.rollback()
        raise AlreadyConfirmedError()

    if (
        applicant.status != ApplicantStatus.ACTIVE
        or applicant.stage_status != StageStatus.AWAITING_CONFIRMATION
    ):
        await db.rollback()
        raise InvalidApplicantStateError()

    try:
        code, expires_at = await _store_code(db, applicant.id)
    except ServiceError:
        await db.rollback()
        raise
    await db.commit()

    logger.info(f"Reissued confirmation code for applicant {applicant.id} by {actor or 'system'}")

    delivered = False
    if not applicant.email:
        logger.warning(f"Applicant {applicant.id} has no email; reissued code was not mailed")
    else:
        try:
            delivered = await send_confirmation_code(
                to_email=applicant.email,
                applicant_name=applicant.name,
                code=code,
                ttl_hours=settings.confirmation_code_ttl_hours,
            )
            if not delivered:
                logger.error(f"Failed to mail reissued code to applicant {applicant.id}")
        except Exception as e:
            logger.error(f"Exception mailing reissued code to {applicant.id}: {e}")

    return ReissuedCode(applicant_id=applicant.id, expires_at=expires_at, delivered=delivered)


async def confirm(db: AsyncSession, code: str) -> ConfirmationCode:
    """
    Confirm participation with a code.

    Raises:
        UnknownCodeError: No such code
        ConfirmationExpiredError: The code is past its expiry
        InvalidApplicantStateError: The applicant is not awaiting confirmation
    """
    now = datetime.now(UTC)
    record = await repository.get_by_code_hash(db, hash_token(code.strip()))

    if record is None:
        raise UnknownCodeError()

    if record.status == ConfirmationStatus.CONFIRMED:
        logger.info(f"Repeated confirmation for applicant {record.applicant_id}")
        return record

    if record.status == ConfirmationStatus.EXPIRED or record.expires_at <= now:
        await repository.mark_expired(db, record.id)
        await db.commit()
        raise ConfirmationExpiredError()

    # Serialize with stage decisions for the same applicant
    applicant = await applicants_repository.get_for_update(db, record.applicant_id)
    if applicant is None:
        await db.rollback()
        raise UnknownCodeError()

    if (
        applicant.status != ApplicantStatus.ACTIVE
        or applicant.stage_status != StageStatus.AWAITING_CONFIRMATION
    ):
        await db.rollback()
        raise InvalidApplicantStateError()

    if not await repository.mark_confirmed(db, record.id, now):
        await db.rollback()
        record = await repository.get_by_code_hash(db, hash_token(code.strip()))
        if record is not None and record.status == ConfirmationStatus.CONFIRMED:
            return record
        raise ConfirmationExpiredError()

    applicant.status = ApplicantStatus.CONFIRMED
    applicant.confirmed_at = now
    await db.commit()

    logger.info(f"Applicant {applicant.id} confirmed participation")

    confirmed = await repository.get_by_code_hash(db, hash_token(code.strip()))
    return confirmed if confirmed is not None else record
