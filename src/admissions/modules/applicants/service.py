"""
Applicants Service Layer

Registration and lookup of applicants. Registration places the applicant
at stage 0 with status `active`; everything after that is owned by the
stages module.
"""

import logging
import secrets
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from admissions.core.email import send_registration_received
from admissions.core.errors import ConflictError, InputError, NotFoundError
from admissions.modules.applicants import repository
from admissions.modules.applicants.helpers import normalize_identifier
from admissions.modules.applicants.models import Applicant
from admissions.modules.applicants.schemas import ApplicantRegisterRequest

logger = logging.getLogger(__name__)

REGISTRATION_ID_PREFIX = "HKT"
REGISTRATION_ID_ATTEMPTS = 10


class UnknownApplicantError(NotFoundError):
    def __init__(self, ref: UUID | str | None = None):
        message = f"Applicant {ref} not found" if ref else "Applicant not found"
        super().__init__(message, "UNKNOWN_APPLICANT")


class DuplicateApplicantError(ConflictError):
    def __init__(self):
        super().__init__(
            "An applicant with this email or phone number is already registered.",
            "DUPLICATE_APPLICANT",
        )


class InvalidIdentifierError(InputError):
    def __init__(self, message: str = "Enter a valid email address or phone number."):
        super().__init__(message, "INVALID_IDENTIFIER")


def parse_identifier(identifier: str) -> str:
    """
    Normalize a login identifier.

    Raises:
        InvalidIdentifierError: If it is neither a valid email nor phone number
    """
    try:
        return normalize_identifier(identifier)
    except ValueError as e:
        raise InvalidIdentifierError() from e


def _generate_registration_id() -> str:
    """HKT<year><4 digits>, e.g. HKT20260042."""
    return f"{REGISTRATION_ID_PREFIX}{datetime.now(UTC).year}{secrets.randbelow(10000):04d}"


async def _allocate_registration_id(db: AsyncSession) -> str:
    for _ in range(REGISTRATION_ID_ATTEMPTS):
        candidate = _generate_registration_id()
        if not await repository.registration_id_exists(db, candidate):
            return candidate
    raise ConflictError(
        "Could not allocate a registration ID. Please try again.",
        "REGISTRATION_ID_EXHAUSTED",
    )


async def register_applicant(db: AsyncSession, data: ApplicantRegisterRequest) -> Applicant:
    """
    Register a new applicant.

    Raises:
        DuplicateApplicantError: If the email or phone is already registered
    """
    if data.email and await repository.get_by_email(db, data.email):
        raise DuplicateApplicantError()
    if data.phone and await repository.get_by_phone(db, data.phone):
        raise DuplicateApplicantError()

    registration_id = await _allocate_registration_id(db)

    try:
        applicant = await repository.create(
            db,
            registration_id=registration_id,
            name=data.name,
            email=data.email,
            phone=data.phone,
        )
        await db.commit()
    except IntegrityError as e:
        # Lost a race with a concurrent registration for the same contact
        await db.rollback()
        logger.warning(f"Registration rejected by unique constraint: {e.orig}")
        raise DuplicateApplicantError() from e

    logger.info(f"Registered applicant {applicant.id} ({applicant.registration_id})")

    if applicant.email:
        try:
            sent = await send_registration_received(
                to_email=applicant.email,
                applicant_name=applicant.name,
                registration_id=applicant.registration_id,
            )
            if not sent:
                logger.error(f"Failed to send registration email for applicant {applicant.id}")
        except Exception as e:
            logger.error(f"Exception sending registration email for {applicant.id}: {e}")

    return applicant


async def get_applicant(db: AsyncSession, applicant_id: UUID) -> Applicant:
    """
    Raises:
        UnknownApplicantError: If the applicant doesn't exist
    """
    applicant = await repository.get_by_id(db, applicant_id)
    if not applicant:
        raise UnknownApplicantError(applicant_id)
    return applicant


async def resolve_applicant_ref(
    db: AsyncSession, ref: UUID | str, for_update: bool = False
) -> Applicant:
    """
    Resolve an applicant UUID or registration ID.

    With for_update=True the row is locked for the rest of the transaction.

    Raises:
        UnknownApplicantError: If nothing matches
    """
    applicant_id: UUID | None = ref if isinstance(ref, UUID) else None
    if applicant_id is None:
        try:
            applicant_id = UUID(str(ref).strip())
        except ValueError:
            applicant_id = None

    if applicant_id is not None:
        if for_update:
            applicant = await repository.get_for_update(db, applicant_id)
        else:
            applicant = await repository.get_by_id(db, applicant_id)
    else:
        applicant = await repository.get_by_registration_id(db, str(ref), for_update=for_update)

    if not applicant:
        raise UnknownApplicantError(ref)
    return applicant
