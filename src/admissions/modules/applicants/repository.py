"""
Applicants Repository

Database access for applicants. Functions flush but never commit; the
calling service owns the transaction.
"""

from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Applicant, ApplicantStatus, StageStatus


async def create(
    db: AsyncSession,
    *,
    registration_id: str,
    name: str,
    email: str | None,
    phone: str | None,
) -> Applicant:
    """Insert a new applicant at stage 0."""
    applicant = Applicant(
        registration_id=registration_id,
        name=name,
        email=email,
        phone=phone,
    )
    db.add(applicant)
    await db.flush()
    await db.refresh(applicant)
    return applicant


async def get_by_id(db: AsyncSession, id: UUID) -> Applicant | None:
    return await db.get(Applicant, id)


async def get_for_update(db: AsyncSession, id: UUID) -> Applicant | None:
    """
    Load an applicant holding a row lock until the transaction ends.

    This is the per-applicant guard for stage decisions: two transactions
    deciding for the same applicant serialize on this lock.
    """
    result = await db.execute(
        select(Applicant)
        .where(Applicant.id == id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_by_registration_id(
    db: AsyncSession, registration_id: str, for_update: bool = False
) -> Applicant | None:
    stmt = select(Applicant).where(Applicant.registration_id == registration_id.strip().upper())
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_by_email(db: AsyncSession, email: str) -> Applicant | None:
    result = await db.execute(select(Applicant).where(Applicant.email == email))
    return result.scalar_one_or_none()


async def get_by_phone(db: AsyncSession, phone: str) -> Applicant | None:
    result = await db.execute(select(Applicant).where(Applicant.phone == phone))
    return result.scalar_one_or_none()


async def get_by_identifier(db: AsyncSession, identifier: str) -> Applicant | None:
    """Look up by an already-normalized email or phone."""
    if "@" in identifier:
        return await get_by_email(db, identifier)
    return await get_by_phone(db, identifier)


async def registration_id_exists(db: AsyncSession, registration_id: str) -> bool:
    result = await db.execute(
        select(Applicant.id).where(Applicant.registration_id == registration_id)
    )
    return result.scalar_one_or_none() is not None


async def count_by_stage(db: AsyncSession) -> list[tuple[int, ApplicantStatus, StageStatus, int]]:
    """Applicant counts grouped by (current_stage, status, stage_status)."""
    result = await db.execute(
        select(
            Applicant.current_stage,
            Applicant.status,
            Applicant.stage_status,
            func.count(Applicant.id),
        ).group_by(Applicant.current_stage, Applicant.status, Applicant.stage_status)
    )
    return [tuple(row) for row in result.all()]


async def list_filtered(
    db: AsyncSession,
    *,
    stage: int | None = None,
    status: ApplicantStatus | None = None,
    stage_status: StageStatus | None = None,
    skip: int = 0,
    limit: int = 50,
) -> tuple[list[Applicant], int]:
    """
    Page through applicants, oldest registration first.

    Returns:
        Tuple of (applicants on this page, total count matching filters)
    """
    query = select(Applicant)
    if stage is not None:
        query = query.where(Applicant.current_stage == stage)
    if status is not None:
        query = query.where(Applicant.status == status)
    if stage_status is not None:
        query = query.where(Applicant.stage_status == stage_status)

    total_result = await db.execute(select(func.count()).select_from(query.subquery()))
    total = total_result.scalar() or 0

    result = await db.execute(
        query.order_by(Applicant.created_at, Applicant.registration_id).offset(skip).limit(limit)
    )
    return list(result.scalars().all()), total
