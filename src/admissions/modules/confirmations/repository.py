"""
Confirmations Repository
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from .models import ConfirmationCode, ConfirmationStatus


async def upsert_for_applicant(
    db: AsyncSession,
    *,
    applicant_id: UUID,
    code_hash: str,
    issued_at: datetime,
    expires_at: datetime,
) -> UUID | None:
    """
    Issue or rotate the applicant's code.

    A confirmed code is never replaced.

    Returns:
        The code row id, or None if the applicant already confirmed
    """
    stmt = insert(ConfirmationCode).values(
        applicant_id=applicant_id,
        code_hash=code_hash,
        status=ConfirmationStatus.PENDING,
        issued_at=issued_at,
        expires_at=expires_at,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[ConfirmationCode.applicant_id],
        set_={
            "code_hash": stmt.excluded.code_hash,
            "status": ConfirmationStatus.PENDING,
            "issued_at": stmt.excluded.issued_at,
            "expires_at": stmt.excluded.expires_at,
            "consumed_at": None,
        },
        where=ConfirmationCode.status != ConfirmationStatus.CONFIRMED,
    ).returning(ConfirmationCode.id)

    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_by_code_hash(db: AsyncSession, code_hash: str) -> ConfirmationCode | None:
    result = await db.execute(
        select(ConfirmationCode)
        .where(ConfirmationCode.code_hash == code_hash)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def mark_confirmed(db: AsyncSession, code_id: UUID, now: datetime) -> bool:
    """
    pending -> confirmed, only while unexpired.

    Returns:
        True for the single caller that performed the transition
    """
    result = await db.execute(
        update(ConfirmationCode)
        .where(
            ConfirmationCode.id == code_id,
            ConfirmationCode.status == ConfirmationStatus.PENDING,
            ConfirmationCode.expires_at > now,
        )
        .values(status=ConfirmationStatus.CONFIRMED, consumed_at=now)
        .returning(ConfirmationCode.id)
        .execution_options(synchronize_session=False)
    )
    return result.scalar_one_or_none() is not None


async def mark_expired(db: AsyncSession, code_id: UUID) -> None:
    """pending -> expired. No-op for any other status."""
    await db.execute(
        update(ConfirmationCode)
        .where(
            ConfirmationCode.id == code_id,
            ConfirmationCode.status == ConfirmationStatus.PENDING,
        )
        .values(status=ConfirmationStatus.EXPIRED)
        .execution_options(synchronize_session=False)
    )
