"""
Sessions Repository

Atomic statements for OTP challenges and applicant sessions. Every state
change on an OTP challenge is a single conditional statement so concurrent
requests cannot lose updates.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import delete, or_, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from .models import ApplicantSession, OtpSession

# ============================================
# OTP challenges
# ============================================


async def upsert_otp_session(
    db: AsyncSession,
    *,
    identifier: str,
    code_hash: str,
    issued_at: datetime,
    expires_at: datetime,
) -> None:
    """
    Insert or replace the challenge for an identifier in one statement.

    Replacing resets the attempt counter and clears consumption, so the
    previous code stops verifying immediately. Concurrent requests resolve
    last-writer-wins.
    """
    stmt = insert(OtpSession).values(
        identifier=identifier,
        code_hash=code_hash,
        issued_at=issued_at,
        expires_at=expires_at,
        consumed_at=None,
        attempts=0,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[OtpSession.identifier],
        set_={
            "code_hash": stmt.excluded.code_hash,
            "issued_at": stmt.excluded.issued_at,
            "expires_at": stmt.excluded.expires_at,
            "consumed_at": None,
            "attempts": 0,
        },
    )
    await db.execute(stmt)


async def get_otp_session(db: AsyncSession, identifier: str) -> OtpSession | None:
    result = await db.execute(
        select(OtpSession)
        .where(OtpSession.identifier == identifier)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def increment_attempts(db: AsyncSession, identifier: str, code_hash: str) -> int | None:
    """
    Count a wrong guess against the challenge that was checked.

    Returns:
        The new attempt count, or None if that challenge was consumed or
        superseded in the meantime
    """
    result = await db.execute(
        update(OtpSession)
        .where(
            OtpSession.identifier == identifier,
            OtpSession.code_hash == code_hash,
            OtpSession.consumed_at.is_(None),
        )
        .values(attempts=OtpSession.attempts + 1)
        .returning(OtpSession.attempts)
        .execution_options(synchronize_session=False)
    )
    return result.scalar_one_or_none()


async def consume_otp_session(
    db: AsyncSession, identifier: str, code_hash: str, consumed_at: datetime
) -> bool:
    """
    Mark the challenge consumed if nobody else has.

    Returns:
        True for exactly one caller per challenge
    """
    result = await db.execute(
        update(OtpSession)
        .where(
            OtpSession.identifier == identifier,
            OtpSession.code_hash == code_hash,
            OtpSession.consumed_at.is_(None),
        )
        .values(consumed_at=consumed_at)
        .returning(OtpSession.id)
        .execution_options(synchronize_session=False)
    )
    return result.scalar_one_or_none() is not None


async def delete_otp_session(db: AsyncSession, identifier: str) -> None:
    await db.execute(
        delete(OtpSession)
        .where(OtpSession.identifier == identifier)
        .execution_options(synchronize_session=False)
    )


async def delete_stale_otp_sessions(db: AsyncSession, now: datetime) -> int:
    """Remove expired or consumed challenges. Returns the number removed."""
    result = await db.execute(
        delete(OtpSession).where(
            or_(OtpSession.expires_at <= now, OtpSession.consumed_at.is_not(None))
        ).execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


# ============================================
# Applicant sessions
# ============================================


async def create_session(
    db: AsyncSession,
    *,
    applicant_id: UUID,
    token_hash: str,
    issued_at: datetime,
    expires_at: datetime,
) -> ApplicantSession:
    session = ApplicantSession(
        applicant_id=applicant_id,
        token_hash=token_hash,
        issued_at=issued_at,
        expires_at=expires_at,
    )
    db.add(session)
    await db.flush()
    return session


async def get_session_by_token_hash(db: AsyncSession, token_hash: str) -> ApplicantSession | None:
    result = await db.execute(
        select(ApplicantSession).where(ApplicantSession.token_hash == token_hash)
    )
    return result.scalar_one_or_none()


async def revoke_session(db: AsyncSession, token_hash: str, revoked_at: datetime) -> bool:
    result = await db.execute(
        update(ApplicantSession)
        .where(
            ApplicantSession.token_hash == token_hash,
            ApplicantSession.revoked_at.is_(None),
        )
        .values(revoked_at=revoked_at)
        .returning(ApplicantSession.id)
        .execution_options(synchronize_session=False)
    )
    return result.scalar_one_or_none() is not None


async def delete_stale_sessions(db: AsyncSession, now: datetime) -> int:
    """Remove expired or revoked sessions. Returns the number removed."""
    result = await db.execute(
        delete(ApplicantSession).where(
            or_(ApplicantSession.expires_at <= now, ApplicantSession.revoked_at.is_not(None))
        ).execution_options(synchronize_session=False)
    )
    return result.rowcount or 0
