"""
Stages Repository

Append and read selection records. No update or delete functions exist
for this table.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Decision, DecisionSource, SelectionRecord


async def append_record(
    db: AsyncSession,
    *,
    applicant_id: UUID,
    from_stage: int,
    decision: Decision,
    next_stage: int,
    source: DecisionSource,
    actor_id: UUID | None,
    batch_id: UUID | None = None,
) -> SelectionRecord:
    record = SelectionRecord(
        applicant_id=applicant_id,
        from_stage=from_stage,
        decision=decision,
        next_stage=next_stage,
        source=source,
        actor_id=actor_id,
        batch_id=batch_id,
    )
    db.add(record)
    await db.flush()
    return record


async def list_for_applicant(db: AsyncSession, applicant_id: UUID) -> list[SelectionRecord]:
    """Oldest first."""
    result = await db.execute(
        select(SelectionRecord)
        .where(SelectionRecord.applicant_id == applicant_id)
        .order_by(SelectionRecord.applied_at.asc())
    )
    return list(result.scalars().all())
