"""
Sessions Background Jobs

Expiry is enforced lazily at verify/authorize time; this hourly job only
keeps the tables small.
"""

import logging
from datetime import UTC, datetime
from typing import Any

from apscheduler.triggers.interval import IntervalTrigger

from admissions.core.database import async_session_maker
from admissions.core.scheduler import register_job
from admissions.modules.sessions import service

logger = logging.getLogger(__name__)

JOB_ID_CLEANUP = "sessions_cleanup_expired"


async def cleanup_expired_sessions() -> dict[str, Any]:
    """Purge stale OTP challenges and applicant sessions."""
    executed_at = datetime.now(UTC)

    async with async_session_maker() as db:
        counts = await service.cleanup_expired(db)

    logger.info(
        f"Session cleanup removed {counts['otp_sessions_removed']} OTP challenge(s) "
        f"and {counts['sessions_removed']} session(s)"
    )
    return {"executed_at": executed_at.isoformat(), **counts}


def register_session_jobs() -> None:
    register_job(
        job_id=JOB_ID_CLEANUP,
        func=cleanup_expired_sessions,
        trigger=IntervalTrigger(hours=1),
    )
    logger.info(f"Registered job: {JOB_ID_CLEANUP} (interval: 1 hour)")
