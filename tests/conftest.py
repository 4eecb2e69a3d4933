"""
Shared fixtures for admissions tests.
"""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from admissions.core.rate_limit import reset_memory_store
from admissions.modules.applicants.models import Applicant, ApplicantStatus, StageStatus


@pytest.fixture
def mock_db():
    """Create a mock database session."""
    db = AsyncMock()
    db.commit = AsyncMock()
    db.rollback = AsyncMock()
    db.flush = AsyncMock()
    db.refresh = AsyncMock()
    db.get = AsyncMock()
    db.execute = AsyncMock()
    db.add = MagicMock()
    return db


@pytest.fixture
def mock_redis():
    """Create a mock Redis client with a pipeline."""
    redis = AsyncMock()
    redis.ping = AsyncMock(return_value=True)
    redis.pipeline = MagicMock()
    pipe = MagicMock()
    pipe.execute = AsyncMock()
    redis.pipeline.return_value = pipe
    return redis


@pytest.fixture(autouse=True)
def _clear_rate_limits():
    reset_memory_store()
    yield
    reset_memory_store()


@pytest.fixture
def make_applicant():
    """Factory for in-memory Applicant rows."""

    def _make(
        *,
        current_stage: int = 0,
        stage_status: StageStatus = StageStatus.PENDING_REVIEW,
        status: ApplicantStatus = ApplicantStatus.ACTIVE,
        email: str | None = "asha@example.com",
        phone: str | None = None,
        registration_id: str = "HKT20260001",
    ) -> Applicant:
        now = datetime.now(UTC)
        return Applicant(
            id=uuid4(),
            registration_id=registration_id,
            name="Asha Rao",
            email=email,
            phone=phone,
            current_stage=current_stage,
            stage_status=stage_status,
            status=status,
            created_at=now,
            updated_at=now,
        )

    return _make


@pytest.fixture
def sample_applicant(make_applicant):
    return make_applicant()
