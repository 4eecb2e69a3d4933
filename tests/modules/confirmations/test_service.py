"""
Tests for participation confirmation codes.
"""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, patch
from uuid import uuid4

import pytest

from admissions.core.security import hash_token
from admissions.modules.applicants.models import ApplicantStatus, StageStatus
from admissions.modules.applicants.service import UnknownApplicantError
from admissions.modules.confirmations.models import ConfirmationCode, ConfirmationStatus
from admissions.modules.confirmations.service import (
    AlreadyConfirmedError,
    ConfirmationExpiredError,
    InvalidApplicantStateError,
    UnknownCodeError,
    confirm,
    issue_code,
    reissue_code,
)

SERVICE = "admissions.modules.confirmations.service"


def make_code(applicant_id, *, status=ConfirmationStatus.PENDING, expires_in_hours=24):
    now = datetime.now(UTC)
    return ConfirmationCode(
        id=uuid4(),
        applicant_id=applicant_id,
        code_hash=hash_token("the-code"),
        status=status,
        issued_at=now,
        expires_at=now + timedelta(hours=expires_in_hours),
    )


@pytest.fixture
def finalist(make_applicant):
    return make_applicant(current_stage=3, stage_status=StageStatus.AWAITING_CONFIRMATION)


class TestIssueCode:
    @pytest.mark.asyncio
    async def test_issues_hashed_code(self, mock_db, finalist):
        with patch(f"{SERVICE}.repository") as mock_repo:
            mock_repo.upsert_for_applicant = AsyncMock(return_value=uuid4())

            code = await issue_code(mock_db, finalist)

            kwargs = mock_repo.upsert_for_applicant.call_args.kwargs
            assert kwargs["applicant_id"] == finalist.id
            assert kwargs["code_hash"] == hash_token(code)
            assert kwargs["expires_at"] > kwargs["issued_at"]
            mock_db.commit.assert_not_called()

    @pytest.mark.asyncio
    async def test_reissue_produces_new_code(self, mock_db, finalist):
        with patch(f"{SERVICE}.repository") as mock_repo:
            mock_repo.upsert_for_applicant = AsyncMock(return_value=uuid4())

            first = await issue_code(mock_db, finalist)
            second = await issue_code(mock_db, finalist)

            assert first != second

    @pytest.mark.asyncio
    async def test_confirmed_code_is_never_replaced(self, mock_db, finalist):
        with patch(f"{SERVICE}.repository") as mock_repo:
            mock_repo.upsert_for_applicant = AsyncMock(return_value=None)

            with pytest.raises(AlreadyConfirmedError):
                await issue_code(mock_db, finalist)


class TestConfirm:
    @pytest.mark.asyncio
    async def test_confirm_success(self, mock_db, finalist):
        record = make_code(finalist.id)
        confirmed = make_code(finalist.id, status=ConfirmationStatus.CONFIRMED)
        with (
            patch(f"{SERVICE}.repository") as mock_repo,
            patch(f"{SERVICE}.applicants_repository") as mock_applicants,
        ):
            mock_repo.get_by_code_hash = AsyncMock(side_effect=[record, confirmed])
            mock_repo.mark_confirmed = AsyncMock(return_value=True)
            mock_applicants.get_for_update = AsyncMock(return_value=finalist)

            result = await confirm(mock_db, " the-code ")

            assert result is confirmed
            assert finalist.status == ApplicantStatus.CONFIRMED
            assert finalist.confirmed_at is not None
            mock_repo.get_by_code_hash.assert_any_call(mock_db, hash_token("the-code"))
            mock_db.commit.assert_called_once()

    @pytest.mark.asyncio
    async def test_repeat_confirm_is_idempotent(self, mock_db, finalist):
        record = make_code(finalist.id, status=ConfirmationStatus.CONFIRMED)
        with (
            patch(f"{SERVICE}.repository") as mock_repo,
            patch(f"{SERVICE}.applicants_repository") as mock_applicants,
        ):
            mock_repo.get_by_code_hash = AsyncMock(return_value=record)
            mock_applicants.get_for_update = AsyncMock()

            result = await confirm(mock_db, "the-code")

            assert result is record
            mock_applicants.get_for_update.assert_not_called()
            mock_db.commit.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_code(self, mock_db):
        with patch(f"{SERVICE}.repository") as mock_repo:
            mock_repo.get_by_code_hash = AsyncMock(return_value=None)

            with pytest.raises(UnknownCodeError):
                await confirm(mock_db, "nope")

    @pytest.mark.asyncio
    async def test_expired_code(self, mock_db, finalist):
        record = make_code(finalist.id, expires_in_hours=-1)
        with patch(f"{SERVICE}.repository") as mock_repo:
            mock_repo.get_by_code_hash = AsyncMock(return_value=record)
            mock_repo.mark_expired = AsyncMock()

            with pytest.raises(ConfirmationExpiredError):
                await confirm(mock_db, "the-code")

            mock_repo.mark_expired.assert_called_once_with(mock_db, record.id)
            assert finalist.status == ApplicantStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_eliminated_applicant_cannot_confirm(self, mock_db, make_applicant):
        applicant = make_applicant(
            current_stage=3,
            stage_status=StageStatus.AWAITING_CONFIRMATION,
            status=ApplicantStatus.WITHDRAWN,
        )
        record = make_code(applicant.id)
        with (
            patch(f"{SERVICE}.repository") as mock_repo,
            patch(f"{SERVICE}.applicants_repository") as mock_applicants,
        ):
            mock_repo.get_by_code_hash = AsyncMock(return_value=record)
            mock_repo.mark_confirmed = AsyncMock()
            mock_applicants.get_for_update = AsyncMock(return_value=applicant)

            with pytest.raises(InvalidApplicantStateError):
                await confirm(mock_db, "the-code")

            mock_repo.mark_confirmed.assert_not_called()
            mock_db.rollback.assert_called_once()

    @pytest.mark.asyncio
    async def test_lost_race_returns_winner(self, mock_db, finalist):
        """A concurrent confirm that wins the update is reported as success."""
        record = make_code(finalist.id)
        winner = make_code(finalist.id, status=ConfirmationStatus.CONFIRMED)
        with (
            patch(f"{SERVICE}.repository") as mock_repo,
            patch(f"{SERVICE}.applicants_repository") as mock_applicants,
        ):
            mock_repo.get_by_code_hash = AsyncMock(side_effect=[record, winner])
            mock_repo.mark_confirmed = AsyncMock(return_value=False)
            mock_applicants.get_for_update = AsyncMock(return_value=finalist)

            result = await confirm(mock_db, "the-code")

            assert result is winner
            mock_db.commit.assert_not_called()


class TestReissueCode:
    @pytest.fixture
    def collaborators(self):
        with (
            patch(f"{SERVICE}.repository") as mock_repo,
            patch(f"{SERVICE}.applicants_repository") as mock_applicants,
            patch(f"{SERVICE}.send_confirmation_code", new_callable=AsyncMock) as mock_mail,
        ):
            mock_repo.upsert_for_applicant = AsyncMock(return_value=uuid4())
            mock_mail.return_value = True
            yield mock_repo, mock_applicants, mock_mail

    @pytest.mark.asyncio
    async def test_reissue_mails_new_code(self, mock_db, finalist, collaborators):
        mock_repo, mock_applicants, mock_mail = collaborators
        mock_applicants.get_for_update = AsyncMock(return_value=finalist)

        result = await reissue_code(mock_db, finalist.id)

        assert result.applicant_id == finalist.id
        assert result.delivered is True
        mock_applicants.get_for_update.assert_called_once_with(mock_db, finalist.id)
        mock_db.commit.assert_called_once()

        mailed_code = mock_mail.call_args.kwargs["code"]
        assert mock_mail.call_args.kwargs["to_email"] == finalist.email
        stored = mock_repo.upsert_for_applicant.call_args.kwargs
        assert stored["code_hash"] == hash_token(mailed_code)
        assert stored["expires_at"] == result.expires_at

    @pytest.mark.asyncio
    async def test_mail_failure_keeps_new_code(self, mock_db, finalist, collaborators):
        _, mock_applicants, mock_mail = collaborators
        mock_applicants.get_for_update = AsyncMock(return_value=finalist)
        mock_mail.side_effect = RuntimeError("smtp down")

        result = await reissue_code(mock_db, finalist.id)

        assert result.delivered is False
        mock_db.commit.assert_called_once()

    @pytest.mark.asyncio
    async def test_not_a_finalist(self, mock_db, make_applicant, collaborators):
        mock_repo, mock_applicants, mock_mail = collaborators
        applicant = make_applicant(current_stage=2)
        mock_applicants.get_for_update = AsyncMock(return_value=applicant)

        with pytest.raises(InvalidApplicantStateError):
            await reissue_code(mock_db, applicant.id)

        mock_repo.upsert_for_applicant.assert_not_called()
        mock_mail.assert_not_called()
        mock_db.rollback.assert_called_once()

    @pytest.mark.asyncio
    async def test_already_confirmed(self, mock_db, make_applicant, collaborators):
        mock_repo, mock_applicants, mock_mail = collaborators
        applicant = make_applicant(
            current_stage=3,
            stage_status=StageStatus.AWAITING_CONFIRMATION,
            status=ApplicantStatus.CONFIRMED,
        )
        mock_applicants.get_for_update = AsyncMock(return_value=applicant)

        with pytest.raises(AlreadyConfirmedError):
            await reissue_code(mock_db, applicant.id)

        mock_repo.upsert_for_applicant.assert_not_called()
        mock_mail.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_applicant(self, mock_db, collaborators):
        _, mock_applicants, _ = collaborators
        mock_applicants.get_for_update = AsyncMock(return_value=None)

        with pytest.raises(UnknownApplicantError):
            await reissue_code(mock_db, uuid4())

        mock_db.commit.assert_not_called()
