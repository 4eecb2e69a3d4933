"""
Tests for OTP login and session tokens.
"""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest

from admissions.core.errors import InputError
from admissions.core.rate_limit import RateLimitResult
from admissions.core.security import hash_code, hash_token
from admissions.modules.sessions.models import ApplicantSession, OtpSession
from admissions.modules.sessions.service import (
    OTP_ACKNOWLEDGEMENT,
    AttemptsExceededError,
    InvalidOrExpiredTokenError,
    NoActiveChallengeError,
    OtpExpiredError,
    OtpMismatchError,
    RateLimitedError,
    authorize,
    logout,
    request_otp,
    verify_otp,
)

SERVICE = "admissions.modules.sessions.service"
IDENTIFIER = "asha@example.com"


def make_challenge(
    code: str = "123456",
    *,
    attempts: int = 0,
    consumed: bool = False,
    expired: bool = False,
) -> OtpSession:
    now = datetime.now(UTC)
    return OtpSession(
        identifier=IDENTIFIER,
        code_hash=hash_code(IDENTIFIER, code),
        issued_at=now - timedelta(minutes=1),
        expires_at=now - timedelta(seconds=1) if expired else now + timedelta(minutes=9),
        consumed_at=now if consumed else None,
        attempts=attempts,
    )


class TestRequestOtp:
    @pytest.mark.asyncio
    async def test_issues_code_for_registered_applicant(self, mock_db, sample_applicant):
        with (
            patch(f"{SERVICE}.repository") as mock_repo,
            patch(f"{SERVICE}.applicants_repository") as mock_applicants,
            patch(f"{SERVICE}.notifier.send", new_callable=AsyncMock) as mock_send,
        ):
            mock_applicants.get_by_identifier = AsyncMock(return_value=sample_applicant)
            mock_repo.upsert_otp_session = AsyncMock()
            mock_send.return_value = True

            message = await request_otp(mock_db, "Asha@Example.com")

            assert message == OTP_ACKNOWLEDGEMENT
            kwargs = mock_repo.upsert_otp_session.call_args.kwargs
            assert kwargs["identifier"] == IDENTIFIER
            assert kwargs["expires_at"] - kwargs["issued_at"] == timedelta(minutes=10)
            mock_db.commit.assert_called_once()
            mock_send.assert_called_once()
            assert mock_send.call_args.args[0] == IDENTIFIER

    @pytest.mark.asyncio
    async def test_unregistered_identifier_gets_same_answer(self, mock_db):
        with (
            patch(f"{SERVICE}.repository") as mock_repo,
            patch(f"{SERVICE}.applicants_repository") as mock_applicants,
            patch(f"{SERVICE}.notifier.send", new_callable=AsyncMock) as mock_send,
        ):
            mock_applicants.get_by_identifier = AsyncMock(return_value=None)
            mock_repo.upsert_otp_session = AsyncMock()

            message = await request_otp(mock_db, "nobody@example.com")

            assert message == OTP_ACKNOWLEDGEMENT
            mock_repo.upsert_otp_session.assert_not_called()
            mock_send.assert_not_called()

    @pytest.mark.asyncio
    async def test_delivery_failure_is_not_raised(self, mock_db, sample_applicant):
        with (
            patch(f"{SERVICE}.repository") as mock_repo,
            patch(f"{SERVICE}.applicants_repository") as mock_applicants,
            patch(f"{SERVICE}.notifier.send", new_callable=AsyncMock) as mock_send,
        ):
            mock_applicants.get_by_identifier = AsyncMock(return_value=sample_applicant)
            mock_repo.upsert_otp_session = AsyncMock()
            mock_send.return_value = False

            assert await request_otp(mock_db, IDENTIFIER) == OTP_ACKNOWLEDGEMENT

    @pytest.mark.asyncio
    async def test_rate_limited(self, mock_db):
        with (
            patch(f"{SERVICE}.check_rate_limit", new_callable=AsyncMock) as mock_limit,
            patch(f"{SERVICE}.applicants_repository") as mock_applicants,
        ):
            mock_limit.return_value = RateLimitResult(allowed=False, retry_after_seconds=600)

            with pytest.raises(RateLimitedError) as exc_info:
                await request_otp(mock_db, IDENTIFIER)

            assert exc_info.value.status_code == 429
            assert exc_info.value.retry_after_seconds == 600
            mock_applicants.get_by_identifier.assert_not_called()

    @pytest.mark.asyncio
    async def test_sixth_request_in_window_is_limited(self, mock_db):
        with (
            patch(f"{SERVICE}.repository"),
            patch(f"{SERVICE}.applicants_repository") as mock_applicants,
            patch("admissions.core.rate_limit.redis_module.redis_client", None),
        ):
            mock_applicants.get_by_identifier = AsyncMock(return_value=None)

            for _ in range(5):
                await request_otp(mock_db, IDENTIFIER)

            with pytest.raises(RateLimitedError):
                await request_otp(mock_db, IDENTIFIER)


class TestVerifyOtp:
    @pytest.mark.asyncio
    async def test_success_mints_session(self, mock_db, sample_applicant):
        with (
            patch(f"{SERVICE}.repository") as mock_repo,
            patch(f"{SERVICE}.applicants_repository") as mock_applicants,
        ):
            mock_repo.get_otp_session = AsyncMock(return_value=make_challenge())
            mock_repo.consume_otp_session = AsyncMock(return_value=True)
            mock_repo.create_session = AsyncMock()
            mock_applicants.get_by_identifier = AsyncMock(return_value=sample_applicant)

            verified = await verify_otp(mock_db, IDENTIFIER, "123456")

            assert verified.applicant is sample_applicant
            assert verified.token
            kwargs = mock_repo.create_session.call_args.kwargs
            assert kwargs["token_hash"] == hash_token(verified.token)
            assert kwargs["expires_at"] - kwargs["issued_at"] == timedelta(hours=24)
            mock_db.commit.assert_called_once()

    @pytest.mark.asyncio
    async def test_no_challenge(self, mock_db):
        with patch(f"{SERVICE}.repository") as mock_repo:
            mock_repo.get_otp_session = AsyncMock(return_value=None)

            with pytest.raises(NoActiveChallengeError):
                await verify_otp(mock_db, IDENTIFIER, "123456")

    @pytest.mark.asyncio
    async def test_second_verification_has_no_challenge(self, mock_db):
        with patch(f"{SERVICE}.repository") as mock_repo:
            mock_repo.get_otp_session = AsyncMock(return_value=make_challenge(consumed=True))

            with pytest.raises(NoActiveChallengeError):
                await verify_otp(mock_db, IDENTIFIER, "123456")

    @pytest.mark.asyncio
    async def test_lost_consume_race(self, mock_db):
        """Two requests with the correct code: only the compare-and-set winner gets a session."""
        with patch(f"{SERVICE}.repository") as mock_repo:
            mock_repo.get_otp_session = AsyncMock(return_value=make_challenge())
            mock_repo.consume_otp_session = AsyncMock(return_value=False)
            mock_repo.create_session = AsyncMock()

            with pytest.raises(NoActiveChallengeError):
                await verify_otp(mock_db, IDENTIFIER, "123456")

            mock_repo.create_session.assert_not_called()
            mock_db.rollback.assert_called_once()

    @pytest.mark.asyncio
    async def test_expired(self, mock_db):
        with patch(f"{SERVICE}.repository") as mock_repo:
            mock_repo.get_otp_session = AsyncMock(return_value=make_challenge(expired=True))

            with pytest.raises(OtpExpiredError):
                await verify_otp(mock_db, IDENTIFIER, "123456")

    @pytest.mark.asyncio
    async def test_mismatch_counts_attempt(self, mock_db):
        with patch(f"{SERVICE}.repository") as mock_repo:
            mock_repo.get_otp_session = AsyncMock(return_value=make_challenge())
            mock_repo.increment_attempts = AsyncMock(return_value=1)
            mock_repo.delete_otp_session = AsyncMock()

            with pytest.raises(OtpMismatchError) as exc_info:
                await verify_otp(mock_db, IDENTIFIER, "000000")

            assert exc_info.value.attempts_remaining == 2
            mock_repo.delete_otp_session.assert_not_called()
            mock_db.commit.assert_called_once()

    @pytest.mark.asyncio
    async def test_third_wrong_code_destroys_challenge(self, mock_db):
        with patch(f"{SERVICE}.repository") as mock_repo:
            mock_repo.get_otp_session = AsyncMock(return_value=make_challenge(attempts=2))
            mock_repo.increment_attempts = AsyncMock(return_value=3)
            mock_repo.delete_otp_session = AsyncMock()

            with pytest.raises(AttemptsExceededError):
                await verify_otp(mock_db, IDENTIFIER, "000000")

            mock_repo.delete_otp_session.assert_called_once_with(mock_db, IDENTIFIER)

    @pytest.mark.asyncio
    async def test_correct_code_after_lockout_is_rejected(self, mock_db):
        with patch(f"{SERVICE}.repository") as mock_repo:
            mock_repo.get_otp_session = AsyncMock(return_value=make_challenge(attempts=3))
            mock_repo.delete_otp_session = AsyncMock()
            mock_repo.consume_otp_session = AsyncMock()

            with pytest.raises(AttemptsExceededError):
                await verify_otp(mock_db, IDENTIFIER, "123456")

            mock_repo.consume_otp_session.assert_not_called()

    @pytest.mark.asyncio
    async def test_lockout_reports_wait_for_new_code(self, mock_db):
        with (
            patch(f"{SERVICE}.repository") as mock_repo,
            patch(f"{SERVICE}.peek_rate_limit", new_callable=AsyncMock) as mock_peek,
        ):
            mock_repo.get_otp_session = AsyncMock(return_value=make_challenge(attempts=2))
            mock_repo.increment_attempts = AsyncMock(return_value=3)
            mock_repo.delete_otp_session = AsyncMock()
            mock_peek.return_value = RateLimitResult(allowed=False, retry_after_seconds=420)

            with pytest.raises(AttemptsExceededError) as exc_info:
                await verify_otp(mock_db, IDENTIFIER, "000000")

        assert exc_info.value.retry_after_seconds == 420
        assert exc_info.value.status_code == 429
        assert "7 minute(s)" in exc_info.value.message
        assert mock_peek.call_args.args[0] == f"otp_request:{IDENTIFIER}"

    @pytest.mark.asyncio
    async def test_lockout_allows_immediate_new_code(self, mock_db):
        with (
            patch(f"{SERVICE}.repository") as mock_repo,
            patch("admissions.core.rate_limit.redis_module.redis_client", None),
        ):
            mock_repo.get_otp_session = AsyncMock(return_value=make_challenge(attempts=3))
            mock_repo.delete_otp_session = AsyncMock()

            with pytest.raises(AttemptsExceededError) as exc_info:
                await verify_otp(mock_db, IDENTIFIER, "123456")

        assert exc_info.value.retry_after_seconds == 0

    @pytest.mark.asyncio
    async def test_superseded_code_does_not_match(self, mock_db):
        """After a re-request only the newest code is stored, so the old one is a mismatch."""
        with patch(f"{SERVICE}.repository") as mock_repo:
            mock_repo.get_otp_session = AsyncMock(return_value=make_challenge(code="654321"))
            mock_repo.increment_attempts = AsyncMock(return_value=1)

            with pytest.raises(OtpMismatchError):
                await verify_otp(mock_db, IDENTIFIER, "123456")

    @pytest.mark.asyncio
    async def test_malformed_code_changes_nothing(self, mock_db):
        with patch(f"{SERVICE}.repository") as mock_repo:
            with pytest.raises(InputError):
                await verify_otp(mock_db, IDENTIFIER, "12ab")

            mock_repo.get_otp_session.assert_not_called()


class TestAuthorize:
    def _session(self, applicant_id, *, expired=False, revoked=False) -> ApplicantSession:
        now = datetime.now(UTC)
        return ApplicantSession(
            token_hash=hash_token("tok"),
            applicant_id=applicant_id,
            issued_at=now - timedelta(hours=1),
            expires_at=now - timedelta(seconds=1) if expired else now + timedelta(hours=23),
            revoked_at=now if revoked else None,
        )

    @pytest.mark.asyncio
    async def test_valid_token(self, mock_db, sample_applicant):
        with (
            patch(f"{SERVICE}.repository") as mock_repo,
            patch(f"{SERVICE}.applicants_repository") as mock_applicants,
        ):
            mock_repo.get_session_by_token_hash = AsyncMock(
                return_value=self._session(sample_applicant.id)
            )
            mock_applicants.get_by_id = AsyncMock(return_value=sample_applicant)

            assert await authorize(mock_db, "tok") is sample_applicant
            mock_repo.get_session_by_token_hash.assert_called_once_with(mock_db, hash_token("tok"))

    @pytest.mark.asyncio
    @pytest.mark.parametrize("expired,revoked", [(True, False), (False, True)])
    async def test_expired_or_revoked(self, mock_db, sample_applicant, expired, revoked):
        with patch(f"{SERVICE}.repository") as mock_repo:
            mock_repo.get_session_by_token_hash = AsyncMock(
                return_value=self._session(sample_applicant.id, expired=expired, revoked=revoked)
            )

            with pytest.raises(InvalidOrExpiredTokenError):
                await authorize(mock_db, "tok")

    @pytest.mark.asyncio
    async def test_unknown_token(self, mock_db):
        with patch(f"{SERVICE}.repository") as mock_repo:
            mock_repo.get_session_by_token_hash = AsyncMock(return_value=None)

            with pytest.raises(InvalidOrExpiredTokenError):
                await authorize(mock_db, "nope")


@pytest.mark.asyncio
async def test_logout_revokes_token(mock_db):
    with patch(f"{SERVICE}.repository") as mock_repo:
        mock_repo.revoke_session = AsyncMock(return_value=True)

        assert await logout(mock_db, "tok") is True
        assert mock_repo.revoke_session.call_args.args[1] == hash_token("tok")
        mock_db.commit.assert_called_once()
