"""
Sessions Service Layer

Passwordless applicant login:

1. request_otp: issue a numeric code for an email/phone identifier. The
   code is stored as a keyed hash through an atomic upsert, so a new code
   always supersedes the previous one. Requests are rate limited per
   identifier, and the response never reveals whether the identifier is
   registered.

2. verify_otp: check a code exactly once. Wrong guesses are counted
   atomically; reaching the limit destroys the challenge. A match mints
   an opaque bearer token with a fixed absolute lifetime.

3. authorize / logout: validate or revoke a bearer token. Use never
   extends the expiry.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from admissions.core import notifier
from admissions.core.config import settings
from admissions.core.email import render_otp_email
from admissions.core.errors import InputError, SecurityError
from admissions.core.rate_limit import check_rate_limit, peek_rate_limit
from admissions.core.security import (
    codes_match,
    generate_numeric_code,
    generate_opaque_token,
    hash_code,
    hash_token,
)
from admissions.modules.applicants import repository as applicants_repository
from admissions.modules.applicants.models import Applicant
from admissions.modules.applicants.service import parse_identifier
from admissions.modules.sessions import repository

logger = logging.getLogger(__name__)

OTP_ACKNOWLEDGEMENT = "If this email or phone number is registered, a login code has been sent."


class RateLimitedError(SecurityError):
    def __init__(self, retry_after_seconds: int):
        minutes = max(1, retry_after_seconds // 60)
        super().__init__(
            f"Too many code requests. Please try again in {minutes} minute(s).",
            "RATE_LIMITED",
            status_code=429,
            retry_after_seconds=retry_after_seconds,
        )


class NoActiveChallengeError(SecurityError):
    def __init__(self):
        super().__init__(
            "No active login code. Please request a new one.",
            "NO_ACTIVE_CHALLENGE",
            status_code=400,
        )


class OtpExpiredError(SecurityError):
    def __init__(self):
        super().__init__(
            "This login code has expired. Please request a new one.",
            "OTP_EXPIRED",
            status_code=400,
        )


class AttemptsExceededError(SecurityError):
    def __init__(self, retry_after_seconds: int = 0):
        if retry_after_seconds > 0:
            minutes = max(1, retry_after_seconds // 60)
            message = f"Too many incorrect attempts. Please request a new code in {minutes} minute(s)."
        else:
            message = "Too many incorrect attempts. Please request a new code."
        super().__init__(
            message,
            "ATTEMPTS_EXCEEDED",
            status_code=429,
            retry_after_seconds=retry_after_seconds,
        )


class OtpMismatchError(SecurityError):
    def __init__(self, attempts_remaining: int):
        self.attempts_remaining = attempts_remaining
        super().__init__(
            f"Incorrect code. {attempts_remaining} attempt(s) remaining.",
            "OTP_MISMATCH",
            status_code=401,
        )


class InvalidOrExpiredTokenError(SecurityError):
    def __init__(self):
        super().__init__(
            "Invalid or expired session. Please sign in again.",
            "INVALID_OR_EXPIRED_TOKEN",
            status_code=401,
        )


@dataclass
class VerifiedSession:
    token: str
    expires_at: datetime
    applicant: Applicant


def _now() -> datetime:
    return datetime.now(UTC)


def _otp_request_key(identifier: str) -> str:
    return f"otp_request:{identifier}"


async def _attempts_exceeded(identifier: str) -> AttemptsExceededError:
    """Tell the applicant how long until a fresh code can be requested."""
    wait = await peek_rate_limit(
        _otp_request_key(identifier),
        settings.otp_rate_limit_max_requests,
        settings.otp_rate_limit_window_seconds,
    )
    return AttemptsExceededError(wait.retry_after_seconds)


async def request_otp(db: AsyncSession, identifier: str) -> str:
    """
    Issue a login code for an identifier.

    Delivery is best effort: a notifier failure is logged and the code
    remains valid, so the applicant can simply request again.

    Returns:
        The generic acknowledgement message

    Raises:
        InvalidIdentifierError: If the identifier is malformed
        RateLimitedError: If too many codes were requested in the window
    """
    normalized = parse_identifier(identifier)

    limit = await check_rate_limit(
        _otp_request_key(normalized),
        settings.otp_rate_limit_max_requests,
        settings.otp_rate_limit_window_seconds,
    )
    if not limit.allowed:
        logger.warning(f"OTP rate limit exceeded for {notifier.mask_identifier(normalized)}")
        raise RateLimitedError(limit.retry_after_seconds)

    applicant = await applicants_repository.get_by_identifier(db, normalized)
    if applicant is None:
        logger.info(f"OTP requested for unregistered {notifier.mask_identifier(normalized)}")
        return OTP_ACKNOWLEDGEMENT

    code = generate_numeric_code(settings.otp_length)
    issued_at = _now()

    await repository.upsert_otp_session(
        db,
        identifier=normalized,
        code_hash=hash_code(normalized, code),
        issued_at=issued_at,
        expires_at=issued_at + timedelta(minutes=settings.otp_ttl_minutes),
    )
    await db.commit()
    logger.info(f"Issued OTP for applicant {applicant.id}")

    subject, html_content = render_otp_email(code, settings.otp_ttl_minutes)
    delivered = await notifier.send(normalized, subject, html_content)
    if not delivered:
        logger.error(f"OTP delivery failed for applicant {applicant.id}")

    return OTP_ACKNOWLEDGEMENT


def _validate_code_format(code: str) -> str:
    code = code.strip()
    if len(code) != settings.otp_length or not code.isdigit():
        raise InputError(
            f"The code must be {settings.otp_length} digits.",
            "INVALID_CODE_FORMAT",
        )
    return code


async def verify_otp(db: AsyncSession, identifier: str, code: str) -> VerifiedSession:
    """
    Verify a login code and mint a session token.

    Raises:
        InvalidIdentifierError / InputError: Malformed input (no state change)
        NoActiveChallengeError: No challenge, or it was already used
        OtpExpiredError: The challenge is past its TTL
        AttemptsExceededError: Too many wrong codes; the challenge is destroyed
        OtpMismatchError: Wrong code; attempts remain
    """
    normalized = parse_identifier(identifier)
    code = _validate_code_format(code)
    now = _now()

    challenge = await repository.get_otp_session(db, normalized)

    if challenge is None or challenge.consumed_at is not None:
        raise NoActiveChallengeError()

    if challenge.expires_at <= now:
        raise OtpExpiredError()

    if challenge.attempts >= settings.otp_max_attempts:
        await repository.delete_otp_session(db, normalized)
        await db.commit()
        raise await _attempts_exceeded(normalized)

    if not codes_match(challenge.code_hash, normalized, code):
        attempts = await repository.increment_attempts(db, normalized, challenge.code_hash)
        if attempts is None:
            await db.rollback()
            raise NoActiveChallengeError()

        if attempts >= settings.otp_max_attempts:
            await repository.delete_otp_session(db, normalized)
            await db.commit()
            logger.warning(f"OTP attempts exceeded for {notifier.mask_identifier(normalized)}")
            raise await _attempts_exceeded(normalized)

        await db.commit()
        raise OtpMismatchError(settings.otp_max_attempts - attempts)

    consumed = await repository.consume_otp_session(db, normalized, challenge.code_hash, now)
    if not consumed:
        # Another request verified (or replaced) this challenge first
        await db.rollback()
        raise NoActiveChallengeError()

    applicant = await applicants_repository.get_by_identifier(db, normalized)
    if applicant is None:
        await db.rollback()
        raise NoActiveChallengeError()

    token = generate_opaque_token()
    expires_at = now + timedelta(hours=settings.session_ttl_hours)
    await repository.create_session(
        db,
        applicant_id=applicant.id,
        token_hash=hash_token(token),
        issued_at=now,
        expires_at=expires_at,
    )
    await db.commit()

    logger.info(f"Applicant {applicant.id} signed in")
    return VerifiedSession(token=token, expires_at=expires_at, applicant=applicant)


async def authorize(db: AsyncSession, token: str) -> Applicant:
    """
    Resolve a bearer token to its applicant.

    Raises:
        InvalidOrExpiredTokenError: Unknown, revoked, or expired token
    """
    if not token:
        raise InvalidOrExpiredTokenError()

    session = await repository.get_session_by_token_hash(db, hash_token(token))
    if session is None or session.revoked_at is not None or session.expires_at <= _now():
        raise InvalidOrExpiredTokenError()

    applicant = await applicants_repository.get_by_id(db, session.applicant_id)
    if applicant is None:
        raise InvalidOrExpiredTokenError()
    return applicant


async def logout(db: AsyncSession, token: str) -> bool:
    """Revoke one bearer token. Returns False if it was unknown or already revoked."""
    revoked = await repository.revoke_session(db, hash_token(token), _now())
    await db.commit()
    return revoked


async def cleanup_expired(db: AsyncSession) -> dict[str, int]:
    """Delete expired or used challenges and expired or revoked sessions."""
    now = _now()
    otp_removed = await repository.delete_stale_otp_sessions(db, now)
    sessions_removed = await repository.delete_stale_sessions(db, now)
    await db.commit()
    return {"otp_sessions_removed": otp_removed, "sessions_removed": sessions_removed}
