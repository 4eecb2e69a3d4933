"""
Security Utilities

Password hashing for staff accounts, JWT creation/validation, and the
hashing helpers used for one-time codes and opaque bearer tokens.
"""

import hashlib
import hmac
import logging
import secrets
from datetime import UTC, datetime, timedelta
from typing import Any

from jose import JWTError, jwt
from passlib.context import CryptContext

from admissions.core.config import settings

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    """Hash a staff password with bcrypt."""
    return pwd_context.hash(password)


def verify_password(plain_password: str, password_hash: str) -> bool:
    """Check a plain password against its bcrypt hash."""
    try:
        return pwd_context.verify(plain_password, password_hash)
    except ValueError:
        # Malformed hash stored for the user
        return False


def _create_token(
    subject: str,
    token_type: str,
    expires_delta: timedelta,
    additional_claims: dict[str, Any] | None = None,
) -> str:
    now = datetime.now(UTC)
    to_encode: dict[str, Any] = {
        "sub": subject,
        "type": token_type,
        "iat": now,
        "exp": now + expires_delta,
    }
    if additional_claims:
        to_encode.update(additional_claims)
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.jwt_algorithm)


def create_access_token(subject: str, additional_claims: dict[str, Any] | None = None) -> str:
    """Create a short-lived staff access token."""
    return _create_token(
        subject,
        "access",
        timedelta(minutes=settings.access_token_expire_minutes),
        additional_claims,
    )


def create_refresh_token(subject: str) -> str:
    """Create a staff refresh token."""
    return _create_token(
        subject,
        "refresh",
        timedelta(days=settings.refresh_token_expire_days),
    )


def decode_token(token: str) -> dict[str, Any] | None:
    """
    Decode and verify a JWT.

    Returns:
        The claims dict, or None if the signature, algorithm or expiry is invalid
    """
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError as e:
        logger.debug(f"JWT decode failed: {e}")
        return None


def generate_numeric_code(length: int) -> str:
    """Generate a zero-padded numeric code using the OS CSPRNG."""
    return str(secrets.randbelow(10**length)).zfill(length)


def generate_opaque_token(nbytes: int = 32) -> str:
    """Generate a URL-safe bearer token."""
    return secrets.token_urlsafe(nbytes)


def hash_token(token: str) -> str:
    """SHA-256 hex digest of a high-entropy token."""
    return hashlib.sha256(token.encode()).hexdigest()


def hash_code(scope: str, code: str) -> str:
    """
    Keyed hash of a low-entropy code.

    Short numeric codes are brute-forceable offline with a plain hash, so
    they are bound to a scope (identifier or applicant) and keyed with the
    application secret.
    """
    message = f"{scope}:{code}".encode()
    return hmac.new(settings.secret_key.encode(), message, hashlib.sha256).hexdigest()


def codes_match(expected_hash: str, scope: str, code: str) -> bool:
    """Constant-time comparison of a submitted code against a stored hash."""
    return hmac.compare_digest(expected_hash, hash_code(scope, code))
