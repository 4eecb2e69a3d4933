"""
Staff Authentication

FastAPI dependencies that validate staff (admin / jury) JWT access tokens
and enforce role-based access. Applicant sessions use opaque tokens and are
handled by the sessions module.

SECURITY NOTE:
- Development test tokens are ONLY accepted when PYTHON_ENV=development
- Production environments MUST set PYTHON_ENV=production
"""

import logging
import os
from dataclasses import dataclass
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from admissions.core.config import settings
from admissions.core.security import decode_token

logger = logging.getLogger(__name__)

security = HTTPBearer(
    auto_error=True,
    description="JWT Bearer token for staff authentication",
)

STAFF_ROLES = {"admin", "jury"}


@dataclass
class StaffUser:
    """
    An authenticated staff member, populated from JWT claims.

    Attributes:
        id: User's unique identifier
        email: User's email address
        role: "admin" or "jury"
        name: Display name (optional)
    """

    id: UUID
    email: str
    role: str
    name: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def __str__(self) -> str:
        return f"StaffUser(id={self.id}, email={self.email}, role={self.role})"


def _is_dev_mode_safe() -> bool:
    """
    Development token bypass is enabled only when settings say development
    AND the raw PYTHON_ENV variable is not production or staging.
    """
    env_var = os.getenv("PYTHON_ENV", "").lower()

    is_safe = (
        settings.is_development
        and not settings.is_production
        and env_var not in ("production", "staging")
    )

    if is_safe:
        logger.warning(
            "SECURITY: Development auth mode is ENABLED. This MUST NOT be used in production!"
        )

    return is_safe


_DEVELOPMENT_MODE = _is_dev_mode_safe()

_DEV_ADMIN = StaffUser(
    id=UUID("00000000-0000-0000-0000-000000000001"),
    email="admin@admissions.dev",
    role="admin",
    name="Development Admin",
)


def _unauthorized(error: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"error": error, "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


async def _validate_jwt_token(token: str) -> StaffUser:
    """
    Validate a staff JWT and extract its claims.

    Raises:
        HTTPException 401: If the token is invalid, expired, or not an access token
    """
    if _DEVELOPMENT_MODE and token in ("dev-token", "test-token"):
        logger.debug("Development mode: Using test token")
        return _DEV_ADMIN

    payload = decode_token(token)

    if payload is None:
        logger.warning("Invalid or expired JWT token")
        raise _unauthorized("INVALID_TOKEN", "Invalid or expired authentication token.")

    if payload.get("type", "access") != "access":
        logger.warning(f"Invalid token type: {payload.get('type')}")
        raise _unauthorized("INVALID_TOKEN_TYPE", "This endpoint requires an access token.")

    try:
        user_id_str = payload.get("sub")
        if not user_id_str:
            raise ValueError("Missing 'sub' claim in token")

        return StaffUser(
            id=UUID(user_id_str),
            email=payload.get("email", ""),
            role=payload.get("role", ""),
            name=payload.get("name"),
        )
    except ValueError as e:
        logger.warning(f"Invalid token claims: {e}")
        raise _unauthorized(
            "INVALID_TOKEN_CLAIMS", "Token contains invalid or missing claims."
        ) from e


async def get_current_staff_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> StaffUser:
    """
    Dependency for endpoints open to any staff member (admin or jury).

    Raises:
        HTTPException 401: If the token is missing, invalid, or expired
        HTTPException 403: If the user is not staff
    """
    user = await _validate_jwt_token(credentials.credentials)

    if user.role not in STAFF_ROLES:
        logger.warning(f"Access denied: User {user.id} has role '{user.role}'")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "error": "STAFF_ACCESS_REQUIRED",
                "message": "Staff access is required for this endpoint.",
            },
        )

    return user


async def get_current_admin_user(
    user: StaffUser = Depends(get_current_staff_user),
) -> StaffUser:
    """Dependency for admin-only endpoints."""
    if not user.is_admin:
        logger.warning(f"Access denied: User {user.id} ({user.email}) is not an admin")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "error": "ADMIN_ACCESS_REQUIRED",
                "message": "Admin access is required for this endpoint.",
            },
        )
    return user


__all__ = [
    "StaffUser",
    "get_current_admin_user",
    "get_current_staff_user",
]
