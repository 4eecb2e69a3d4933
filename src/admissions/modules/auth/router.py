"""
Staff authentication router.

Endpoints:
- POST /auth/staff/login - Email and password login for admins and jury
- POST /auth/staff/refresh - Exchange a refresh token for a new access token
"""

import logging
from datetime import UTC, datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from admissions.core.database import get_db
from admissions.core.rate_limit import rate_limit
from admissions.core.security import (
    create_access_token,
    create_refresh_token,
    decode_token,
    verify_password,
)
from admissions.modules.auth.schemas import (
    LoginRequest,
    LoginResponse,
    RefreshRequest,
    TokenResponse,
    UserResponse,
)
from admissions.modules.users.models import User
from admissions.modules.users.repository import UserRepository

logger = logging.getLogger(__name__)

router = APIRouter()

_INVALID_CREDENTIALS = {
    "error": "INVALID_CREDENTIALS",
    "message": "Invalid email or password.",
}


def _issue_tokens(user: User) -> tuple[str, str]:
    additional_claims = {
        "email": user.email,
        "role": user.role.value,
        "name": user.name,
    }
    access_token = create_access_token(
        subject=str(user.id),
        additional_claims=additional_claims,
    )
    refresh_token = create_refresh_token(subject=str(user.id))
    return access_token, refresh_token


@router.post("/login", response_model=LoginResponse)
@rate_limit(limit=10, window_seconds=300)
async def login(
    request: Request,
    credentials: LoginRequest,
    db: AsyncSession = Depends(get_db),
) -> LoginResponse:
    """
    Authenticate a staff member and return JWT tokens.

    Raises:
        HTTPException 401: Invalid credentials
        HTTPException 403: Account inactive
        HTTPException 429: Too many attempts from this client
    """
    user = await UserRepository.get_by_email(db, credentials.email)

    if not user:
        logger.warning("Staff login attempt for unknown email")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=_INVALID_CREDENTIALS)

    if not verify_password(credentials.password, user.password_hash):
        logger.warning(f"Invalid password for staff user {user.id}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=_INVALID_CREDENTIALS)

    if not user.is_active:
        logger.warning(f"Login attempt for inactive staff account {user.id}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "error": "ACCOUNT_INACTIVE",
                "message": "Your account has been deactivated.",
            },
        )

    access_token, refresh_token = _issue_tokens(user)

    user.last_login_at = datetime.now(UTC)
    await db.commit()

    logger.info(f"Staff user logged in: {user.id} (role: {user.role.value})")

    return LoginResponse(
        access_token=access_token,
        refresh_token=refresh_token,
        token_type="bearer",
        user=UserResponse.model_validate(user),
    )


@router.post("/refresh", response_model=TokenResponse)
async def refresh(
    data: RefreshRequest,
    db: AsyncSession = Depends(get_db),
) -> TokenResponse:
    """
    Exchange a refresh token for a fresh token pair.

    Raises:
        HTTPException 401: Invalid or expired refresh token, or account gone
    """
    payload = decode_token(data.refresh_token)
    if payload is None or payload.get("type") != "refresh":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "INVALID_TOKEN", "message": "Invalid or expired refresh token."},
        )

    try:
        user_id = UUID(payload.get("sub", ""))
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "INVALID_TOKEN_CLAIMS", "message": "Token contains invalid claims."},
        ) from e

    user = await UserRepository.get_by_id(db, user_id)
    if not user or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "INVALID_TOKEN", "message": "Invalid or expired refresh token."},
        )

    access_token, refresh_token = _issue_tokens(user)
    return TokenResponse(access_token=access_token, refresh_token=refresh_token)
