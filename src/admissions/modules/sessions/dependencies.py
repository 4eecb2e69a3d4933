"""
Applicant authentication dependencies.
"""

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from admissions.core.database import get_db
from admissions.core.errors import handle_service_error
from admissions.modules.applicants.models import Applicant
from admissions.modules.sessions import service
from admissions.modules.sessions.service import InvalidOrExpiredTokenError

applicant_bearer = HTTPBearer(
    auto_error=False,
    description="Applicant session token from /auth/otp/verify",
)


def get_bearer_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(applicant_bearer),
) -> str:
    if credentials is None or not credentials.credentials:
        raise handle_service_error(InvalidOrExpiredTokenError())
    return credentials.credentials


async def get_current_applicant(
    token: str = Depends(get_bearer_token),
    db: AsyncSession = Depends(get_db),
) -> Applicant:
    """Resolve the Authorization header to the signed-in applicant."""
    try:
        return await service.authorize(db, token)
    except InvalidOrExpiredTokenError as e:
        raise handle_service_error(e) from e


__all__ = ["get_bearer_token", "get_current_applicant"]
