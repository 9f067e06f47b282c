"""FastAPI authentication dependencies for route protection."""

import logging
import secrets

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskmaster.auth.jwt import TokenTypeError, access_token_subject
from taskmaster.config import settings
from taskmaster.database import get_db
from taskmaster.models.profile import ROLE_ADMIN, Profile

logger = logging.getLogger(__name__)

# Strict bearer: raises automatically if no token provided
_bearer_scheme = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(_bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> Profile:
    """Extract and validate the Bearer token, then return the caller's profile.

    Raises:
        HTTPException 401: If the token is invalid, expired, wrong type, or the profile is unknown.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        profile_id = access_token_subject(credentials.credentials)
    except TokenTypeError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token type",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None
    except JWTError:
        raise credentials_exception from None

    result = await db.execute(select(Profile).where(Profile.id == profile_id))
    profile = result.scalar_one_or_none()
    if profile is None:
        raise credentials_exception

    if not profile.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is inactive",
        )

    return profile


async def get_current_admin(profile: Profile = Depends(get_current_user)) -> Profile:
    """Return the caller only if they are a platform admin.

    Raises:
        HTTPException 403: If the profile's role is not ``admin``.
    """
    if profile.role != ROLE_ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return profile


def _matches(presented: str | None, expected: str) -> bool:
    # An unset secret never matches, not even an empty header
    if not expected or not presented:
        return False
    return secrets.compare_digest(presented.encode(), expected.encode())


async def verify_job_caller(
    x_cron_secret: str | None = Header(default=None),
    authorization: str | None = Header(default=None),
) -> None:
    """Allow the scheduler (``x-cron-secret``) or a service-role bearer token.

    Raises:
        HTTPException 401: If neither credential matches. No job work happens.
    """
    if _matches(x_cron_secret, settings.cron_secret):
        return

    bearer = None
    if authorization and authorization.lower().startswith("bearer "):
        bearer = authorization[len("bearer "):].strip()
    if _matches(bearer, settings.service_role_key):
        return

    logger.warning("Rejected unauthorized job trigger")
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unauthorized",
    )
