"""
FastAPI Dependencies

Common dependencies for dependency injection.
"""

from typing import Union

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from mediavault.api.access.resolver import (
    AccessGranted,
    AccessResult,
    EntityNotFound,
    check_album_access,
    check_project_access,
)
from mediavault.api.auth.jwt import verify_token
from mediavault.api.db.models import User
from mediavault.api.db.session import get_db
from mediavault.api.errors import GrantNotFoundError, GrantTargetNotFoundError
from mediavault.api.roles import AccessLevel, Actor


security = HTTPBearer()

INSUFFICIENT_LEVEL_DETAIL = "Insufficient access level"


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Get the current authenticated user from JWT token.

    Raises:
        HTTPException: If token is invalid or user not found
    """
    payload = verify_token(credentials.credentials, "access")

    if not payload or not payload.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = await db.get(User, payload["sub"])
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )

    return user


async def get_current_actor(user: User = Depends(get_current_user)) -> Actor:
    """The acting identity. The role comes from the database, not the token."""
    return Actor(id=user.id, role=user.role)


async def get_admin_actor(actor: Actor = Depends(get_current_actor)) -> Actor:
    """
    Require admin user.

    Raises:
        HTTPException: If user is not an admin
    """
    if not actor.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return actor


def require_access(
    decision: AccessResult,
    required: Union[AccessLevel, str] = AccessLevel.READ,
) -> AccessGranted:
    """
    Turn an access decision into a granted decision or an HTTP error.

    Not found maps to 404 and denied to 403, each carrying the
    decision's reason.
    """
    if isinstance(decision, EntityNotFound):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=decision.reason)

    if not isinstance(decision, AccessGranted):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=decision.reason)

    if not decision.allows(required):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=INSUFFICIENT_LEVEL_DETAIL,
        )
    return decision


async def require_project_access(
    db: AsyncSession,
    project_id: str,
    actor: Actor,
    required: Union[AccessLevel, str] = AccessLevel.READ,
) -> AccessGranted:
    return require_access(await check_project_access(db, project_id, actor), required)


async def require_album_access(
    db: AsyncSession,
    album_id: str,
    actor: Actor,
    required: Union[AccessLevel, str] = AccessLevel.READ,
) -> AccessGranted:
    return require_access(await check_album_access(db, album_id, actor), required)


def grant_error_to_http(exc: Union[GrantNotFoundError, GrantTargetNotFoundError]) -> HTTPException:
    """Map a grant mutation error to a 404."""
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message)
