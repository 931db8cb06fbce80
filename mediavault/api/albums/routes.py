"""
Album Routes

API endpoints for album access decisions and client grants.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from mediavault.api.access.grants import GrantService
from mediavault.api.access.resolver import EntityNotFound, check_album_access
from mediavault.api.db.session import get_db
from mediavault.api.dependencies import (
    get_current_actor,
    grant_error_to_http,
    require_album_access,
)
from mediavault.api.errors import GrantNotFoundError, GrantTargetNotFoundError
from mediavault.api.projects.schemas import (
    AccessDecisionResponse,
    ClientGrantRequest,
    ClientGrantResponse,
    ClientListResponse,
    ClientResponse,
    MessageResponse,
)
from mediavault.api.roles import AccessLevel, Actor


router = APIRouter()


@router.get(
    "/{album_id}/access",
    response_model=AccessDecisionResponse,
    summary="Get caller's album access",
)
async def get_album_access(
    album_id: str,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> AccessDecisionResponse:
    """Direct album grants and inherited project access are both considered."""
    decision = await check_album_access(db, album_id, actor)
    if isinstance(decision, EntityNotFound):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=decision.reason)
    return AccessDecisionResponse(**decision.to_dict())


# ==================== Client Grants ====================


@router.get(
    "/{album_id}/clients",
    response_model=ClientListResponse,
    summary="List album clients",
)
async def list_album_clients(
    album_id: str,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> ClientListResponse:
    await require_album_access(db, album_id, actor, AccessLevel.FULL)

    rows = await GrantService(db).list_album_clients(album_id)
    return ClientListResponse(
        clients=[ClientResponse.from_grant(grant, user) for grant, user in rows]
    )


@router.post(
    "/{album_id}/clients",
    response_model=ClientGrantResponse,
    summary="Grant client access to an album",
)
async def grant_album_client(
    album_id: str,
    request: ClientGrantRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> ClientGrantResponse:
    await require_album_access(db, album_id, actor, AccessLevel.FULL)

    try:
        grant = await GrantService(db).grant_client_album_access(
            album_id, request.user_id, request.access_level, actor
        )
    except GrantTargetNotFoundError as e:
        raise grant_error_to_http(e)

    return ClientGrantResponse.model_validate(grant)


@router.delete(
    "/{album_id}/clients/{user_id}",
    response_model=MessageResponse,
    summary="Revoke client access to an album",
)
async def revoke_album_client(
    album_id: str,
    user_id: str,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await require_album_access(db, album_id, actor, AccessLevel.FULL)

    try:
        await GrantService(db).revoke_client_album_access(album_id, user_id, actor)
    except GrantNotFoundError as e:
        raise grant_error_to_http(e)

    return MessageResponse(message="Client access revoked")
