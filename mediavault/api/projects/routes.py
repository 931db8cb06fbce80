"""
Project Routes

API endpoints for project visibility, access decisions and client grants.
Client management requires FULL access on the project.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from mediavault.api.access.aggregator import accessible_projects_query
from mediavault.api.access.grants import GrantService
from mediavault.api.access.resolver import EntityNotFound, check_project_access
from mediavault.api.db.session import get_db
from mediavault.api.dependencies import (
    get_current_actor,
    grant_error_to_http,
    require_project_access,
)
from mediavault.api.errors import GrantNotFoundError, GrantTargetNotFoundError
from mediavault.api.projects.schemas import (
    AccessDecisionResponse,
    ClientGrantRequest,
    ClientGrantResponse,
    ClientListResponse,
    ClientResponse,
    MessageResponse,
    ProjectListResponse,
    ProjectResponse,
)
from mediavault.api.roles import AccessLevel, Actor


router = APIRouter()


# ==================== Projects ====================


@router.get(
    "",
    response_model=ProjectListResponse,
    summary="List accessible projects",
)
async def list_projects(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> ProjectListResponse:
    """List every project the caller owns or holds a grant on."""
    stmt = await accessible_projects_query(db, actor)
    result = await db.execute(stmt)
    projects = [ProjectResponse.model_validate(p) for p in result.scalars().all()]
    return ProjectListResponse(projects=projects, total=len(projects))


@router.get(
    "/{project_id}/access",
    response_model=AccessDecisionResponse,
    summary="Get caller's project access",
)
async def get_project_access(
    project_id: str,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> AccessDecisionResponse:
    decision = await check_project_access(db, project_id, actor)
    if isinstance(decision, EntityNotFound):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=decision.reason)
    return AccessDecisionResponse(**decision.to_dict())


# ==================== Client Grants ====================


@router.get(
    "/{project_id}/clients",
    response_model=ClientListResponse,
    summary="List project clients",
)
async def list_project_clients(
    project_id: str,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> ClientListResponse:
    await require_project_access(db, project_id, actor, AccessLevel.FULL)

    rows = await GrantService(db).list_project_clients(project_id)
    return ClientListResponse(
        clients=[ClientResponse.from_grant(grant, user) for grant, user in rows]
    )


@router.post(
    "/{project_id}/clients",
    response_model=ClientGrantResponse,
    summary="Grant client access to a project",
)
async def grant_project_client(
    project_id: str,
    request: ClientGrantRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> ClientGrantResponse:
    """
    Grant a client access to the project, or change their level.

    Re-granting the current level is a no-op and is not audited.
    """
    await require_project_access(db, project_id, actor, AccessLevel.FULL)

    try:
        grant = await GrantService(db).grant_client_project_access(
            project_id, request.user_id, request.access_level, actor
        )
    except GrantTargetNotFoundError as e:
        raise grant_error_to_http(e)

    return ClientGrantResponse.model_validate(grant)


@router.delete(
    "/{project_id}/clients/{user_id}",
    response_model=MessageResponse,
    summary="Revoke client access to a project",
)
async def revoke_project_client(
    project_id: str,
    user_id: str,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await require_project_access(db, project_id, actor, AccessLevel.FULL)

    try:
        await GrantService(db).revoke_client_project_access(project_id, user_id, actor)
    except GrantNotFoundError as e:
        raise grant_error_to_http(e)

    return MessageResponse(message="Client access revoked")
