"""
Admin Routes

API endpoints for grant administration and the audit log.
All endpoints require admin authentication.
"""

import math
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from mediavault.api.access.audit import AuditLogger, ExportFormat
from mediavault.api.access.grants import AccessListEntry, GrantService
from mediavault.api.admin.schemas import (
    AccessListChangesResponse,
    AccessListReplaceRequest,
    AuditLogListResponse,
    AuditLogResponse,
    ProjectAccessGrantRequest,
    ProjectAccessResponse,
)
from mediavault.api.config import settings
from mediavault.api.db.models import utcnow
from mediavault.api.db.session import get_db
from mediavault.api.dependencies import get_admin_actor, grant_error_to_http
from mediavault.api.errors import GrantNotFoundError, GrantTargetNotFoundError
from mediavault.api.projects.schemas import MessageResponse
from mediavault.api.roles import Actor


router = APIRouter()


# ==================== Project Access ====================


@router.put(
    "/projects/access",
    response_model=AccessListChangesResponse,
    summary="Replace project access list",
)
async def replace_project_access(
    request: AccessListReplaceRequest,
    admin: Actor = Depends(get_admin_actor),
    db: AsyncSession = Depends(get_db),
) -> AccessListChangesResponse:
    """
    Make a project's internal grants match the submitted list.

    Users missing from the list lose access. The whole change is applied
    atomically with one audit record per changed grant.
    """
    entries = [AccessListEntry(e.user_id, e.access_level) for e in request.entries]
    try:
        changes = await GrantService(db).replace_project_access_list(
            request.project_id, entries, admin
        )
    except GrantTargetNotFoundError as e:
        raise grant_error_to_http(e)

    return AccessListChangesResponse(
        added=[ProjectAccessResponse.model_validate(g) for g in changes.added],
        updated=[ProjectAccessResponse.model_validate(g) for g in changes.updated],
        removed=[g.user_id for g in changes.removed],
    )


@router.post(
    "/projects/access",
    response_model=ProjectAccessResponse,
    summary="Grant project access",
)
async def grant_project_access(
    request: ProjectAccessGrantRequest,
    admin: Actor = Depends(get_admin_actor),
    db: AsyncSession = Depends(get_db),
) -> ProjectAccessResponse:
    try:
        grant = await GrantService(db).grant_project_access(
            request.project_id, request.user_id, request.access_level, admin
        )
    except GrantTargetNotFoundError as e:
        raise grant_error_to_http(e)

    return ProjectAccessResponse.model_validate(grant)


@router.delete(
    "/projects/access",
    response_model=MessageResponse,
    summary="Revoke project access",
)
async def revoke_project_access(
    project_id: str = Query(..., min_length=1),
    user_id: str = Query(..., min_length=1),
    admin: Actor = Depends(get_admin_actor),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    try:
        await GrantService(db).revoke_project_access(project_id, user_id, admin)
    except GrantNotFoundError as e:
        raise grant_error_to_http(e)

    return MessageResponse(message="Access revoked")


# ==================== Audit Log ====================


@router.get(
    "/audit",
    response_model=AuditLogListResponse,
    summary="Query audit log",
)
async def list_audit_logs(
    action: Optional[str] = Query(None),
    user_id: Optional[str] = Query(None),
    entity_type: Optional[str] = Query(None),
    entity_id: Optional[str] = Query(None),
    start_time: Optional[datetime] = Query(None),
    end_time: Optional[datetime] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(settings.AUDIT_PAGE_SIZE, ge=1, le=settings.AUDIT_MAX_PAGE_SIZE),
    admin: Actor = Depends(get_admin_actor),
    db: AsyncSession = Depends(get_db),
) -> AuditLogListResponse:
    """Query audit records, newest first."""
    entries, total = await AuditLogger(db).query(
        action=action,
        user_id=user_id,
        entity_type=entity_type,
        entity_id=entity_id,
        start_time=start_time,
        end_time=end_time,
        limit=page_size,
        offset=(page - 1) * page_size,
    )

    return AuditLogListResponse(
        entries=[AuditLogResponse.model_validate(e) for e in entries],
        total=total,
        page=page,
        page_size=page_size,
        pages=math.ceil(total / page_size) if total > 0 else 0,
    )


@router.get(
    "/audit/export",
    summary="Export audit log",
)
async def export_audit_logs(
    start_time: Optional[datetime] = Query(None),
    end_time: Optional[datetime] = Query(None),
    action: Optional[str] = Query(None),
    user_id: Optional[str] = Query(None),
    entity_type: Optional[str] = Query(None),
    export_format: ExportFormat = Query(ExportFormat.JSON, alias="format"),
    admin: Actor = Depends(get_admin_actor),
    db: AsyncSession = Depends(get_db),
) -> Response:
    """Export every matching audit record as JSON with an integrity hash, or as CSV."""
    audit = AuditLogger(db)
    filters = dict(
        start_time=start_time,
        end_time=end_time,
        action=action,
        user_id=user_id,
        entity_type=entity_type,
    )

    if export_format is ExportFormat.CSV:
        filename = f"audit-logs-{utcnow().date().isoformat()}.csv"
        return Response(
            content=await audit.export_csv(**filters),
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    return Response(content=await audit.export(**filters), media_type="application/json")
