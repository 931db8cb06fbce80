"""
Admin Schemas

Pydantic models for grant administration and the audit log.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from mediavault.api.roles import AccessLevel


# ==================== Project Access ====================


class AccessEntryRequest(BaseModel):
    """One user's desired project grant."""

    user_id: str = Field(..., min_length=1)
    access_level: AccessLevel = AccessLevel.READ


class AccessListReplaceRequest(BaseModel):
    """Replace a project's internal access list."""

    project_id: str = Field(..., min_length=1)
    entries: List[AccessEntryRequest] = []


class ProjectAccessGrantRequest(BaseModel):
    """Grant or change one internal project grant."""

    project_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    access_level: AccessLevel = AccessLevel.READ


class ProjectAccessResponse(BaseModel):
    """A stored internal project grant."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    project_id: str
    user_id: str
    access_level: AccessLevel
    created_at: datetime
    updated_at: datetime


class AccessListChangesResponse(BaseModel):
    """Grants touched by an access list replace."""

    added: List[ProjectAccessResponse] = []
    updated: List[ProjectAccessResponse] = []
    removed: List[str] = []  # user ids


# ==================== Audit Log ====================


class AuditLogResponse(BaseModel):
    """Audit record for admin view."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    action: str
    entity_type: str
    entity_id: Optional[str] = None
    user_id: Optional[str] = None
    user_email: Optional[str] = None
    user_name: Optional[str] = None
    user_role: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = Field(
        None, validation_alias=AliasChoices("event_metadata", "metadata")
    )
    old_value: Optional[Dict[str, Any]] = None
    new_value: Optional[Dict[str, Any]] = None
    description: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime


class AuditLogListResponse(BaseModel):
    """Paginated audit records."""

    entries: List[AuditLogResponse]
    total: int
    page: int
    page_size: int
    pages: int
