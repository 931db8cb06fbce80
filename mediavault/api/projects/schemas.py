"""
Project Schemas

Pydantic models for project listing, access decisions and client grants.
Album routes share the decision and client grant models.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from mediavault.api.roles import AccessLevel


class MessageResponse(BaseModel):
    """Simple message response."""

    message: str
    success: bool = True


# ==================== Projects ====================


class ProjectResponse(BaseModel):
    """Project summary."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: Optional[str] = None
    owner_id: str
    created_at: datetime
    updated_at: datetime


class ProjectListResponse(BaseModel):
    """Projects visible to the caller."""

    projects: List[ProjectResponse]
    total: int


# ==================== Access Decisions ====================


class AccessDecisionResponse(BaseModel):
    """The caller's access to one entity."""

    has_access: bool
    access_level: Optional[AccessLevel] = None
    reason: Optional[str] = None


# ==================== Client Grants ====================


class ClientGrantRequest(BaseModel):
    """Grant or change a client's access."""

    user_id: str = Field(..., min_length=1)
    access_level: AccessLevel = AccessLevel.READ


class ClientGrantResponse(BaseModel):
    """A stored client grant."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    project_id: Optional[str] = None
    album_id: Optional[str] = None
    access_level: AccessLevel
    granted_by_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class ClientResponse(BaseModel):
    """A client holding a grant, with their identity."""

    id: str
    user_id: str
    user_name: Optional[str] = None
    user_email: str
    access_level: AccessLevel
    granted_at: datetime

    @classmethod
    def from_grant(cls, grant, user) -> "ClientResponse":
        return cls(
            id=grant.id,
            user_id=user.id,
            user_name=user.name,
            user_email=user.email,
            access_level=grant.access_level,
            granted_at=grant.created_at,
        )


class ClientListResponse(BaseModel):
    """Clients of a project or album."""

    clients: List[ClientResponse]
