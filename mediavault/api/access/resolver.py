"""
MEDIAVAULT - Access Resolver

Computes a single access decision for one (entity, actor) pair.
This is the authoritative source for project and album access.

Precedence (first match wins):
    1. Administrator role          -> FULL
    2. Entity missing              -> EntityNotFound
    3. Actor owns the entity       -> FULL
    4. Direct internal grant       -> highest level of 4 and 5
    5. Direct client grant
    6. Album in a project          -> parent project decision (highest with 5)
    7. Otherwise                   -> AccessDenied
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Dict, Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mediavault.api.db.models import (
    Album,
    ClientAlbumAccess,
    ClientProjectAccess,
    Project,
    ProjectAccess,
)
from mediavault.api.roles import (
    ADMIN_ACCESS_LEVEL,
    OWNER_ACCESS_LEVEL,
    AccessLevel,
    Actor,
)


logger = logging.getLogger(__name__)

DENIED_REASON = "Access denied"


class EntityKind(str, Enum):
    """Entities protected by the resolver."""

    PROJECT = "Project"
    ALBUM = "Album"


# ============================================================
# Decisions
# ============================================================


class _Decision:
    """Common surface of the decision variants."""

    has_access: ClassVar[bool]

    def allows(self, required: Union[AccessLevel, str] = AccessLevel.READ) -> bool:
        """Check if the decision permits an operation at the required level."""
        return False

    def to_dict(self) -> Dict[str, Any]:
        level = self.access_level
        return {
            "has_access": self.has_access,
            "access_level": level.value if level is not None else None,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class AccessGranted(_Decision):
    """The actor may access the entity at access_level."""

    access_level: AccessLevel
    has_access: ClassVar[bool] = True
    reason: ClassVar[Optional[str]] = None

    def allows(self, required: Union[AccessLevel, str] = AccessLevel.READ) -> bool:
        return self.access_level.includes(required)


@dataclass(frozen=True)
class AccessDenied(_Decision):
    """The entity exists but the actor holds no qualifying grant."""

    reason: str = DENIED_REASON
    has_access: ClassVar[bool] = False
    access_level: ClassVar[Optional[AccessLevel]] = None


@dataclass(frozen=True)
class EntityNotFound(_Decision):
    """The entity does not exist."""

    entity: EntityKind
    has_access: ClassVar[bool] = False
    access_level: ClassVar[Optional[AccessLevel]] = None

    @property
    def reason(self) -> str:
        return f"{self.entity.value} not found"


AccessResult = Union[AccessGranted, AccessDenied, EntityNotFound]


def _decide(level: Optional[AccessLevel]) -> AccessResult:
    if level is None:
        return AccessDenied()
    return AccessGranted(level)


# ============================================================
# Grant Store Lookups
# ============================================================


async def _highest_grant(
    db: AsyncSession,
    grant_model,
    entity_column,
    entity_id: str,
    user_id: str,
) -> Optional[AccessLevel]:
    """Highest access level held by user_id in one grant table."""
    result = await db.execute(
        select(grant_model.access_level).where(
            entity_column == entity_id,
            grant_model.user_id == user_id,
        )
    )
    return AccessLevel.highest(*result.scalars().all())


async def _project_grant_level(
    db: AsyncSession,
    project_id: str,
    owner_id: str,
    actor: Actor,
) -> Optional[AccessLevel]:
    if owner_id == actor.id:
        return OWNER_ACCESS_LEVEL

    # Both tables are consulted; the higher level wins regardless of query order
    internal = await _highest_grant(
        db, ProjectAccess, ProjectAccess.project_id, project_id, actor.id
    )
    client = await _highest_grant(
        db, ClientProjectAccess, ClientProjectAccess.project_id, project_id, actor.id
    )
    return AccessLevel.highest(internal, client)


# ============================================================
# Resolution
# ============================================================


async def check_project_access(
    db: AsyncSession,
    project_id: str,
    actor: Actor,
) -> AccessResult:
    """Resolve the actor's access to a project."""
    if actor.is_admin:
        return AccessGranted(ADMIN_ACCESS_LEVEL)

    owner_id = await db.scalar(
        select(Project.owner_id).where(Project.id == project_id)
    )
    if owner_id is None:
        return EntityNotFound(EntityKind.PROJECT)

    decision = _decide(await _project_grant_level(db, project_id, owner_id, actor))
    if not decision.has_access:
        logger.debug("Project %s denied for actor %s", project_id, actor.id)
    return decision


async def check_album_access(
    db: AsyncSession,
    album_id: str,
    actor: Actor,
) -> AccessResult:
    """
    Resolve the actor's access to an album.

    An album inside a project inherits the actor's project access level.
    When the actor also holds a direct album grant, the higher of the
    direct and inherited levels is returned.
    """
    if actor.is_admin:
        return AccessGranted(ADMIN_ACCESS_LEVEL)

    result = await db.execute(
        select(Album.owner_id, Album.project_id).where(Album.id == album_id)
    )
    album = result.first()
    if album is None:
        return EntityNotFound(EntityKind.ALBUM)

    if album.owner_id == actor.id:
        return AccessGranted(OWNER_ACCESS_LEVEL)

    direct = await _highest_grant(
        db, ClientAlbumAccess, ClientAlbumAccess.album_id, album_id, actor.id
    )

    inherited = None
    if album.project_id is not None and direct is not AccessLevel.FULL:
        parent = await check_project_access(db, album.project_id, actor)
        inherited = parent.access_level

    decision = _decide(AccessLevel.highest(direct, inherited))
    if not decision.has_access:
        logger.debug("Album %s denied for actor %s", album_id, actor.id)
    return decision


async def resolve_access(
    db: AsyncSession,
    kind: EntityKind,
    entity_id: str,
    actor: Actor,
) -> AccessResult:
    """Resolve access to any protected entity kind."""
    kind = EntityKind(kind)
    if kind is EntityKind.PROJECT:
        return await check_project_access(db, entity_id, actor)
    if kind is EntityKind.ALBUM:
        return await check_album_access(db, entity_id, actor)
    raise ValueError(f"Unsupported entity kind: {kind}")
