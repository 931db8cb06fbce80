"""
Grant Service

Business transactions that mutate the grant tables. Every changed grant
row produces exactly one audit record, written in the same transaction
as the change: rolling back the change rolls back its audit rows.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple, Type, Union

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from mediavault.api.access.audit import AuditLogger, EntityType, access_change_event
from mediavault.api.db.models import (
    Album,
    ClientAlbumAccess,
    ClientProjectAccess,
    Project,
    ProjectAccess,
    User,
)
from mediavault.api.errors import GrantNotFoundError, GrantTargetNotFoundError
from mediavault.api.roles import AccessLevel, Actor


logger = logging.getLogger(__name__)

GrantRow = Union[ProjectAccess, ClientProjectAccess, ClientAlbumAccess]


@dataclass(frozen=True)
class AccessListEntry:
    """Desired grant for one user in a project access list."""

    user_id: str
    access_level: AccessLevel


@dataclass
class AccessListChanges:
    """Rows touched by an access list replace."""

    added: List[ProjectAccess] = field(default_factory=list)
    updated: List[ProjectAccess] = field(default_factory=list)
    removed: List[ProjectAccess] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.added) + len(self.updated) + len(self.removed)


@dataclass(frozen=True)
class _GrantTable:
    model: Type[GrantRow]
    entity_field: str
    entity_type: EntityType
    client: bool

    @property
    def entity_column(self):
        return getattr(self.model, self.entity_field)


_PROJECT_GRANTS = _GrantTable(ProjectAccess, "project_id", EntityType.PROJECT, client=False)
_CLIENT_PROJECT_GRANTS = _GrantTable(
    ClientProjectAccess, "project_id", EntityType.PROJECT, client=True
)
_CLIENT_ALBUM_GRANTS = _GrantTable(ClientAlbumAccess, "album_id", EntityType.ALBUM, client=True)


class GrantService:
    """Service for grant mutations."""

    def __init__(self, db: AsyncSession, audit_logger: Optional[AuditLogger] = None):
        """Initialize service with database session."""
        self.db = db
        self.audit = audit_logger or AuditLogger(db)

    # ==================== Internal Project Grants ====================

    async def grant_project_access(
        self,
        project_id: str,
        user_id: str,
        access_level: Union[AccessLevel, str],
        actor: Actor,
    ) -> ProjectAccess:
        """Grant or change a user's project access level."""
        await self._require_target(Project, EntityType.PROJECT, project_id)
        return await self._upsert(_PROJECT_GRANTS, project_id, user_id, access_level, actor)

    async def revoke_project_access(self, project_id: str, user_id: str, actor: Actor) -> None:
        """Remove a user's project grant."""
        await self._revoke(_PROJECT_GRANTS, project_id, user_id, actor)

    async def replace_project_access_list(
        self,
        project_id: str,
        entries: Iterable[AccessListEntry],
        actor: Actor,
    ) -> AccessListChanges:
        """
        Make the project's internal grants match entries exactly.

        Removals are applied first, then additions, then updates, all in
        one savepoint. A failure at any step undoes every grant write and
        audit row of the call and propagates to the caller.
        """
        await self._require_target(Project, EntityType.PROJECT, project_id)

        desired = {}
        for entry in entries:
            desired[entry.user_id] = AccessLevel(entry.access_level)
        await self._require_users(desired)

        changes = AccessListChanges()
        async with self.db.begin_nested():
            result = await self.db.execute(
                select(ProjectAccess).where(ProjectAccess.project_id == project_id)
            )
            current = {grant.user_id: grant for grant in result.scalars().all()}

            for user_id, grant in current.items():
                if user_id not in desired:
                    await self._apply_removal(_PROJECT_GRANTS, grant, actor)
                    changes.removed.append(grant)

            for user_id, level in desired.items():
                if user_id not in current:
                    grant = await self._apply_addition(
                        _PROJECT_GRANTS, project_id, user_id, level, actor
                    )
                    changes.added.append(grant)

            for user_id, level in desired.items():
                grant = current.get(user_id)
                if grant is not None and grant.access_level != level:
                    await self._apply_update(_PROJECT_GRANTS, grant, level, actor)
                    changes.updated.append(grant)

        logger.info(
            "Replaced access list for project %s: %d added, %d updated, %d removed",
            project_id,
            len(changes.added),
            len(changes.updated),
            len(changes.removed),
        )
        return changes

    # ==================== Client Grants ====================

    async def grant_client_project_access(
        self,
        project_id: str,
        user_id: str,
        access_level: Union[AccessLevel, str],
        actor: Actor,
    ) -> ClientProjectAccess:
        """Grant or change a client's project access level."""
        await self._require_target(Project, EntityType.PROJECT, project_id)
        return await self._upsert(
            _CLIENT_PROJECT_GRANTS, project_id, user_id, access_level, actor
        )

    async def revoke_client_project_access(
        self, project_id: str, user_id: str, actor: Actor
    ) -> None:
        await self._revoke(_CLIENT_PROJECT_GRANTS, project_id, user_id, actor)

    async def grant_client_album_access(
        self,
        album_id: str,
        user_id: str,
        access_level: Union[AccessLevel, str],
        actor: Actor,
    ) -> ClientAlbumAccess:
        """Grant or change a client's album access level."""
        await self._require_target(Album, EntityType.ALBUM, album_id)
        return await self._upsert(_CLIENT_ALBUM_GRANTS, album_id, user_id, access_level, actor)

    async def revoke_client_album_access(self, album_id: str, user_id: str, actor: Actor) -> None:
        await self._revoke(_CLIENT_ALBUM_GRANTS, album_id, user_id, actor)

    async def list_project_clients(self, project_id: str) -> List[Tuple[ClientProjectAccess, User]]:
        """Client grants on a project with their users, newest first."""
        return await self._list_clients(_CLIENT_PROJECT_GRANTS, project_id)

    async def list_album_clients(self, album_id: str) -> List[Tuple[ClientAlbumAccess, User]]:
        return await self._list_clients(_CLIENT_ALBUM_GRANTS, album_id)

    # ==================== Internals ====================

    async def _require_target(self, model, entity_type: EntityType, entity_id: str) -> None:
        if await self.db.get(model, entity_id) is None:
            raise GrantTargetNotFoundError(entity_type.value, entity_id)

    async def _require_users(self, user_ids: Iterable[str]) -> None:
        wanted = set(user_ids)
        if not wanted:
            return
        result = await self.db.execute(select(User.id).where(User.id.in_(sorted(wanted))))
        missing = wanted - set(result.scalars().all())
        if missing:
            raise GrantTargetNotFoundError(EntityType.USER.value, sorted(missing)[0])

    async def _list_clients(self, table: _GrantTable, entity_id: str) -> list:
        result = await self.db.execute(
            select(table.model, User)
            .join(User, User.id == table.model.user_id)
            .where(table.entity_column == entity_id)
            .order_by(table.model.created_at.desc())
        )
        return [(grant, user) for grant, user in result.all()]

    async def _find(self, table: _GrantTable, entity_id: str, user_id: str) -> Optional[GrantRow]:
        result = await self.db.execute(
            select(table.model).where(
                table.entity_column == entity_id,
                table.model.user_id == user_id,
            )
        )
        return result.scalar_one_or_none()

    async def _upsert(
        self,
        table: _GrantTable,
        entity_id: str,
        user_id: str,
        access_level: Union[AccessLevel, str],
        actor: Actor,
    ) -> GrantRow:
        access_level = AccessLevel(access_level)
        await self._require_users([user_id])

        async with self.db.begin_nested():
            grant = await self._find(table, entity_id, user_id)
            if grant is None:
                try:
                    async with self.db.begin_nested():
                        return await self._apply_addition(
                            table, entity_id, user_id, access_level, actor
                        )
                except IntegrityError:
                    # A concurrent writer inserted the pair first; last writer wins
                    logger.info(
                        "Grant on %s %s for %s already exists, applying as update",
                        table.entity_type.value,
                        entity_id,
                        user_id,
                    )
                    grant = await self._find(table, entity_id, user_id)
                    if grant is None:
                        raise

            if grant.access_level != access_level:
                await self._apply_update(table, grant, access_level, actor)
        return grant

    async def _revoke(self, table: _GrantTable, entity_id: str, user_id: str, actor: Actor) -> None:
        async with self.db.begin_nested():
            grant = await self._find(table, entity_id, user_id)
            if grant is None:
                raise GrantNotFoundError(table.entity_type.value, entity_id, user_id)
            await self._apply_removal(table, grant, actor)

    async def _apply_addition(
        self,
        table: _GrantTable,
        entity_id: str,
        user_id: str,
        access_level: AccessLevel,
        actor: Actor,
    ) -> GrantRow:
        grant = table.model(user_id=user_id, access_level=access_level)
        setattr(grant, table.entity_field, entity_id)
        if table.client:
            grant.granted_by_id = actor.id
        self.db.add(grant)
        await self.db.flush()

        await self.audit.record(access_change_event(
            table.entity_type, entity_id, user_id, actor.id,
            new_access_level=access_level, client=table.client,
        ))
        return grant

    async def _apply_update(
        self,
        table: _GrantTable,
        grant: GrantRow,
        access_level: AccessLevel,
        actor: Actor,
    ) -> None:
        old_level = grant.access_level
        grant.access_level = access_level
        if table.client:
            grant.granted_by_id = actor.id
        await self.db.flush()

        await self.audit.record(access_change_event(
            table.entity_type, getattr(grant, table.entity_field), grant.user_id, actor.id,
            old_access_level=old_level, new_access_level=access_level, client=table.client,
        ))

    async def _apply_removal(self, table: _GrantTable, grant: GrantRow, actor: Actor) -> None:
        entity_id = getattr(grant, table.entity_field)
        user_id = grant.user_id
        old_level = grant.access_level
        await self.db.delete(grant)
        await self.db.flush()

        await self.audit.record(access_change_event(
            table.entity_type, entity_id, user_id, actor.id,
            old_access_level=old_level, client=table.client,
        ))
