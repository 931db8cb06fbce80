"""
MEDIAVAULT - Accessible-Set Aggregator

Computes the set of project ids visible to an actor for list and filter
queries. Agrees with check_project_access: a project is in the set
exactly when the point resolver would grant access to it.
"""

from typing import Set

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession

from mediavault.api.db.models import ClientProjectAccess, Project, ProjectAccess
from mediavault.api.roles import Actor


async def get_accessible_project_ids(db: AsyncSession, actor: Actor) -> Set[str]:
    """
    Get the ids of every project the actor can access.

    Administrators see every project (one query). Everyone else gets the
    union of owned projects, internal grants and client grants (three
    queries, independent of the number of projects).
    """
    if actor.is_admin:
        result = await db.execute(select(Project.id))
        return set(result.scalars().all())

    owned = await db.execute(
        select(Project.id).where(Project.owner_id == actor.id)
    )
    granted = await db.execute(
        select(ProjectAccess.project_id).where(ProjectAccess.user_id == actor.id)
    )
    client_granted = await db.execute(
        select(ClientProjectAccess.project_id).where(
            ClientProjectAccess.user_id == actor.id
        )
    )

    project_ids: Set[str] = set()
    project_ids.update(owned.scalars().all())
    project_ids.update(granted.scalars().all())
    project_ids.update(client_granted.scalars().all())
    return project_ids


async def accessible_projects_query(db: AsyncSession, actor: Actor) -> Select:
    """Build a bulk project query filtered to the actor's visible set."""
    stmt = select(Project).order_by(Project.created_at.desc())
    if actor.is_admin:
        return stmt

    project_ids = await get_accessible_project_ids(db, actor)
    return stmt.where(Project.id.in_(sorted(project_ids)))
