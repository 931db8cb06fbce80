"""
Access Resolver Tests

Precedence of admin, ownership, internal grants, client grants and
project inheritance for projects and albums.
"""

import pytest

from mediavault.api.access.resolver import (
    AccessDenied,
    AccessGranted,
    EntityKind,
    EntityNotFound,
    check_album_access,
    check_project_access,
    resolve_access,
)
from mediavault.api.db.models import (
    ClientAlbumAccess,
    ClientProjectAccess,
    ProjectAccess,
)
from mediavault.api.roles import AccessLevel, Actor, Role


class TestProjectAccess:
    """Tests for check_project_access."""

    @pytest.mark.asyncio
    async def test_admin_gets_full_without_grants(self, db_session, project, admin_user, actor_for):
        """Should grant FULL to admins regardless of ownership or grants."""
        decision = await check_project_access(db_session, project.id, actor_for(admin_user))

        assert decision == AccessGranted(AccessLevel.FULL)

    @pytest.mark.asyncio
    async def test_superadmin_role_string_is_admin(self, db_session, project):
        """Should treat a raw SUPERADMIN role string as admin."""
        actor = Actor(id="nobody", role="SUPERADMIN")

        decision = await check_project_access(db_session, project.id, actor)

        assert decision.access_level == AccessLevel.FULL

    @pytest.mark.asyncio
    async def test_admin_bypasses_existence_check(self, db_session, admin_user, actor_for):
        """Should grant admins FULL before looking the project up."""
        decision = await check_project_access(db_session, "missing", actor_for(admin_user))

        assert decision.has_access is True

    @pytest.mark.asyncio
    async def test_missing_project_is_not_found(self, db_session, member, actor_for):
        """Should report a missing project as not found, not denied."""
        decision = await check_project_access(db_session, "missing", actor_for(member))

        assert isinstance(decision, EntityNotFound)
        assert decision.has_access is False
        assert decision.reason == "Project not found"
        assert decision.access_level is None

    @pytest.mark.asyncio
    async def test_owner_gets_full(self, db_session, project, owner, actor_for):
        """Should grant FULL to the owner."""
        decision = await check_project_access(db_session, project.id, actor_for(owner))

        assert decision == AccessGranted(AccessLevel.FULL)

    @pytest.mark.asyncio
    async def test_internal_grant_level_is_returned(
        self, db_session, project, member, grant, actor_for
    ):
        """Should return the level of a direct internal grant."""
        await grant(ProjectAccess, member, AccessLevel.READ, project_id=project.id)

        decision = await check_project_access(db_session, project.id, actor_for(member))

        assert decision.to_dict() == {
            "has_access": True,
            "access_level": "READ",
            "reason": None,
        }

    @pytest.mark.asyncio
    async def test_user_without_grant_is_denied(self, db_session, project, outsider, actor_for):
        """Should deny a user with no ownership and no grant."""
        decision = await check_project_access(db_session, project.id, actor_for(outsider))

        assert isinstance(decision, AccessDenied)
        assert decision.to_dict() == {
            "has_access": False,
            "access_level": None,
            "reason": "Access denied",
        }

    @pytest.mark.asyncio
    async def test_client_grant_level_is_returned(
        self, db_session, project, client_user, grant, actor_for
    ):
        """Should return the level of a client project grant."""
        await grant(ClientProjectAccess, client_user, AccessLevel.WRITE, project_id=project.id)

        decision = await check_project_access(db_session, project.id, actor_for(client_user))

        assert decision == AccessGranted(AccessLevel.WRITE)

    @pytest.mark.asyncio
    async def test_higher_client_grant_wins_over_internal(
        self, db_session, project, member, grant, actor_for
    ):
        """Should return FULL when internal WRITE and client FULL both exist."""
        await grant(ProjectAccess, member, AccessLevel.WRITE, project_id=project.id)
        await grant(ClientProjectAccess, member, AccessLevel.FULL, project_id=project.id)

        decision = await check_project_access(db_session, project.id, actor_for(member))

        assert decision.access_level == AccessLevel.FULL

    @pytest.mark.asyncio
    async def test_higher_internal_grant_wins_over_client(
        self, db_session, project, member, grant, actor_for
    ):
        """Should return FULL when internal FULL and client READ both exist."""
        await grant(ProjectAccess, member, AccessLevel.FULL, project_id=project.id)
        await grant(ClientProjectAccess, member, AccessLevel.READ, project_id=project.id)

        decision = await check_project_access(db_session, project.id, actor_for(member))

        assert decision.access_level == AccessLevel.FULL

    @pytest.mark.asyncio
    async def test_owner_role_does_not_matter(self, db_session, project, owner):
        """Should grant FULL to the owner whatever non-admin role they carry."""
        for role in (Role.USER, Role.PRO, Role.CLIENT, "bogus"):
            decision = await check_project_access(db_session, project.id, Actor(owner.id, role))
            assert decision.access_level == AccessLevel.FULL

    @pytest.mark.asyncio
    async def test_grant_on_other_project_does_not_leak(
        self, db_session, project, other_project, member, grant, actor_for
    ):
        """Should not apply a grant held on a different project."""
        await grant(ProjectAccess, member, AccessLevel.FULL, project_id=other_project.id)

        decision = await check_project_access(db_session, project.id, actor_for(member))

        assert decision.has_access is False


class TestAlbumAccess:
    """Tests for check_album_access."""

    @pytest.mark.asyncio
    async def test_missing_album_is_not_found(self, db_session, member, actor_for):
        """Should report a missing album as not found."""
        decision = await check_album_access(db_session, "missing", actor_for(member))

        assert decision == EntityNotFound(EntityKind.ALBUM)
        assert decision.reason == "Album not found"

    @pytest.mark.asyncio
    async def test_admin_gets_full(self, db_session, standalone_album, admin_user, actor_for):
        """Should grant FULL to admins."""
        decision = await check_album_access(db_session, standalone_album.id, actor_for(admin_user))

        assert decision.access_level == AccessLevel.FULL

    @pytest.mark.asyncio
    async def test_owner_gets_full(self, db_session, standalone_album, owner, actor_for):
        """Should grant FULL to the album owner."""
        decision = await check_album_access(db_session, standalone_album.id, actor_for(owner))

        assert decision == AccessGranted(AccessLevel.FULL)

    @pytest.mark.asyncio
    async def test_standalone_album_client_grant(
        self, db_session, standalone_album, client_user, grant, actor_for
    ):
        """Should return WRITE for a client holding a WRITE grant on a standalone album."""
        await grant(ClientAlbumAccess, client_user, AccessLevel.WRITE, album_id=standalone_album.id)

        decision = await check_album_access(db_session, standalone_album.id, actor_for(client_user))

        assert decision == AccessGranted(AccessLevel.WRITE)

    @pytest.mark.asyncio
    async def test_standalone_album_without_grant_is_denied(
        self, db_session, standalone_album, outsider, actor_for
    ):
        """Should deny a standalone album with no grant."""
        decision = await check_album_access(db_session, standalone_album.id, actor_for(outsider))

        assert decision == AccessDenied()

    @pytest.mark.asyncio
    async def test_album_inherits_project_level(
        self, db_session, project, project_album, member, grant, actor_for
    ):
        """Should give an album in a project the same decision as the project."""
        await grant(ProjectAccess, member, AccessLevel.WRITE, project_id=project.id)
        actor = actor_for(member)

        album_decision = await check_album_access(db_session, project_album.id, actor)
        project_decision = await check_project_access(db_session, project.id, actor)

        assert album_decision.has_access == project_decision.has_access
        assert album_decision.access_level == project_decision.access_level == AccessLevel.WRITE

    @pytest.mark.asyncio
    async def test_album_inherits_denial(
        self, db_session, project, project_album, outsider, actor_for
    ):
        """Should deny an album whose project denies the actor."""
        decision = await check_album_access(db_session, project_album.id, actor_for(outsider))

        assert isinstance(decision, AccessDenied)

    @pytest.mark.asyncio
    async def test_project_owner_gets_full_on_album_owned_by_someone_else(
        self, db_session, owner, outsider, project, actor_for
    ):
        """Should pass project ownership through to albums the owner did not create."""
        from mediavault.api.db.models import Album

        album = Album(id="album-3", name="Guest", owner_id=outsider.id, project_id=project.id)
        db_session.add(album)
        await db_session.commit()

        decision = await check_album_access(db_session, album.id, actor_for(owner))

        assert decision.access_level == AccessLevel.FULL

    @pytest.mark.asyncio
    async def test_direct_grant_higher_than_inherited_wins(
        self, db_session, project, project_album, client_user, grant, actor_for
    ):
        """Should return the direct album level when it beats the project level."""
        await grant(ClientProjectAccess, client_user, AccessLevel.READ, project_id=project.id)
        await grant(ClientAlbumAccess, client_user, AccessLevel.FULL, album_id=project_album.id)

        decision = await check_album_access(db_session, project_album.id, actor_for(client_user))

        assert decision.access_level == AccessLevel.FULL

    @pytest.mark.asyncio
    async def test_inherited_higher_than_direct_wins(
        self, db_session, project, project_album, client_user, grant, actor_for
    ):
        """Should return the inherited level when it beats the direct album grant."""
        await grant(ClientProjectAccess, client_user, AccessLevel.WRITE, project_id=project.id)
        await grant(ClientAlbumAccess, client_user, AccessLevel.READ, album_id=project_album.id)

        decision = await check_album_access(db_session, project_album.id, actor_for(client_user))

        assert decision.access_level == AccessLevel.WRITE


class TestResolveAccess:
    """Tests for resolve_access dispatch."""

    @pytest.mark.asyncio
    async def test_dispatches_by_kind(
        self, db_session, project, standalone_album, owner, actor_for
    ):
        """Should route project and album kinds to their resolvers."""
        actor = actor_for(owner)

        assert (await resolve_access(db_session, EntityKind.PROJECT, project.id, actor)).has_access
        assert (await resolve_access(db_session, "Album", standalone_album.id, actor)).has_access

    @pytest.mark.asyncio
    async def test_unknown_kind_raises(self, db_session, owner, actor_for):
        """Should reject kinds it does not protect."""
        with pytest.raises(ValueError):
            await resolve_access(db_session, "Image", "image-1", actor_for(owner))


class TestDecisionValues:
    """Tests for the decision variants."""

    def test_granted_allows_lower_levels(self):
        """Should allow any level at or below the granted one."""
        decision = AccessGranted(AccessLevel.WRITE)

        assert decision.allows(AccessLevel.READ)
        assert decision.allows("WRITE")
        assert not decision.allows(AccessLevel.FULL)

    def test_denied_and_not_found_allow_nothing(self):
        """Should never allow access from a denial or a not found."""
        assert not AccessDenied().allows(AccessLevel.READ)
        assert not EntityNotFound(EntityKind.PROJECT).allows(AccessLevel.READ)
