"""
HTTP Route Tests

Decisions surface as 404/403 with the resolver's reason; client
management needs FULL access; admin routes need an admin.
"""

import pytest
from sqlalchemy import select

from mediavault.api.db.models import AuditLog, ClientProjectAccess, ProjectAccess
from mediavault.api.roles import AccessLevel


class TestHealth:
    """Tests for the health endpoint."""

    @pytest.mark.asyncio
    async def test_health(self, async_client):
        """Should report healthy without authentication."""
        response = await async_client.get("/api/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestAuthentication:
    """Tests for bearer token handling."""

    @pytest.mark.asyncio
    async def test_missing_token_is_rejected(self, async_client):
        """Should refuse requests without credentials."""
        response = await async_client.get("/api/v1/projects")

        assert response.status_code in (401, 403)

    @pytest.mark.asyncio
    async def test_invalid_token_is_rejected(self, async_client):
        """Should refuse a token that does not verify."""
        response = await async_client.get(
            "/api/v1/projects", headers={"Authorization": "Bearer not-a-token"}
        )

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_token_for_unknown_user_is_rejected(self, async_client):
        """Should refuse a valid token whose user no longer exists."""
        from mediavault.api.auth.jwt import create_access_token

        token = create_access_token("ghost", "ghost@mediavault.test")
        response = await async_client.get(
            "/api/v1/projects", headers={"Authorization": f"Bearer {token}"}
        )

        assert response.status_code == 401


class TestProjectRoutes:
    """Tests for project listing and access decisions."""

    @pytest.mark.asyncio
    async def test_list_only_visible_projects(
        self, async_client, member, project, other_project, grant, headers_for
    ):
        """Should list the projects the caller can access."""
        await grant(ProjectAccess, member, AccessLevel.READ, project_id=project.id)

        response = await async_client.get("/api/v1/projects", headers=headers_for(member))

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["projects"][0]["id"] == project.id

    @pytest.mark.asyncio
    async def test_admin_lists_everything(
        self, async_client, admin_user, project, other_project, headers_for
    ):
        """Should list every project for an admin."""
        response = await async_client.get("/api/v1/projects", headers=headers_for(admin_user))

        assert response.json()["total"] == 2

    @pytest.mark.asyncio
    async def test_access_decision_granted(self, async_client, owner, project, headers_for):
        """Should return the caller's decision."""
        response = await async_client.get(
            f"/api/v1/projects/{project.id}/access", headers=headers_for(owner)
        )

        assert response.status_code == 200
        assert response.json() == {"has_access": True, "access_level": "FULL", "reason": None}

    @pytest.mark.asyncio
    async def test_access_decision_denied(self, async_client, outsider, project, headers_for):
        """Should return a denial as a decision, not an error."""
        response = await async_client.get(
            f"/api/v1/projects/{project.id}/access", headers=headers_for(outsider)
        )

        assert response.status_code == 200
        assert response.json()["reason"] == "Access denied"

    @pytest.mark.asyncio
    async def test_access_decision_not_found(self, async_client, outsider, headers_for):
        """Should return 404 with the not found reason."""
        response = await async_client.get(
            "/api/v1/projects/missing/access", headers=headers_for(outsider)
        )

        assert response.status_code == 404
        assert response.json()["detail"] == "Project not found"


class TestProjectClientRoutes:
    """Tests for project client management."""

    @pytest.mark.asyncio
    async def test_owner_grants_client(
        self, async_client, db_session, owner, client_user, project, headers_for
    ):
        """Should create the grant and its audit row."""
        response = await async_client.post(
            f"/api/v1/projects/{project.id}/clients",
            json={"user_id": client_user.id, "access_level": "WRITE"},
            headers=headers_for(owner),
        )

        assert response.status_code == 200
        data = response.json()
        assert data["access_level"] == "WRITE"
        assert data["granted_by_id"] == owner.id

        actions = (await db_session.execute(select(AuditLog.action))).scalars().all()
        assert actions == ["CLIENT_ACCESS_GRANTED"]

    @pytest.mark.asyncio
    async def test_write_access_is_not_enough(
        self, async_client, member, client_user, project, grant, headers_for
    ):
        """Should refuse client management below FULL."""
        await grant(ProjectAccess, member, AccessLevel.WRITE, project_id=project.id)

        response = await async_client.post(
            f"/api/v1/projects/{project.id}/clients",
            json={"user_id": client_user.id},
            headers=headers_for(member),
        )

        assert response.status_code == 403
        assert response.json()["detail"] == "Insufficient access level"

    @pytest.mark.asyncio
    async def test_denied_caller_gets_reason(
        self, async_client, outsider, client_user, project, headers_for
    ):
        """Should return 403 with the denial reason verbatim."""
        response = await async_client.post(
            f"/api/v1/projects/{project.id}/clients",
            json={"user_id": client_user.id},
            headers=headers_for(outsider),
        )

        assert response.status_code == 403
        assert response.json()["detail"] == "Access denied"

    @pytest.mark.asyncio
    async def test_grant_to_unknown_user(self, async_client, owner, project, headers_for):
        """Should return 404 for a missing grantee."""
        response = await async_client.post(
            f"/api/v1/projects/{project.id}/clients",
            json={"user_id": "ghost"},
            headers=headers_for(owner),
        )

        assert response.status_code == 404
        assert response.json()["detail"] == "User not found"

    @pytest.mark.asyncio
    async def test_list_and_revoke_client(
        self, async_client, owner, client_user, project, grant, headers_for, count_rows
    ):
        """Should list then revoke a client grant."""
        await grant(ClientProjectAccess, client_user, AccessLevel.READ, project_id=project.id)
        headers = headers_for(owner)

        listed = await async_client.get(f"/api/v1/projects/{project.id}/clients", headers=headers)
        assert [c["user_email"] for c in listed.json()["clients"]] == [client_user.email]

        response = await async_client.delete(
            f"/api/v1/projects/{project.id}/clients/{client_user.id}", headers=headers
        )
        assert response.status_code == 200
        assert await count_rows(ClientProjectAccess) == 0

    @pytest.mark.asyncio
    async def test_revoke_missing_grant(self, async_client, owner, client_user, project, headers_for):
        """Should return 404 when there is no grant to revoke."""
        response = await async_client.delete(
            f"/api/v1/projects/{project.id}/clients/{client_user.id}", headers=headers_for(owner)
        )

        assert response.status_code == 404
        assert response.json()["detail"] == "Access not found"


class TestAlbumRoutes:
    """Tests for album decisions and client management."""

    @pytest.mark.asyncio
    async def test_inherited_album_access(
        self, async_client, member, project, project_album, grant, headers_for
    ):
        """Should report the level inherited from the project."""
        await grant(ProjectAccess, member, AccessLevel.WRITE, project_id=project.id)

        response = await async_client.get(
            f"/api/v1/albums/{project_album.id}/access", headers=headers_for(member)
        )

        assert response.json() == {"has_access": True, "access_level": "WRITE", "reason": None}

    @pytest.mark.asyncio
    async def test_missing_album(self, async_client, member, headers_for):
        """Should return 404 for a missing album."""
        response = await async_client.get("/api/v1/albums/missing/access", headers=headers_for(member))

        assert response.status_code == 404
        assert response.json()["detail"] == "Album not found"

    @pytest.mark.asyncio
    async def test_owner_grants_album_client(
        self, async_client, owner, client_user, standalone_album, headers_for
    ):
        """Should grant a client access to a standalone album."""
        response = await async_client.post(
            f"/api/v1/albums/{standalone_album.id}/clients",
            json={"user_id": client_user.id, "access_level": "READ"},
            headers=headers_for(owner),
        )

        assert response.status_code == 200
        assert response.json()["album_id"] == standalone_album.id


class TestAdminRoutes:
    """Tests for admin grant administration and the audit log."""

    @pytest.mark.asyncio
    async def test_non_admin_is_refused(self, async_client, owner, headers_for):
        """Should require an admin."""
        response = await async_client.get("/api/v1/admin/audit", headers=headers_for(owner))

        assert response.status_code == 403
        assert response.json()["detail"] == "Admin access required"

    @pytest.mark.asyncio
    async def test_replace_access_list(
        self, async_client, admin_user, member, outsider, project, grant, headers_for
    ):
        """Should apply the diff and report it."""
        await grant(ProjectAccess, member, AccessLevel.READ, project_id=project.id)

        response = await async_client.put(
            "/api/v1/admin/projects/access",
            json={
                "project_id": project.id,
                "entries": [{"user_id": outsider.id, "access_level": "WRITE"}],
            },
            headers=headers_for(admin_user),
        )

        assert response.status_code == 200
        data = response.json()
        assert [g["user_id"] for g in data["added"]] == [outsider.id]
        assert data["removed"] == [member.id]
        assert data["updated"] == []

    @pytest.mark.asyncio
    async def test_grant_and_revoke_project_access(
        self, async_client, admin_user, member, project, headers_for
    ):
        """Should upsert then revoke an internal grant."""
        headers = headers_for(admin_user)

        granted = await async_client.post(
            "/api/v1/admin/projects/access",
            json={"project_id": project.id, "user_id": member.id, "access_level": "FULL"},
            headers=headers,
        )
        assert granted.status_code == 200
        assert granted.json()["access_level"] == "FULL"

        revoked = await async_client.delete(
            "/api/v1/admin/projects/access",
            params={"project_id": project.id, "user_id": member.id},
            headers=headers,
        )
        assert revoked.status_code == 200

    @pytest.mark.asyncio
    async def test_audit_log_pagination(
        self, async_client, admin_user, member, project, headers_for
    ):
        """Should page audit records with totals."""
        headers = headers_for(admin_user)
        for level in ("READ", "WRITE", "FULL"):
            await async_client.post(
                "/api/v1/admin/projects/access",
                json={"project_id": project.id, "user_id": member.id, "access_level": level},
                headers=headers,
            )

        response = await async_client.get(
            "/api/v1/admin/audit",
            params={"entity_type": "Project", "page_size": 2},
            headers=headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 3
        assert data["pages"] == 2
        assert len(data["entries"]) == 2
        assert data["entries"][0]["user_email"] == admin_user.email
        assert data["entries"][0]["metadata"]["targetUserId"] == member.id

    @pytest.mark.asyncio
    async def test_audit_export_csv(
        self, async_client, admin_user, member, project, headers_for
    ):
        """Should export filtered records as a CSV attachment."""
        headers = headers_for(admin_user)
        await async_client.post(
            "/api/v1/admin/projects/access",
            json={"project_id": project.id, "user_id": member.id, "access_level": "READ"},
            headers=headers,
        )

        response = await async_client.get(
            "/api/v1/admin/audit/export",
            params={"format": "csv", "user_id": admin_user.id, "entity_type": "Project"},
            headers=headers,
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert "attachment" in response.headers["content-disposition"]
        lines = response.text.splitlines()
        assert len(lines) == 2
        assert '"ACCESS_GRANTED"' in lines[1]

    @pytest.mark.asyncio
    async def test_audit_export_json_without_bounds(
        self, async_client, admin_user, member, project, headers_for
    ):
        """Should export every record when no window is given."""
        headers = headers_for(admin_user)
        await async_client.post(
            "/api/v1/admin/projects/access",
            json={"project_id": project.id, "user_id": member.id, "access_level": "WRITE"},
            headers=headers,
        )

        response = await async_client.get("/api/v1/admin/audit/export", headers=headers)

        assert response.status_code == 200
        data = response.json()
        assert data["event_count"] == 1
        assert "integrity_hash" in data

    @pytest.mark.asyncio
    async def test_audit_export_rejects_unknown_format(self, async_client, admin_user, headers_for):
        """Should validate the format parameter."""
        response = await async_client.get(
            "/api/v1/admin/audit/export", params={"format": "pdf"}, headers=headers_for(admin_user)
        )

        assert response.status_code == 422
