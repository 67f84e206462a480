"""
HTTP tests for API key management and the x-api-key gate.
"""
import pytest
from sqlalchemy.exc import OperationalError

from answly.features.api_keys.service import ApiKeyService
from answly.features.permissions.models import PermissionScope
from answly.features.permissions.store import GrantStore
from answly.features.users.models import UserRole


async def create_key(client, headers, organization_id, **fields):
    response = await client.post(
        "/api-keys", json={"organization_id": organization_id, "name": "grader", **fields}, headers=headers
    )
    assert response.status_code == 201, response.text
    return response.json()


@pytest.fixture
async def key_manager(db, clock, make_user, admin, organization):
    user = await make_user(role=UserRole.INSTRUCTOR, organization_id=organization.id)
    await GrantStore(db, clock).grant(user.id, organization.id, PermissionScope.MANAGE_API_KEYS, admin.id)
    await db.commit()
    return user


# ============================================================================
# Gate
# ============================================================================


class TestGate:

    async def test_missing_header_is_400(self, client):
        response = await client.get("/api-keys/self")

        assert response.status_code == 400
        assert response.json() == {"error": "missing_api_key", "detail": "Missing x-api-key header"}

    async def test_unknown_key_is_401(self, client):
        response = await client.get("/api-keys/self", headers={"x-api-key": "ak_" + "f" * 64})

        assert response.status_code == 401
        assert response.json()["error"] == "unauthenticated"

    async def test_valid_key_via_either_header(self, client, auth, admin, organization):
        created = await create_key(client, auth(admin), organization.id, scopes=["VIEW_REPORTS"])

        for header in ("x-api-key", "x-apikey"):
            response = await client.get("/api-keys/self", headers={header: created["key"]})
            assert response.status_code == 200
            assert response.json() == {
                "id": created["id"],
                "name": "grader",
                "organization_id": organization.id,
                "scopes": ["VIEW_REPORTS"],
                "rate_limit": 100,
                "daily_quota": 10000,
            }

    async def test_rate_limit_is_403_with_retry_after(self, client, auth, clock, admin, organization):
        created = await create_key(client, auth(admin), organization.id, rate_limit=2)
        headers = {"x-api-key": created["key"]}

        assert [(await client.get("/api-keys/self", headers=headers)).status_code for _ in range(2)] == [200, 200]

        response = await client.get("/api-keys/self", headers=headers)
        assert response.status_code == 403
        assert response.json() == {"error": "rate_limit_exceeded", "detail": "Rate limit exceeded", "retry_after": 30}

        clock.advance(seconds=30)
        assert (await client.get("/api-keys/self", headers=headers)).status_code == 200

    async def test_quota_is_403_with_distinct_code(self, client, auth, admin, organization):
        created = await create_key(client, auth(admin), organization.id, daily_quota=1)
        headers = {"x-api-key": created["key"]}

        assert (await client.get("/api-keys/self", headers=headers)).status_code == 200

        response = await client.get("/api-keys/self", headers=headers)
        assert response.status_code == 403
        assert response.json()["error"] == "quota_exceeded"
        # 12:00:30 to midnight
        assert response.json()["retry_after"] == 12 * 3600 - 30

    async def test_revoked_key_is_401(self, client, auth, admin, organization):
        created = await create_key(client, auth(admin), organization.id)

        response = await client.delete(f"/api-keys/{created['id']}", headers=auth(admin))
        assert response.status_code == 200
        assert response.json()["is_active"] is False

        response = await client.get("/api-keys/self", headers={"x-api-key": created["key"]})
        assert response.status_code == 401

    async def test_key_scope_required_for_self_stats(self, client, auth, admin, organization):
        plain = await create_key(client, auth(admin), organization.id)
        reporting = await create_key(client, auth(admin), organization.id, scopes=["VIEW_REPORTS"])

        response = await client.get("/api-keys/self/stats", headers={"x-api-key": plain["key"]})
        assert response.status_code == 403
        assert response.json()["error"] == "forbidden"

        response = await client.get("/api-keys/self/stats", headers={"x-api-key": reporting["key"]})
        assert response.status_code == 200
        assert response.json()["api_key_id"] == reporting["id"]


# ============================================================================
# Management
# ============================================================================


class TestManagement:

    async def test_create_returns_raw_key_once(self, client, auth, key_manager, organization):
        created = await create_key(client, auth(key_manager), organization.id, rate_limit=5, daily_quota=50)

        assert created["key"].startswith("ak_")
        assert created["key_prefix"] == created["key"][:12]
        assert created["created_by_id"] == key_manager.id
        assert "key_hash" not in created

        response = await client.get(f"/api-keys/organization/{organization.id}", headers=auth(key_manager))
        assert response.status_code == 200
        listed = response.json()
        assert [k["id"] for k in listed] == [created["id"]]
        assert "key" not in listed[0]
        assert "key_hash" not in listed[0]

    async def test_manager_limited_to_own_organization(self, client, auth, key_manager, other_organization):
        response = await client.post(
            "/api-keys", json={"organization_id": other_organization.id, "name": "x"}, headers=auth(key_manager)
        )
        assert response.status_code == 403

        response = await client.get(f"/api-keys/organization/{other_organization.id}", headers=auth(key_manager))
        assert response.status_code == 403

    async def test_student_cannot_manage_keys(self, client, auth, admin, student, organization):
        created = await create_key(client, auth(admin), organization.id)

        assert (await client.delete(f"/api-keys/{created['id']}", headers=auth(student))).status_code == 403
        assert (await client.get(f"/api-keys/{created['id']}/stats", headers=auth(student))).status_code == 403

    async def test_unknown_key_is_404(self, client, auth, admin):
        response = await client.delete("/api-keys/01NOPE00000000000000000000", headers=auth(admin))

        assert response.status_code == 404
        assert response.json()["error"] == "api_key_not_found"

    async def test_usage_tracked_for_admitted_requests_only(self, client, auth, admin, organization):
        created = await create_key(client, auth(admin), organization.id, rate_limit=2)
        headers = {"x-api-key": created["key"]}

        for _ in range(3):
            await client.get("/api-keys/self", headers=headers)

        response = await client.get(f"/api-keys/{created['id']}/stats", headers=auth(admin))
        assert response.status_code == 200
        stats = response.json()
        assert stats["total_requests"] == 2
        assert stats["error_requests"] == 0
        assert stats["top_endpoints"] == [{"endpoint": "/api-keys/self", "requests": 2}]

    async def test_key_lifecycle_is_audited(self, client, auth, admin, organization):
        created = await create_key(client, auth(admin), organization.id)
        await client.delete(f"/api-keys/{created['id']}", headers=auth(admin))

        response = await client.get(
            "/permissions/audit-logs", params={"resource_type": "api_key"}, headers=auth(admin)
        )
        assert {item["action"] for item in response.json()["items"]} == {"create_api_key", "revoke_api_key"}

    async def test_invalid_limits_rejected(self, client, auth, admin, organization):
        response = await client.post(
            "/api-keys", json={"organization_id": organization.id, "name": "bad", "rate_limit": -1}, headers=auth(admin)
        )

        assert response.status_code == 400
        assert "rate_limit" in response.json()

    async def test_unknown_scope_rejected(self, client, auth, admin, organization):
        response = await client.post(
            "/api-keys", json={"organization_id": organization.id, "name": "bad", "scopes": ["FOO"]}, headers=auth(admin)
        )

        assert response.status_code == 400
        assert "scopes" in response.json()

    async def test_unknown_organization_is_404(self, client, auth, admin):
        response = await client.post(
            "/api-keys", json={"organization_id": "01NOPE00000000000000000000", "name": "x"}, headers=auth(admin)
        )

        assert response.status_code == 404
        assert response.json()["detail"] == "Organization not found"

    async def test_usage_write_failure_keeps_response(self, client, auth, admin, organization, monkeypatch):
        created = await create_key(client, auth(admin), organization.id)

        async def broken_track_usage(self, *args, **kwargs):
            raise OperationalError("INSERT INTO api_key_usage", {}, Exception("disk I/O error"))

        monkeypatch.setattr(ApiKeyService, "track_usage", broken_track_usage)
        response = await client.get("/api-keys/self", headers={"x-api-key": created["key"]})

        assert response.status_code == 200
        assert response.json()["id"] == created["id"]
