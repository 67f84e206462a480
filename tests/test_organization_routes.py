"""
HTTP tests for organizations, membership and user role management.
"""
from answly.features.permissions.models import PermissionScope
from answly.features.permissions.store import GrantStore
from answly.features.users.models import UserRole


class TestOrganizations:

    async def test_admin_creates_organization(self, client, auth, admin):
        response = await client.post("/organizations", json={"name": "Initech", "slug": "IniTech"}, headers=auth(admin))

        assert response.status_code == 201
        assert response.json()["slug"] == "initech"

        response = await client.post("/organizations", json={"name": "Other", "slug": "initech"}, headers=auth(admin))
        assert response.status_code == 409

    async def test_only_admin_creates(self, client, auth, student):
        response = await client.post("/organizations", json={"name": "Mine", "slug": "mine"}, headers=auth(student))

        assert response.status_code == 403
        assert response.json()["error"] == "forbidden"

    async def test_bad_slug_is_400(self, client, auth, admin):
        response = await client.post("/organizations", json={"name": "Bad", "slug": "no spaces"}, headers=auth(admin))

        assert response.status_code == 400
        assert "slug" in response.json()

    async def test_get_organization_membership(self, client, auth, admin, student, make_user, organization):
        outsider = await make_user()

        assert (await client.get(f"/organizations/{organization.id}", headers=auth(student))).status_code == 200
        assert (await client.get(f"/organizations/{organization.id}", headers=auth(admin))).status_code == 200
        assert (await client.get(f"/organizations/{organization.id}", headers=auth(outsider))).status_code == 403
        assert (await client.get("/organizations/01NOPE00000000000000000000", headers=auth(admin))).status_code == 404


class TestMembers:

    async def test_members_require_manage_members(self, client, auth, db, clock, admin, student, organization):
        url = f"/organizations/{organization.id}/members"
        assert (await client.get(url, headers=auth(student))).status_code == 403

        await GrantStore(db, clock).grant(student.id, organization.id, PermissionScope.MANAGE_MEMBERS, admin.id)
        await db.commit()

        response = await client.get(url, headers=auth(student))
        assert response.status_code == 200
        assert [m["id"] for m in response.json()] == [student.id]

    async def test_add_member(self, client, auth, admin, make_user, organization):
        newcomer = await make_user()
        url = f"/organizations/{organization.id}/members"

        response = await client.post(url, json={"user_id": newcomer.id}, headers=auth(admin))
        assert response.status_code == 201

        response = await client.get("/users/me", headers=auth(newcomer))
        assert response.json()["organization_id"] == organization.id

        response = await client.post(url, json={"user_id": newcomer.id}, headers=auth(admin))
        assert response.status_code == 409

        response = await client.get(
            "/permissions/audit-logs", params={"organization_id": organization.id}, headers=auth(admin)
        )
        assert [item["action"] for item in response.json()["items"]] == ["add_member"]

    async def test_member_of_other_organization_conflicts(self, client, auth, admin, make_user, organization, other_organization):
        taken = await make_user(organization_id=other_organization.id)

        response = await client.post(
            f"/organizations/{organization.id}/members", json={"user_id": taken.id}, headers=auth(admin)
        )

        assert response.status_code == 409


class TestUsers:

    async def test_me(self, client, auth, student):
        response = await client.get("/users/me", headers=auth(student))

        assert response.status_code == 200
        assert response.json()["id"] == student.id
        assert response.json()["role"] == "TEST_TAKER"

    async def test_inactive_user_is_401(self, client, auth, make_user):
        ghost = await make_user(is_active=False)

        response = await client.get("/users/me", headers=auth(ghost))

        assert response.status_code == 401

    async def test_admin_changes_role(self, client, auth, admin, student):
        response = await client.patch(f"/users/{student.id}/role", json={"role": "REVIEWER"}, headers=auth(admin))

        assert response.status_code == 200
        assert response.json()["role"] == "REVIEWER"

        response = await client.get("/permissions/audit-logs", params={"action": "change_role"}, headers=auth(admin))
        assert response.json()["items"][0]["details"] == {"from": "TEST_TAKER", "to": "REVIEWER"}

    async def test_admin_cannot_change_own_role(self, client, auth, admin):
        response = await client.patch(f"/users/{admin.id}/role", json={"role": "TEST_TAKER"}, headers=auth(admin))

        assert response.status_code == 400

    async def test_non_admin_cannot_change_roles(self, client, auth, make_user, student):
        instructor = await make_user(role=UserRole.INSTRUCTOR)

        response = await client.patch(f"/users/{student.id}/role", json={"role": "ADMIN"}, headers=auth(instructor))

        assert response.status_code == 403

    async def test_public_profile(self, client, auth, admin, student):
        response = await client.get(f"/users/{admin.id}", headers=auth(student))

        assert response.json() == {"id": admin.id, "name": "Ada Admin", "role": "ADMIN"}
