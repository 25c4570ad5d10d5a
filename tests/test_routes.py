from typing import Any

import pytest
from httpx import AsyncClient

from app.core.database.engine import AsyncSessionLocal
from app.features.permissions.models import CustomRole
from app.features.users.models import User
from tests.utils import auth_headers


pytestmark = pytest.mark.asyncio


JUNIOR_EDITOR = {
    "name": "Junior Editor",
    "description": "Edits but never publishes",
    "based_on_role": "editor",
    "permissions": {"page.publish": False, "blog.publish": False},
}


async def create_role(client: AsyncClient, headers: dict[str, str], **overrides: Any) -> dict[str, Any]:
    response = await client.post("/permissions/roles", json={**JUNIOR_EDITOR, **overrides}, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


async def test_health(async_client: AsyncClient):
    response = await async_client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


async def test_requests_without_token_are_rejected(async_client: AsyncClient, seed_identity: dict[str, Any]):
    response = await async_client.get("/permissions/me")
    assert response.status_code in (401, 403)

    response = await async_client.get("/permissions/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


async def test_catalog(async_client: AsyncClient, seed_identity: dict[str, Any]):
    response = await async_client.get("/permissions/catalog", headers=seed_identity["headers"]["viewer"])

    assert response.status_code == 200
    payload = response.json()
    assert [entry["resource"] for entry in payload["resources"]][:4] == ["page", "blog", "media", "course"]
    media = next(entry for entry in payload["resources"] if entry["resource"] == "media")
    assert {action["key"] for action in media["actions"]} == {"media.create", "media.read", "media.update", "media.delete"}
    assert payload["groups"]["Taxonomy"] == ["category", "tag"]


async def test_system_roles(async_client: AsyncClient, seed_identity: dict[str, Any]):
    response = await async_client.get("/permissions/system-roles", headers=seed_identity["headers"]["viewer"])

    assert response.status_code == 200
    roles = {entry["role"]: entry for entry in response.json()}
    assert list(roles) == ["superadmin", "admin", "editor", "contributor", "viewer"]
    assert roles["editor"]["permissions"]["page.publish"] is True
    assert roles["viewer"]["permissions"]["page.publish"] is False


async def test_my_permissions(async_client: AsyncClient, seed_identity: dict[str, Any]):
    response = await async_client.get("/permissions/me", headers=seed_identity["headers"]["editor"])

    assert response.status_code == 200
    payload = response.json()
    assert payload["role"] == "editor"
    assert payload["permissions"]["page.publish"] is True
    assert payload["permissions"]["page.delete"] is False


async def test_check_permission(async_client: AsyncClient, seed_identity: dict[str, Any]):
    headers = seed_identity["headers"]["viewer"]

    response = await async_client.post("/permissions/check", json={"resource": "page", "action": "read"}, headers=headers)
    assert response.json() == {"has_permission": True, "reason": None}

    response = await async_client.post("/permissions/check", json={"resource": "page", "action": "delete"}, headers=headers)
    assert response.json()["has_permission"] is False
    assert "page.delete" in response.json()["reason"]

    response = await async_client.post(
        "/permissions/check",
        json={"resource": "spaceship", "action": "launch"},
        headers=seed_identity["headers"]["superadmin"],
    )
    assert response.json()["has_permission"] is True


async def test_custom_role_lifecycle(async_client: AsyncClient, seed_identity: dict[str, Any]):
    headers = seed_identity["headers"]["admin"]

    created = await create_role(async_client, headers)
    assert created["based_on_role"] == "editor"
    assert created["permissions"] == JUNIOR_EDITOR["permissions"]
    assert created["organization_id"] == seed_identity["organization_id"]
    assert created["created_by_id"] == seed_identity["users"]["admin"]

    response = await async_client.get("/permissions/roles", headers=headers)
    assert [role["id"] for role in response.json()] == [created["id"]]

    response = await async_client.patch(
        f"/permissions/roles/{created['id']}",
        json={"permissions": {"page.delete": True}},
        headers=headers,
    )
    assert response.status_code == 200
    assert response.json()["permissions"] == {"page.delete": True}
    assert response.json()["name"] == "Junior Editor"

    response = await async_client.get(f"/permissions/roles/{created['id']}", headers=headers)
    assert response.json()["permissions"] == {"page.delete": True}

    response = await async_client.delete(f"/permissions/roles/{created['id']}", headers=headers)
    assert response.status_code == 200
    assert "message" in response.json()

    response = await async_client.get(f"/permissions/roles/{created['id']}", headers=headers)
    assert response.status_code == 404


async def test_create_role_validation_errors(async_client: AsyncClient, seed_identity: dict[str, Any]):
    headers = seed_identity["headers"]["admin"]

    response = await async_client.post(
        "/permissions/roles", json={**JUNIOR_EDITOR, "based_on_role": "reader"}, headers=headers
    )
    assert response.status_code == 400
    assert response.json()["field"] == "based_on_role"

    response = await async_client.post(
        "/permissions/roles", json={**JUNIOR_EDITOR, "permissions": {"page.fly": True}}, headers=headers
    )
    assert response.status_code == 400
    assert response.json()["field"] == "permissions"

    response = await async_client.post(
        "/permissions/roles", json={**JUNIOR_EDITOR, "permissions": {"page.read": "yes"}}, headers=headers
    )
    assert response.status_code == 400

    response = await async_client.post("/permissions/roles", json={**JUNIOR_EDITOR, "name": " "}, headers=headers)
    assert response.status_code == 400
    assert response.json()["field"] == "name"

    response = await async_client.get("/permissions/roles", headers=headers)
    assert response.json() == []


async def test_duplicate_role_name_conflicts(async_client: AsyncClient, seed_identity: dict[str, Any]):
    headers = seed_identity["headers"]["admin"]
    await create_role(async_client, headers)

    response = await async_client.post("/permissions/roles", json=JUNIOR_EDITOR, headers=headers)
    assert response.status_code == 409


async def test_role_management_requires_settings_permissions(async_client: AsyncClient, seed_identity: dict[str, Any]):
    response = await async_client.post("/permissions/roles", json=JUNIOR_EDITOR, headers=seed_identity["headers"]["editor"])
    assert response.status_code == 403

    response = await async_client.get("/permissions/roles", headers=seed_identity["headers"]["viewer"])
    assert response.status_code == 403

    response = await async_client.get("/permissions/audit-logs", headers=seed_identity["headers"]["editor"])
    assert response.status_code == 403


async def test_roles_of_other_organizations_are_hidden(async_client: AsyncClient, seed_identity: dict[str, Any]):
    foreign = await create_role(async_client, seed_identity["headers"]["outsider"])
    headers = seed_identity["headers"]["admin"]

    response = await async_client.get(f"/permissions/roles/{foreign['id']}", headers=headers)
    assert response.status_code == 404

    response = await async_client.patch(f"/permissions/roles/{foreign['id']}", json={"name": "Mine"}, headers=headers)
    assert response.status_code == 404

    response = await async_client.delete(f"/permissions/roles/{foreign['id']}", headers=headers)
    assert response.status_code == 404

    response = await async_client.get("/permissions/roles", headers=headers)
    assert response.json() == []


async def test_assigned_custom_role_drives_permissions(async_client: AsyncClient, seed_identity: dict[str, Any]):
    admin = seed_identity["headers"]["admin"]
    editor_id = seed_identity["users"]["editor"]
    role = await create_role(async_client, admin)

    response = await async_client.post(
        "/permissions/assignments/user-role",
        json={"user_id": editor_id, "role_id": role["id"]},
        headers=admin,
    )
    assert response.status_code == 200
    assert response.json()["user"]["role"] == f"custom:{role['id']}"

    response = await async_client.get("/permissions/me", headers=seed_identity["headers"]["editor"])
    permissions = response.json()["permissions"]
    assert permissions["page.publish"] is False
    assert permissions["course.publish"] is True
    assert permissions["page.create"] is True

    # Edits apply to the next check without re-assigning
    response = await async_client.patch(
        f"/permissions/roles/{role['id']}", json={"permissions": {}}, headers=admin
    )
    assert response.status_code == 200
    response = await async_client.get("/permissions/me", headers=seed_identity["headers"]["editor"])
    assert response.json()["permissions"]["page.publish"] is True


async def test_delete_role_in_use_conflicts(async_client: AsyncClient, seed_identity: dict[str, Any]):
    admin = seed_identity["headers"]["admin"]
    editor_id = seed_identity["users"]["editor"]
    role = await create_role(async_client, admin)

    await async_client.post(
        "/permissions/assignments/user-role", json={"user_id": editor_id, "role_id": role["id"]}, headers=admin
    )

    response = await async_client.delete(f"/permissions/roles/{role['id']}", headers=admin)
    assert response.status_code == 409

    response = await async_client.post(
        "/permissions/assignments/user-role", json={"user_id": editor_id, "system_role": "editor"}, headers=admin
    )
    assert response.status_code == 200

    response = await async_client.delete(f"/permissions/roles/{role['id']}", headers=admin)
    assert response.status_code == 200


async def test_assignment_payload_requires_exactly_one_role(async_client: AsyncClient, seed_identity: dict[str, Any]):
    admin = seed_identity["headers"]["admin"]
    user_id = seed_identity["users"]["viewer"]

    response = await async_client.post(
        "/permissions/assignments/user-role", json={"user_id": user_id}, headers=admin
    )
    assert response.status_code == 400

    response = await async_client.post(
        "/permissions/assignments/user-role",
        json={"user_id": user_id, "role_id": 1, "system_role": "viewer"},
        headers=admin,
    )
    assert response.status_code == 400


async def test_only_superadmin_grants_superadmin(async_client: AsyncClient, seed_identity: dict[str, Any]):
    payload = {"user_id": seed_identity["users"]["viewer"], "system_role": "superadmin"}

    response = await async_client.post(
        "/permissions/assignments/user-role", json=payload, headers=seed_identity["headers"]["admin"]
    )
    assert response.status_code == 403

    response = await async_client.post(
        "/permissions/assignments/user-role", json=payload, headers=seed_identity["headers"]["superadmin"]
    )
    assert response.status_code == 200
    assert response.json()["user"]["role"] == "superadmin"


async def test_assignment_requires_user_update(async_client: AsyncClient, seed_identity: dict[str, Any]):
    response = await async_client.post(
        "/permissions/assignments/user-role",
        json={"user_id": seed_identity["users"]["viewer"], "system_role": "editor"},
        headers=seed_identity["headers"]["editor"],
    )
    assert response.status_code == 403


async def test_foreign_custom_role_reference_denies_everything(
    async_client: AsyncClient, seed_identity: dict[str, Any]
):
    async with AsyncSessionLocal() as session:
        foreign = CustomRole(
            organization_id=seed_identity["other_organization_id"],
            name="Globex Admin",
            based_on_role="admin",
            permissions={},
        )
        session.add(foreign)
        await session.flush()
        user = await session.get(User, seed_identity["users"]["viewer"])
        user.role = f"custom:{foreign.id}"
        user.custom_role_id = foreign.id
        await session.commit()

    headers = seed_identity["headers"]["viewer"]
    response = await async_client.get("/permissions/me", headers=headers)
    assert response.status_code == 200
    assert not any(response.json()["permissions"].values())

    response = await async_client.get("/users/", headers=headers)
    assert response.status_code == 403


async def test_unreadable_role_reference_denies_everything(async_client: AsyncClient, seed_identity: dict[str, Any]):
    async with AsyncSessionLocal() as session:
        user = await session.get(User, seed_identity["users"]["admin"])
        user.role = "reader"
        await session.commit()

    response = await async_client.get("/permissions/roles", headers=seed_identity["headers"]["admin"])
    assert response.status_code == 403


async def test_audit_logs(async_client: AsyncClient, seed_identity: dict[str, Any]):
    admin = seed_identity["headers"]["admin"]
    role = await create_role(async_client, admin)
    await async_client.patch(f"/permissions/roles/{role['id']}", json={"description": "edited"}, headers=admin)

    response = await async_client.get("/permissions/audit-logs", headers=admin)
    assert response.status_code == 200
    payload = response.json()
    assert payload["total"] == 2
    assert sorted(item["action"] for item in payload["items"]) == ["create", "update"]

    response = await async_client.get("/permissions/audit-logs", params={"action": "create"}, headers=admin)
    assert response.json()["total"] == 1

    # Another organization sees none of it
    response = await async_client.get("/permissions/audit-logs", headers=seed_identity["headers"]["outsider"])
    assert response.json()["total"] == 0


async def test_users_are_scoped_to_organization(async_client: AsyncClient, seed_identity: dict[str, Any]):
    admin = seed_identity["headers"]["admin"]

    response = await async_client.get("/users/me", headers=admin)
    assert response.status_code == 200
    assert response.json()["id"] == seed_identity["users"]["admin"]

    response = await async_client.get("/users/", headers=admin)
    assert response.status_code == 200
    assert seed_identity["users"]["outsider"] not in {user["id"] for user in response.json()}
    assert len(response.json()) == 5

    response = await async_client.get(f"/users/{seed_identity['users']['outsider']}", headers=admin)
    assert response.status_code == 404


async def test_unknown_user_token_is_rejected(async_client: AsyncClient, seed_identity: dict[str, Any]):
    response = await async_client.get("/users/me", headers=auth_headers("01HNOSUCHUSER0000000000000"))
    assert response.status_code == 401


async def test_admin_cannot_escalate_through_custom_roles(async_client: AsyncClient, seed_identity: dict[str, Any]):
    admin = seed_identity["headers"]["admin"]
    admin_id = seed_identity["users"]["admin"]

    response = await async_client.post(
        "/permissions/roles", json={"name": "Root-ish", "based_on_role": "superadmin"}, headers=admin
    )
    assert response.status_code == 403

    response = await async_client.post(
        "/permissions/roles",
        json={"name": "Admin Plus", "based_on_role": "admin", "permissions": {"organization.admin": True}},
        headers=admin,
    )
    assert response.status_code == 403

    # A superadmin-made role is still out of reach for the admin
    root = await create_role(
        async_client, seed_identity["headers"]["superadmin"], name="Root-ish", based_on_role="superadmin", permissions={}
    )
    response = await async_client.post(
        "/permissions/assignments/user-role", json={"user_id": admin_id, "role_id": root["id"]}, headers=admin
    )
    assert response.status_code == 403

    response = await async_client.patch(
        f"/permissions/roles/{root['id']}", json={"permissions": {"organization.admin": False}}, headers=admin
    )
    assert response.status_code == 403

    response = await async_client.get("/permissions/me", headers=admin)
    permissions = response.json()["permissions"]
    assert response.json()["role"] == "admin"
    assert permissions["organization.admin"] is False
    assert permissions["organization.manage"] is False
    assert permissions["user.manage"] is False


async def test_admin_cannot_rebase_a_role_onto_superadmin(async_client: AsyncClient, seed_identity: dict[str, Any]):
    admin = seed_identity["headers"]["admin"]
    role = await create_role(async_client, admin)

    response = await async_client.patch(
        f"/permissions/roles/{role['id']}", json={"based_on_role": "superadmin"}, headers=admin
    )
    assert response.status_code == 403

    response = await async_client.get(f"/permissions/roles/{role['id']}", headers=admin)
    assert response.json()["based_on_role"] == "editor"


async def test_superadmin_may_assign_superadmin_based_roles(async_client: AsyncClient, seed_identity: dict[str, Any]):
    superadmin = seed_identity["headers"]["superadmin"]
    root = await create_role(async_client, superadmin, name="Root-ish", based_on_role="superadmin", permissions={})

    response = await async_client.post(
        "/permissions/assignments/user-role",
        json={"user_id": seed_identity["users"]["viewer"], "role_id": root["id"]},
        headers=superadmin,
    )
    assert response.status_code == 200

    response = await async_client.get("/permissions/me", headers=seed_identity["headers"]["viewer"])
    assert response.json()["permissions"]["organization.admin"] is True


async def test_users_may_inspect_their_own_permissions(async_client: AsyncClient, seed_identity: dict[str, Any]):
    viewer_id = seed_identity["users"]["viewer"]
    headers = seed_identity["headers"]["viewer"]

    response = await async_client.get(f"/permissions/users/{viewer_id}", headers=headers)
    assert response.status_code == 200
    assert response.json()["role"] == "viewer"
    assert response.json()["permissions"]["page.read"] is True

    response = await async_client.post(
        f"/permissions/users/{viewer_id}/check", json={"resource": "page", "action": "delete"}, headers=headers
    )
    assert response.status_code == 200
    assert response.json()["has_permission"] is False


async def test_user_managers_may_inspect_members(async_client: AsyncClient, seed_identity: dict[str, Any]):
    editor_id = seed_identity["users"]["editor"]
    role = await create_role(async_client, seed_identity["headers"]["admin"])
    await async_client.post(
        "/permissions/assignments/user-role",
        json={"user_id": editor_id, "role_id": role["id"]},
        headers=seed_identity["headers"]["admin"],
    )

    for caller in ("admin", "superadmin"):
        headers = seed_identity["headers"][caller]

        response = await async_client.get(f"/permissions/users/{editor_id}", headers=headers)
        assert response.status_code == 200
        assert response.json()["role"] == f"custom:{role['id']}"
        assert response.json()["permissions"]["page.publish"] is False
        assert response.json()["permissions"]["course.publish"] is True

        response = await async_client.post(
            f"/permissions/users/{editor_id}/check", json={"resource": "page", "action": "create"}, headers=headers
        )
        assert response.json() == {"has_permission": True, "reason": None}


async def test_members_without_user_management_cannot_inspect_others(
    async_client: AsyncClient, seed_identity: dict[str, Any]
):
    viewer_id = seed_identity["users"]["viewer"]
    headers = seed_identity["headers"]["editor"]

    response = await async_client.get(f"/permissions/users/{viewer_id}", headers=headers)
    assert response.status_code == 403

    response = await async_client.post(
        f"/permissions/users/{viewer_id}/check", json={"resource": "page", "action": "read"}, headers=headers
    )
    assert response.status_code == 403


async def test_members_of_other_organizations_cannot_be_inspected(
    async_client: AsyncClient, seed_identity: dict[str, Any]
):
    admin = seed_identity["headers"]["admin"]

    response = await async_client.get(f"/permissions/users/{seed_identity['users']['outsider']}", headers=admin)
    assert response.status_code == 404

    response = await async_client.post(
        f"/permissions/users/{seed_identity['users']['outsider']}/check",
        json={"resource": "page", "action": "read"},
        headers=admin,
    )
    assert response.status_code == 404

    response = await async_client.get("/permissions/users/01HNOSUCHUSER0000000000000", headers=admin)
    assert response.status_code == 404


async def test_inspected_member_with_foreign_custom_role_is_denied_everything(
    async_client: AsyncClient, seed_identity: dict[str, Any]
):
    async with AsyncSessionLocal() as session:
        foreign = CustomRole(
            organization_id=seed_identity["other_organization_id"],
            name="Globex Admin",
            based_on_role="admin",
            permissions={},
        )
        session.add(foreign)
        await session.flush()
        user = await session.get(User, seed_identity["users"]["editor"])
        user.role = f"custom:{foreign.id}"
        user.custom_role_id = foreign.id
        await session.commit()

    response = await async_client.get(
        f"/permissions/users/{seed_identity['users']['editor']}", headers=seed_identity["headers"]["admin"]
    )
    assert response.status_code == 200
    assert not any(response.json()["permissions"].values())


async def test_zero_padded_role_reference_denies_everything(async_client: AsyncClient, seed_identity: dict[str, Any]):
    role = await create_role(async_client, seed_identity["headers"]["admin"])
    async with AsyncSessionLocal() as session:
        user = await session.get(User, seed_identity["users"]["viewer"])
        user.role = f"custom:00{role['id']}"
        await session.commit()

    response = await async_client.get("/permissions/me", headers=seed_identity["headers"]["viewer"])
    assert not any(response.json()["permissions"].values())

    # The padded reference does not resolve to the role, so it does not hold it either
    response = await async_client.delete(f"/permissions/roles/{role['id']}", headers=seed_identity["headers"]["admin"])
    assert response.status_code == 200


async def test_oversized_role_reference_denies_everything(async_client: AsyncClient, seed_identity: dict[str, Any]):
    async with AsyncSessionLocal() as session:
        user = await session.get(User, seed_identity["users"]["editor"])
        user.role = "custom:" + "9" * 40
        await session.commit()

    response = await async_client.get("/permissions/me", headers=seed_identity["headers"]["editor"])
    assert response.status_code == 200
    assert not any(response.json()["permissions"].values())

    response = await async_client.post(
        "/permissions/check", json={"resource": "page", "action": "read"}, headers=seed_identity["headers"]["editor"]
    )
    assert response.json()["has_permission"] is False
