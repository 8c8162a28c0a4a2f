"""HTTP surface of /organizations and /users."""
import pytest

from tests.conftest import auth_headers


async def _check(client, org_id, user, permission):
    response = await client.post(
        f"/access/{org_id}/check", json={"permission": permission}, headers=auth_headers(user)
    )
    return response.json()["state"]


@pytest.mark.asyncio
async def test_system_admin_creates_organization_and_becomes_owner(client, seeded):
    root = seeded.users["root"]

    created = await client.post(
        "/organizations/",
        json={"name": "Initech", "slug": "initech", "plan_type": "enterprise", "billing_email": "ap@initech.io"},
        headers=auth_headers(root),
    )
    assert created.status_code == 201
    assert created.json()["member_count"] == 1

    mine = await client.get("/organizations/my", headers=auth_headers(root))
    assert [(m["organization"]["slug"], m["role"]) for m in mine.json()] == [("initech", "owner")]


@pytest.mark.asyncio
async def test_duplicate_slug_is_rejected(client, seeded):
    response = await client.post(
        "/organizations/", json={"name": "Acme Two", "slug": "acme"}, headers=auth_headers(seeded.users["root"])
    )

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_only_system_admin_creates_organizations(client, seeded):
    response = await client.post(
        "/organizations/", json={"name": "Side", "slug": "side"}, headers=auth_headers(seeded.users["owner"])
    )

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_my_organizations_lists_roles(client, seeded):
    response = await client.get("/organizations/my", headers=auth_headers(seeded.users["viewer"]))

    assert sorted((m["organization"]["slug"], m["role"]) for m in response.json()) == [
        ("acme", "viewer"), ("globex", "viewer"),
    ]


@pytest.mark.asyncio
async def test_switch_organization_requires_membership(client, seeded):
    member = await client.post(
        "/organizations/switch",
        json={"organization_id": seeded.orgs["acme"].id},
        headers=auth_headers(seeded.users["member"]),
    )
    outsider = await client.post(
        "/organizations/switch",
        json={"organization_id": seeded.orgs["acme"].id},
        headers=auth_headers(seeded.users["outsider"]),
    )

    assert member.status_code == 200
    assert member.json()["role"] == "member"
    assert outsider.status_code == 403


@pytest.mark.asyncio
async def test_plan_update_rejects_unknown_module(client, seeded):
    response = await client.put(
        f"/organizations/{seeded.orgs['acme'].id}/plan",
        json={"plan_type": "pro", "features_config": {"modules": {"warp": True}}},
        headers=auth_headers(seeded.users["root"]),
    )

    assert response.status_code == 400
    assert "Unknown modules: warp" in response.json()["features_config"]


@pytest.mark.asyncio
async def test_plan_update_requires_system_admin(client, seeded):
    response = await client.put(
        f"/organizations/{seeded.orgs['acme'].id}/plan",
        json={"plan_type": "enterprise"},
        headers=auth_headers(seeded.users["owner"]),
    )

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_organization_settings_need_manage_organization(client, seeded):
    org_id = seeded.orgs["acme"].id

    denied = await client.patch(
        f"/organizations/{org_id}", json={"name": "Acme Inc"}, headers=auth_headers(seeded.users["analyst"])
    )
    allowed = await client.patch(
        f"/organizations/{org_id}", json={"name": "Acme Inc"}, headers=auth_headers(seeded.users["admin"])
    )

    assert denied.status_code == 403
    assert allowed.status_code == 200
    assert allowed.json()["name"] == "Acme Inc"
    assert allowed.json()["slug"] == "acme"


@pytest.mark.asyncio
async def test_members_module_is_locked_on_starter(client, seeded):
    response = await client.get(
        f"/organizations/{seeded.orgs['acme'].id}/members", headers=auth_headers(seeded.users["admin"])
    )

    assert response.status_code == 403
    assert response.json()["detail"]["required_plan"] == "pro"


@pytest.mark.asyncio
async def test_role_change_takes_effect_without_waiting_for_cache(client, seeded):
    org_id = seeded.orgs["globex"].id
    viewer = seeded.users["viewer"]
    assert await _check(client, org_id, viewer, "manage_questions") == "denied"

    response = await client.patch(
        f"/organizations/{org_id}/members/{viewer.id}",
        json={"role": "analyst"},
        headers=auth_headers(seeded.users["admin"]),
    )

    assert response.status_code == 200
    assert response.json()["role"] == "analyst"
    assert await _check(client, org_id, viewer, "manage_questions") == "granted"


@pytest.mark.asyncio
async def test_admin_cannot_grant_equal_role(client, seeded):
    response = await client.patch(
        f"/organizations/{seeded.orgs['globex'].id}/members/{seeded.users['viewer'].id}",
        json={"role": "admin"},
        headers=auth_headers(seeded.users["admin"]),
    )

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_admin_cannot_change_owner(client, seeded):
    response = await client.patch(
        f"/organizations/{seeded.orgs['globex'].id}/members/{seeded.users['owner'].id}",
        json={"role": "viewer"},
        headers=auth_headers(seeded.users["admin"]),
    )

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_role_none_cannot_be_assigned(client, seeded):
    response = await client.patch(
        f"/organizations/{seeded.orgs['globex'].id}/members/{seeded.users['viewer'].id}",
        json={"role": "none"},
        headers=auth_headers(seeded.users["owner"]),
    )

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_invited_user_gets_role_after_accepting(client, seeded):
    org_id = seeded.orgs["globex"].id
    outsider = seeded.users["outsider"]

    invited = await client.post(
        f"/organizations/{org_id}/members",
        json={"user_id": outsider.id, "role": "viewer"},
        headers=auth_headers(seeded.users["admin"]),
    )
    assert invited.status_code == 201
    assert invited.json()["status"] == "invited"

    before = await client.get(f"/access/{org_id}/role", headers=auth_headers(outsider))
    assert before.json()["role"] == "none"

    accepted = await client.post(f"/organizations/{org_id}/members/accept", headers=auth_headers(outsider))
    assert accepted.status_code == 200

    after = await client.get(f"/access/{org_id}/role", headers=auth_headers(outsider))
    assert after.json()["role"] == "viewer"


@pytest.mark.asyncio
async def test_duplicate_invitation_conflicts(client, seeded):
    response = await client.post(
        f"/organizations/{seeded.orgs['globex'].id}/members",
        json={"user_id": seeded.users["viewer"].id, "role": "viewer"},
        headers=auth_headers(seeded.users["admin"]),
    )

    assert response.status_code == 409


@pytest.mark.asyncio
async def test_removed_member_loses_access(client, seeded):
    org_id = seeded.orgs["globex"].id
    analyst = seeded.users["analyst"]
    assert await _check(client, org_id, analyst, "view_analytics") == "granted"

    removed = await client.delete(
        f"/organizations/{org_id}/members/{analyst.id}", headers=auth_headers(seeded.users["admin"])
    )

    assert removed.status_code == 204
    assert await _check(client, org_id, analyst, "view_analytics") == "denied"


@pytest.mark.asyncio
async def test_user_profile(client, seeded):
    response = await client.get("/users/me", headers=auth_headers(seeded.users["analyst"]))

    assert response.status_code == 200
    assert response.json()["email"] == "analyst@acme.io"
    assert response.json()["is_system_admin"] is False


@pytest.mark.asyncio
async def test_system_admin_flag_applies_immediately(client, seeded):
    org_id = seeded.orgs["globex"].id
    analyst = seeded.users["analyst"]
    root_headers = auth_headers(seeded.users["root"])
    assert await _check(client, org_id, analyst, "manage_billing") == "denied"

    promoted = await client.patch(f"/users/{analyst.id}/admin", headers=root_headers)
    assert promoted.json()["is_system_admin"] is True
    assert await _check(client, org_id, analyst, "manage_billing") == "granted"

    await client.patch(f"/users/{analyst.id}/admin", headers=root_headers)
    assert await _check(client, org_id, analyst, "manage_billing") == "denied"


@pytest.mark.asyncio
async def test_system_admin_cannot_toggle_self(client, seeded):
    root = seeded.users["root"]

    response = await client.patch(f"/users/{root.id}/admin", headers=auth_headers(root))

    assert response.status_code == 400
