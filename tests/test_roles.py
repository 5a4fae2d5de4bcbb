def test_any_user_can_list_roles(client, requestor, headers):
    r = client.get("/api/roles", headers=headers(requestor))
    assert r.status_code == 200
    names = {role["name"] for role in r.json()["roles"]}
    assert names == {"ADMIN", "SAFETY_OFFICER", "SITE_ENGINEER", "REQUESTOR"}
    assert "meters.export" in r.json()["availablePermissions"]


def test_custom_role_lifecycle(client, admin, make_user, headers):
    h = headers(admin)
    r = client.post(
        "/api/roles",
        json={"name": "store keeper", "permissions": ["meters.view", "permits.*"]},
        headers=h,
    )
    assert r.status_code == 201, r.text
    role = r.json()["role"]
    assert role["name"] == "STORE_KEEPER"
    assert role["displayName"] == "Store Keeper"
    assert role["isSystem"] is False

    assert client.post("/api/roles", json={"name": "STORE_KEEPER"}, headers=h).status_code == 400
    assert client.post("/api/roles", json={"name": "x", "permissions": ["nuke.all"]}, headers=h).status_code == 400

    r = client.put(f"/api/roles/{role['id']}", json={"permissions": ["meters.view"]}, headers=h)
    assert r.status_code == 200
    assert r.json()["role"]["permissions"] == ["meters.view"]

    holder = make_user("STORE_KEEPER")
    assert client.delete(f"/api/roles/{role['id']}", headers=h).status_code == 400
    client.patch(f"/api/users/{holder.id}/role", json={"role": "REQUESTOR"}, headers=h)
    assert client.delete(f"/api/roles/{role['id']}", headers=h).status_code == 200


def test_system_roles_cannot_be_deleted(client, admin, headers):
    h = headers(admin)
    roles = client.get("/api/roles", headers=h).json()["roles"]
    officer_role = next(r for r in roles if r["name"] == "SAFETY_OFFICER")
    r = client.delete(f"/api/roles/{officer_role['id']}", headers=h)
    assert r.status_code == 400
    assert r.json()["message"] == "System roles cannot be deleted"


def test_requesting_admin_role_needs_approval(client):
    r = client.post(
        "/api/auth/register",
        json={"email": "new@acme-site.com", "password": "secret123", "firstName": "N", "lastName": "U", "role": "ADMIN"},
    )
    assert r.status_code == 201
    assert r.json()["pendingApproval"] is True
    assert r.json()["requestedRole"] == "ADMIN"
