from permit_hub.models.models import AuditLog, User


def test_user_admin_is_admin_only(client, officer, headers):
    assert client.get("/api/users", headers=headers(officer)).status_code == 403


def test_create_list_and_get(client, db_session, admin, headers):
    h = headers(admin)
    r = client.post(
        "/api/users",
        json={"email": "eng@acme-site.com", "password": "secret123", "firstName": "Eng", "lastName": "One", "role": "site_engineer"},
        headers=h,
    )
    assert r.status_code == 201, r.text
    created = r.json()["user"]
    assert created["role"] == "SITE_ENGINEER"
    assert created["isApproved"] is True

    dup = client.post(
        "/api/users",
        json={"email": "eng@acme-site.com", "password": "secret123", "firstName": "Eng", "lastName": "Two"},
        headers=h,
    )
    assert dup.status_code == 400

    listing = client.get("/api/users", params={"role": "SITE_ENGINEER"}, headers=h).json()
    assert listing["pagination"]["total"] == 1
    assert listing["users"][0]["permitCount"] == 0

    one = client.get(f"/api/users/{created['id']}", headers=h).json()["user"]
    assert one["email"] == "eng@acme-site.com"
    assert db_session.query(AuditLog).filter(AuditLog.action == "USER_CREATED").count() == 1


def test_update_and_soft_delete(client, db_session, admin, make_user, headers):
    target = make_user("REQUESTOR")
    h = headers(admin)

    r = client.put(f"/api/users/{target.id}", json={"department": "Electrical", "role": "SAFETY_OFFICER"}, headers=h)
    assert r.status_code == 200
    assert r.json()["user"]["department"] == "Electrical"
    assert r.json()["user"]["role"] == "SAFETY_OFFICER"

    assert client.put(f"/api/users/{admin.id}", json={"isActive": False}, headers=h).status_code == 400
    assert client.delete(f"/api/users/{admin.id}", headers=h).status_code == 400

    r = client.delete(f"/api/users/{target.id}", headers=h)
    assert r.status_code == 200
    db_session.expire_all()
    row = db_session.query(User).filter(User.id == target.id).first()
    assert row is not None
    assert row.is_active is False


def test_approve_twice_is_rejected(client, admin, make_user, headers):
    pending = make_user("REQUESTOR", approved=False, requested_role="SITE_ENGINEER")
    h = headers(admin)
    r = client.post(f"/api/users/{pending.id}/approve", headers=h)
    assert r.status_code == 200
    assert r.json()["user"]["role"] == "SITE_ENGINEER"
    again = client.post(f"/api/users/{pending.id}/approve", headers=h)
    assert again.status_code == 400
    assert again.json()["message"] == "User is already approved"


def test_reject_deactivates_with_reason(client, db_session, admin, make_user, headers):
    pending = make_user("REQUESTOR", approved=False, requested_role="ADMIN")
    r = client.post(f"/api/users/{pending.id}/reject", json={"reason": "Unknown person"}, headers=headers(admin))
    assert r.status_code == 200
    db_session.expire_all()
    row = db_session.query(User).filter(User.id == pending.id).first()
    assert row.is_active is False
    assert row.rejection_reason == "Unknown person"

    login = client.post("/api/auth/login", json={"email": row.email, "password": "secret123"})
    assert login.status_code == 401


def test_reject_without_body(client, admin, make_user, headers):
    pending = make_user("REQUESTOR", approved=False, requested_role="ADMIN")
    assert client.post(f"/api/users/{pending.id}/reject", headers=headers(admin)).status_code == 200


def test_stats_and_role_assignment(client, admin, make_user, headers):
    make_user("REQUESTOR", approved=False, requested_role="SAFETY_OFFICER")
    target = make_user("REQUESTOR")
    h = headers(admin)

    stats = client.get("/api/users/stats", headers=h).json()["stats"]
    assert stats["total"] == 3
    assert stats["pendingApproval"] == 1
    assert stats["byRole"]["REQUESTOR"] == 2

    r = client.patch(f"/api/users/{target.id}/role", json={"role": "SAFETY_OFFICER"}, headers=h)
    assert r.status_code == 200
    assert r.json()["user"]["role"] == "SAFETY_OFFICER"
    assert client.patch(f"/api/users/{target.id}/role", json={}, headers=h).status_code == 400
    assert client.patch(f"/api/users/{target.id}/role", json={"role": "NOPE"}, headers=h).status_code == 400
