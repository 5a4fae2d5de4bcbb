import uuid

from permit_hub.models.models import PermitApproval, PermitRequest, Worker


def test_create_permit_example(client, requestor, headers, permit_payload):
    r = client.post("/api/permits", json=permit_payload, headers=headers(requestor))
    assert r.status_code == 201, r.text
    permit = r.json()["permit"]
    assert permit["status"] == "PENDING"
    assert permit["hazards"] == ["Fire"]
    assert permit["permitNumber"].startswith("PTW-")
    assert len(permit["approvals"]) == 1
    assert permit["approvals"][0]["decision"] == "PENDING"
    assert permit["approvals"][0]["approverRole"] == "SAFETY_OFFICER"


def test_create_writes_exactly_one_approval(client, db_session, requestor, create_permit):
    permit = create_permit(requestor)
    approvals = db_session.query(PermitApproval).filter(PermitApproval.permit_id == uuid.UUID(permit["id"])).all()
    assert len(approvals) == 1


def test_create_rejects_bad_input(client, requestor, headers, permit_payload):
    r = client.post("/api/permits", json=dict(permit_payload, workType="NOPE"), headers=headers(requestor))
    assert r.status_code == 400
    assert r.json()["message"] == "Invalid work type"

    r = client.post("/api/permits", json=dict(permit_payload, endDate="2023-12-31"), headers=headers(requestor))
    assert r.status_code == 400

    r = client.post("/api/permits", json=dict(permit_payload, title="  "), headers=headers(requestor))
    assert r.status_code == 400


def test_create_requires_auth_and_role(client, engineer, headers, permit_payload):
    assert client.post("/api/permits", json=permit_payload).status_code == 401
    assert client.post("/api/permits", json=permit_payload, headers=headers(engineer)).status_code == 403


def test_requestor_cannot_touch_another_users_permit(client, make_user, requestor, headers, create_permit):
    permit = create_permit(requestor)
    other = make_user("REQUESTOR")
    h = headers(other)
    assert client.get(f"/api/permits/{permit['id']}", headers=h).status_code == 403
    assert client.put(f"/api/permits/{permit['id']}", json={"title": "X"}, headers=h).status_code == 403
    assert client.delete(f"/api/permits/{permit['id']}", headers=h).status_code == 403


def test_list_is_scoped_for_requestors(client, make_user, requestor, officer, headers, create_permit):
    create_permit(requestor)
    create_permit(make_user("REQUESTOR"), title="Other")

    mine = client.get("/api/permits", headers=headers(requestor)).json()
    assert mine["pagination"]["total"] == 1
    assert mine["permits"][0]["title"] == "T"

    everything = client.get("/api/permits", headers=headers(officer)).json()
    assert everything["pagination"]["total"] == 2


def test_list_filters(client, officer, requestor, headers, create_permit):
    create_permit(requestor, title="Weld pipe rack")
    create_permit(requestor, title="Dig trench", workType="EXCAVATION")
    h = headers(officer)
    r = client.get("/api/permits", params={"workType": "EXCAVATION"}, headers=h).json()
    assert [p["title"] for p in r["permits"]] == ["Dig trench"]
    r = client.get("/api/permits", params={"search": "pipe"}, headers=h).json()
    assert [p["title"] for p in r["permits"]] == ["Weld pipe rack"]
    r = client.get("/api/permits", params={"sortBy": "title", "sortOrder": "asc"}, headers=h).json()
    assert [p["title"] for p in r["permits"]] == ["Dig trench", "Weld pipe rack"]


def test_partial_update_leaves_other_fields(client, requestor, headers, create_permit):
    permit = create_permit(requestor, precautions=["Fire watch"])
    r = client.put(f"/api/permits/{permit['id']}", json={"title": "Renamed"}, headers=headers(requestor))
    assert r.status_code == 200
    updated = r.json()["permit"]
    assert updated["title"] == "Renamed"
    assert updated["hazards"] == ["Fire"]
    assert updated["precautions"] == ["Fire watch"]


def test_update_after_decision_only_for_admin(client, requestor, officer, admin, headers, create_permit):
    permit = create_permit(requestor)
    approval_id = permit["approvals"][0]["id"]
    client.put(f"/api/approvals/{approval_id}/decision", json={"decision": "APPROVED"}, headers=headers(officer))

    r = client.put(f"/api/permits/{permit['id']}", json={"title": "Late"}, headers=headers(requestor))
    assert r.status_code == 400
    assert r.json()["message"] == "Cannot update permit that is already processed"

    r = client.put(f"/api/permits/{permit['id']}", json={"title": "Late"}, headers=headers(admin))
    assert r.status_code == 200


def test_delete_removes_approvals_and_workers(client, db_session, requestor, headers, create_permit):
    permit = create_permit(requestor)
    client.post(
        f"/api/permits/{permit['id']}/workers",
        json={"contractor": {"name": "Acme"}, "workers": [{"name": "Ravi"}]},
    )
    r = client.delete(f"/api/permits/{permit['id']}", headers=headers(requestor))
    assert r.status_code == 200
    db_session.expire_all()
    assert db_session.query(PermitRequest).count() == 0
    assert db_session.query(PermitApproval).count() == 0
    assert db_session.query(Worker).count() == 0


def test_extend_and_close(client, requestor, officer, headers, create_permit):
    permit = create_permit(requestor)
    pid = permit["id"]
    h = headers(officer)

    # Not yet approved
    r = client.put(f"/api/permits/{pid}/extend", json={"newEndDate": "2024-01-05"}, headers=h)
    assert r.status_code == 400

    client.put(f"/api/approvals/{permit['approvals'][0]['id']}/decision", json={"decision": "APPROVED"}, headers=h)

    r = client.put(f"/api/permits/{pid}/extend", json={"newEndDate": "2024-01-01T12:00:00"}, headers=h)
    assert r.status_code == 400

    r = client.put(f"/api/permits/{pid}/extend", json={"newEndDate": "2024-01-05", "reason": "Rain delay"}, headers=h)
    assert r.status_code == 200
    extended = r.json()["permit"]
    assert extended["status"] == "EXTENDED"
    assert extended["isExtended"] is True
    assert extended["extensionReason"] == "Rain delay"
    assert extended["endDate"].startswith("2024-01-05")

    r = client.put(f"/api/permits/{pid}/close", json={"remarks": "Work complete"}, headers=headers(requestor))
    assert r.status_code == 200
    assert r.json()["permit"]["status"] == "CLOSED"
    assert r.json()["permit"]["closureRemarks"] == "Work complete"

    r = client.put(f"/api/permits/{pid}/close", json={}, headers=h)
    assert r.status_code == 400


def test_measures_update(client, requestor, headers, create_permit):
    permit = create_permit(requestor)
    measures = [{"id": 1, "question": "Fire extinguisher at site?", "answer": "yes"}]
    r = client.put(f"/api/permits/{permit['id']}/measures", json={"measures": measures}, headers=headers(requestor))
    assert r.status_code == 200
    assert r.json()["permit"]["measures"] == [{"id": 1, "question": "Fire extinguisher at site?", "answer": "YES"}]

    bad = [{"question": "Q", "answer": "MAYBE"}]
    r = client.put(f"/api/permits/{permit['id']}/measures", json={"measures": bad}, headers=headers(requestor))
    assert r.status_code == 400


def test_public_endpoints_and_worker_registration(client, requestor, headers, create_permit):
    assert len(client.get("/api/permits/work-types").json()["workTypes"]) == 15

    permit = create_permit(requestor)
    info = client.get(f"/api/permits/{permit['id']}/public").json()["permit"]
    assert info["permitNumber"] == permit["permitNumber"]
    assert info["registeredWorkers"] == 0

    r = client.post(
        f"/api/permits/{permit['id']}/workers",
        json={
            "contractor": {"name": "Acme Contracting", "phone": "555-0100", "company": "Acme"},
            "workers": [{"name": "Ravi", "trade": "Welder"}, {"name": "Sam", "badgeNumber": "B-7"}],
        },
    )
    assert r.status_code == 201, r.text
    assert [w["name"] for w in r.json()["workers"]] == ["Ravi", "Sam"]

    detail = client.get(f"/api/permits/{permit['id']}", headers=headers(requestor)).json()["permit"]
    assert detail["contractorName"] == "Acme Contracting"
    assert {w["badgeNumber"] for w in detail["registeredWorkers"]} == {None, "B-7"}


def test_worker_registration_rejects_empty_list(client, requestor, create_permit):
    permit = create_permit(requestor)
    r = client.post(f"/api/permits/{permit['id']}/workers", json={"contractor": {}, "workers": []})
    assert r.status_code == 400


def test_unknown_permit_and_bad_id(client, officer, headers):
    h = headers(officer)
    assert client.get("/api/permits/00000000-0000-0000-0000-000000000000", headers=h).status_code == 404
    assert client.get("/api/permits/not-a-uuid", headers=h).status_code == 400


def test_pdf_download_and_worker_qr(client, requestor, headers, create_permit):
    permit = create_permit(requestor)
    r = client.get(f"/api/permits/{permit['id']}/pdf", headers=headers(requestor))
    assert r.status_code == 200
    assert r.headers["content-type"] == "application/pdf"
    assert r.headers["content-disposition"] == f'attachment; filename="{permit["permitNumber"]}.pdf"'
    assert r.content.startswith(b"%PDF")

    qr = client.get(f"/api/permits/{permit['id']}/worker-qr", headers=headers(requestor)).json()
    assert qr["qrCode"].startswith("data:image/png;base64,")
    assert qr["registrationUrl"].endswith(f"/worker-register/{permit['id']}")
