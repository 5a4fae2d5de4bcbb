import uuid

import pytest
from fastapi import HTTPException
from sqlalchemy import update

from permit_hub.models.models import PermitApproval, PermitRequest
from permit_hub.services.permits import decide_approval


def _decide(client, headers, user, approval_id, decision="APPROVED", **extra):
    return client.put(
        f"/api/approvals/{approval_id}/decision",
        json={"decision": decision, **extra},
        headers=headers(user),
    )


def test_decide_example(client, requestor, officer, headers, create_permit):
    permit = create_permit(requestor)
    approval_id = permit["approvals"][0]["id"]

    r = _decide(client, headers, officer, approval_id, comment="ok")
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["message"] == "Permit approved successfully"
    assert body["approval"]["decision"] == "APPROVED"
    assert body["approval"]["comment"] == "ok"
    assert body["approval"]["approverName"] == officer.full_name
    assert body["approval"]["approvedAt"] is not None

    refetched = client.get(f"/api/permits/{permit['id']}", headers=headers(requestor)).json()["permit"]
    assert refetched["status"] == "APPROVED"

    again = _decide(client, headers, officer, approval_id, decision="REJECTED")
    assert again.status_code == 400
    assert again.json()["message"] == "This approval has already been processed"

    # Status still mirrors the first decision
    refetched = client.get(f"/api/permits/{permit['id']}", headers=headers(requestor)).json()["permit"]
    assert refetched["status"] == "APPROVED"


def test_reject_mirrors_onto_permit(client, requestor, admin, headers, create_permit):
    permit = create_permit(requestor)
    r = _decide(client, headers, admin, permit["approvals"][0]["id"], decision="rejected", comment="No fire watch")
    assert r.status_code == 200
    assert r.json()["message"] == "Permit rejected successfully"
    refetched = client.get(f"/api/permits/{permit['id']}", headers=headers(requestor)).json()["permit"]
    assert refetched["status"] == "REJECTED"


def test_decision_validation_and_roles(client, requestor, officer, headers, create_permit):
    permit = create_permit(requestor)
    approval_id = permit["approvals"][0]["id"]
    assert _decide(client, headers, requestor, approval_id).status_code == 403
    assert _decide(client, headers, officer, approval_id, decision="MAYBE").status_code == 400
    assert _decide(client, headers, officer, "00000000-0000-0000-0000-000000000000").status_code == 404


def test_listing_counts_and_stats(client, requestor, officer, headers, create_permit):
    first = create_permit(requestor, title="Weld tank")
    create_permit(requestor, title="Paint wall", location="Block B")
    h = headers(officer)

    assert client.get("/api/approvals/pending-count", headers=h).json()["count"] == 2

    _decide(client, headers, officer, first["approvals"][0]["id"])
    assert client.get("/api/approvals/pending-count", headers=h).json()["count"] == 1

    listing = client.get("/api/approvals", params={"decision": "pending"}, headers=h).json()
    assert listing["pagination"]["total"] == 1
    assert listing["approvals"][0]["permit"]["title"] == "Paint wall"

    searched = client.get("/api/approvals", params={"search": "block b"}, headers=h).json()
    assert searched["pagination"]["total"] == 1

    stats = client.get("/api/approvals/stats", headers=h).json()
    assert stats["stats"] == {"pending": 1, "approved": 1, "rejected": 0, "total": 2, "approvalRate": 100.0}
    assert stats["recentApprovals"][0]["permit"]["title"] == "Weld tank"

    one = client.get(f"/api/approvals/{first['approvals'][0]['id']}", headers=h).json()["approval"]
    assert one["decision"] == "APPROVED"
    assert one["permit"]["id"] == first["id"]


def test_requestor_cannot_list_approvals(client, requestor, headers):
    assert client.get("/api/approvals", headers=headers(requestor)).status_code == 403


def test_decision_lost_to_a_concurrent_decider(db_session, requestor, officer, create_permit):
    permit = create_permit(requestor)
    approval = db_session.get(PermitApproval, uuid.UUID(permit["approvals"][0]["id"]))
    assert approval.decision == "PENDING"

    # Another decider commits first; this session's copy still reads PENDING
    db_session.execute(
        update(PermitApproval)
        .where(PermitApproval.id == approval.id)
        .values(decision="REJECTED")
        .execution_options(synchronize_session=False)
    )
    assert approval.decision == "PENDING"

    with pytest.raises(HTTPException) as exc:
        decide_approval(db_session, approval.id, decision="APPROVED", actor=officer)
    assert exc.value.status_code == 400
    assert exc.value.detail == "This approval has already been processed"

    stored = db_session.get(PermitRequest, uuid.UUID(permit["id"]))
    assert stored.status == "PENDING"
