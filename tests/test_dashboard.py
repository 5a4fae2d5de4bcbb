def test_stats_are_scoped_for_requestors(client, make_user, requestor, officer, headers, create_permit):
    mine = create_permit(requestor)
    create_permit(make_user("REQUESTOR"), workType="EXCAVATION")
    client.put(
        f"/api/approvals/{mine['approvals'][0]['id']}/decision",
        json={"decision": "APPROVED"},
        headers=headers(officer),
    )

    own = client.get("/api/dashboard/stats", headers=headers(requestor)).json()
    assert own["stats"]["totalPermits"] == 1
    assert own["stats"]["approved"] == 1
    assert "pendingApprovals" not in own["stats"]
    assert [w["workType"] for w in own["byWorkType"]] == ["HOT_WORK"]

    everything = client.get("/api/dashboard/stats", headers=headers(officer)).json()
    assert everything["stats"]["totalPermits"] == 2
    assert everything["stats"]["pending"] == 1
    assert everything["stats"]["pendingApprovals"] == 1
    assert len(everything["recentPermits"]) == 2


def test_activity_feed(client, requestor, officer, headers, create_permit):
    create_permit(requestor)
    create_permit(officer)

    own = client.get("/api/dashboard/activity", headers=headers(requestor)).json()["activities"]
    assert [a["action"] for a in own] == ["PERMIT_CREATED"]

    feed = client.get("/api/dashboard/activity", params={"limit": 1}, headers=headers(officer)).json()["activities"]
    assert len(feed) == 1
