from conftest import make_lead


def test_create_uppercases_code_and_applies_defaults(client):
    response = client.post("/api/lead-statuses/", json={"status_name": "Hot Lead", "code": "hot"})

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "Lead status created successfully"
    assert body["data"]["code"] == "HOT"
    assert body["data"]["color"] == "#6B7280"
    assert body["data"]["description"] == ""
    assert body["data"]["is_active"] is True
    assert body["data"]["can_be_referred"] is True


def test_create_requires_name_then_code(client):
    missing_name = client.post("/api/lead-statuses/", json={"code": "X"})
    missing_code = client.post("/api/lead-statuses/", json={"status_name": "Cold"})

    assert missing_name.status_code == 400
    assert missing_name.json() == {"success": False, "message": "Status name is required"}
    assert missing_code.status_code == 400
    assert missing_code.json()["message"] == "Status code is required"


def test_duplicate_name_is_a_conflict(client):
    response = client.post("/api/lead-statuses/", json={"status_name": "Active", "code": "NEW"})

    assert response.status_code == 409
    assert response.json()["success"] is False
    assert "already exists" in response.json()["message"]


def test_update_merges_omitted_fields(client, ids):
    response = client.put(f"/api/lead-statuses/{ids['closed']}", json={"color": "#FF0000"})

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["color"] == "#FF0000"
    assert data["status_name"] == "Closed"
    assert data["code"] == "CLOSED"
    assert data["can_be_referred"] is False


def test_delete_in_use_status_is_rejected(client, ids):
    make_lead(ids, status="closed")

    response = client.delete(f"/api/lead-statuses/{ids['closed']}")

    assert response.status_code == 409
    assert response.json()["message"] == "Cannot delete lead status - it is being used by existing leads"


def test_delete_unused_status(client, ids):
    response = client.delete(f"/api/lead-statuses/{ids['closed']}")

    assert response.status_code == 200
    assert response.json()["message"] == "Lead status deleted successfully"
    assert client.get(f"/api/lead-statuses/{ids['closed']}").status_code == 404


def test_unknown_status_is_not_found(client):
    response = client.get("/api/lead-statuses/9999")

    assert response.status_code == 404
    assert response.json()["message"] == "Lead status not found"


def test_agents_cannot_manage_statuses(client, actor):
    actor.use("agent")

    response = client.post("/api/lead-statuses/", json={"status_name": "Mine", "code": "MINE"})

    assert response.status_code == 403
    assert response.json()["message"] == "Insufficient permissions"
