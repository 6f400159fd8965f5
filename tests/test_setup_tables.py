from conftest import make_property


# ===========================
# PROPERTY STATUSES
# ===========================
def test_status_code_is_lowercased_and_terminal_flagged(client):
    response = client.post("/api/statuses/", json={"name": "Closed", "code": "CLOSED"})

    assert response.status_code == 201
    data = response.json()["data"]
    assert data["code"] == "closed"
    assert data["color"] == "#6B7280"
    assert data["is_terminal"] is True


def test_status_requires_name_and_code(client):
    assert client.post("/api/statuses/", json={"code": "x"}).json()["message"] == "Status name is required"
    assert client.post("/api/statuses/", json={"name": "X"}).json()["message"] == "Status code is required"


def test_status_listing_marks_terminal_rows(client):
    rows = {s["code"]: s["is_terminal"] for s in client.get("/api/statuses/").json()["data"]}

    assert rows == {"available": False, "rented": True, "sold": True}


def test_duplicate_status_is_a_conflict(client):
    response = client.post("/api/statuses/", json={"name": "Sold", "code": "sold-again"})

    assert response.status_code == 409
    assert response.json()["message"] == "Status with this name or code already exists"


def test_status_in_use_cannot_be_deleted(client, ids):
    make_property(ids, status="sold")

    in_use = client.delete(f"/api/statuses/{ids['sold']}")
    unused = client.delete(f"/api/statuses/{ids['rented']}")

    assert in_use.status_code == 409
    assert in_use.json()["message"] == "Cannot delete status - it is being used by existing properties"
    assert unused.status_code == 200


def test_agents_cannot_edit_statuses(client, actor, ids):
    actor.use("agent")

    assert client.get("/api/statuses/").status_code == 200
    assert client.put(f"/api/statuses/{ids['sold']}", json={"color": "#000000"}).status_code == 403


# ===========================
# CATEGORIES
# ===========================
def test_category_code_is_uppercased(client):
    response = client.post("/api/categories/", json={"name": "Villa", "code": "vl"})

    assert response.status_code == 201
    assert response.json()["data"]["code"] == "VL"


def test_category_active_filter(client, ids):
    client.put(f"/api/categories/{ids['other']}", json={"is_active": False})

    names = [c["name"] for c in client.get("/api/categories/", params={"active_only": True}).json()["data"]]

    assert names == ["Apartment"]


def test_category_in_use_cannot_be_deleted(client, ids):
    make_property(ids)

    response = client.delete(f"/api/categories/{ids['apartment']}")

    assert response.status_code == 409
    assert response.json()["message"] == "Cannot delete category - it is being used by existing properties"


# ===========================
# REFERENCE SOURCES & SETTINGS
# ===========================
def test_reference_sources(client, actor):
    created = client.post("/api/reference-sources/", json={"source_name": "Instagram"})
    duplicate = client.post("/api/reference-sources/", json={"source_name": "Facebook"})

    assert created.status_code == 201
    assert duplicate.status_code == 409
    names = [s["source_name"] for s in client.get("/api/reference-sources/").json()["data"]]
    assert names == ["Facebook", "Instagram"]

    actor.use("agent")
    assert client.post("/api/reference-sources/", json={"source_name": "Flyer"}).status_code == 403


def test_settings_upsert(client, actor):
    created = client.put("/api/settings/commission_finders", json={"setting_value": "1.5", "description": "Finders %"})
    updated = client.put("/api/settings/commission_finders", json={"setting_value": "2"})

    assert created.status_code == 200
    assert updated.json()["data"]["setting_value"] == "2"
    assert updated.json()["data"]["description"] == "Finders %"
    assert client.get("/api/settings/missing").status_code == 404

    actor.use("operations")
    assert client.get("/api/settings/").status_code == 403
