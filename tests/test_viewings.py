from datetime import date
from types import SimpleNamespace

import pytest

from app.models import tables
from app.services import viewings
from conftest import make_lead, make_property, query_all


def create_viewing(client, property_id, lead_id, **fields):
    body = {
        "property_id": property_id,
        "lead_id": lead_id,
        "viewing_date": "2024-05-10",
        "viewing_time": "14:30",
    }
    body.update(fields)
    return client.post("/api/viewings/", json=body)


@pytest.fixture()
def listing(ids):
    return make_property(ids, agent="agent"), make_lead(ids, agent="agent")


def test_status_parsing_is_case_insensitive():
    assert viewings.parse_status("follow up") is viewings.ViewingStatus.FOLLOW_UP
    assert viewings.parse_status(" NO SHOW ") is viewings.ViewingStatus.NO_SHOW
    with pytest.raises(ValueError):
        viewings.parse_status("Lost")


def test_current_status_and_timeline_order():
    empty = SimpleNamespace(updates=[])
    updates = [
        SimpleNamespace(id=1, status="Scheduled"),
        SimpleNamespace(id=3, status="Offer Made"),
        SimpleNamespace(id=2, status="Negotiation"),
    ]
    viewing = SimpleNamespace(updates=updates)

    assert viewings.current_status(empty) == "Scheduled"
    assert viewings.current_status(viewing) == "Offer Made"
    assert [u.id for u in viewings.timeline(viewing)] == [3, 2, 1]
    # Stored order is untouched
    assert [u.id for u in viewing.updates] == [1, 3, 2]


def test_agent_creates_viewing_for_own_property(client, actor, ids, listing):
    property_id, lead_id = listing
    actor.use("agent")

    response = create_viewing(client, property_id, lead_id, is_serious=True)

    assert response.status_code == 201
    data = response.json()["data"]
    assert data["agent_id"] == ids["agent"]
    assert data["current_status"] == "Scheduled"
    assert data["updates"] == []

    notified = {n.user_id for n in query_all(tables.Notification)}
    assert notified == {ids["admin"], ids["ops_manager"], ids["operations"]}


def test_agent_cannot_create_viewing_on_someone_elses_property(client, actor, ids, listing):
    property_id, lead_id = listing
    actor.use("agent2")

    response = create_viewing(client, property_id, lead_id)

    assert response.status_code == 403
    assert response.json()["message"] == "You can only create viewings for properties assigned to you"


def test_management_must_name_the_agent(client, ids, listing):
    property_id, lead_id = listing

    missing = create_viewing(client, property_id, lead_id)
    wrong_role = create_viewing(client, property_id, lead_id, agent_id=ids["accountant"])
    ok = create_viewing(client, property_id, lead_id, agent_id=ids["agent2"])

    assert missing.status_code == 400
    assert missing.json()["message"] == "agent_id is required"
    assert wrong_role.status_code == 400
    assert ok.status_code == 201
    assert ok.json()["data"]["agent_id"] == ids["agent2"]


def test_timeline_updates(client, actor, ids, listing):
    property_id, lead_id = listing
    actor.use("agent")
    viewing_id = create_viewing(client, property_id, lead_id).json()["data"]["id"]

    first = client.post(f"/api/viewings/{viewing_id}/updates", json={"status": "follow up", "update_text": "Called back"})
    second = client.post(
        f"/api/viewings/{viewing_id}/updates",
        json={"status": "Offer Made", "update_text": "Offer at 240k", "update_date": "2024-05-12"},
    )
    invalid = client.post(f"/api/viewings/{viewing_id}/updates", json={"status": "Lost", "update_text": "?"})

    assert first.status_code == 201
    assert first.json()["data"]["status"] == "Follow Up"
    assert first.json()["data"]["update_date"] == date.today().isoformat()
    assert second.status_code == 201
    assert invalid.status_code == 400
    assert invalid.json()["message"].startswith("Invalid status")

    listed = client.get(f"/api/viewings/{viewing_id}/updates").json()
    assert [u["status"] for u in listed["data"]] == ["Offer Made", "Follow Up"]
    assert listed["current_status"] == "Offer Made"
    assert client.get(f"/api/viewings/{viewing_id}").json()["data"]["current_status"] == "Offer Made"


def test_only_author_or_privileged_roles_edit_updates(client, actor, ids, listing):
    property_id, lead_id = listing
    viewing_id = create_viewing(client, property_id, lead_id, agent_id=ids["agent"]).json()["data"]["id"]
    actor.use("agent")
    update_id = client.post(
        f"/api/viewings/{viewing_id}/updates", json={"status": "Scheduled", "update_text": "Booked"}
    ).json()["data"]["id"]

    actor.use("leader")
    # Team leaders see their agents' viewings but cannot rewrite their notes
    denied = client.put(f"/api/viewings/{viewing_id}/updates/{update_id}", json={"update_text": "Changed"})
    assert denied.status_code == 403

    actor.use("operations")
    allowed = client.put(f"/api/viewings/{viewing_id}/updates/{update_id}", json={"status": "completed"})
    assert allowed.status_code == 200
    assert allowed.json()["data"]["status"] == "Completed"
    assert allowed.json()["data"]["update_text"] == "Booked"


def test_list_is_scoped_and_filterable(client, actor, ids, listing):
    property_id, lead_id = listing
    create_viewing(client, property_id, lead_id, agent_id=ids["agent"], is_serious=True)
    create_viewing(client, property_id, lead_id, agent_id=ids["agent2"])

    assert client.get("/api/viewings/").json()["total"] == 2
    assert client.get("/api/viewings/", params={"is_serious": True}).json()["total"] == 1

    actor.use("agent2")
    rows = client.get("/api/viewings/").json()["data"]
    assert [v["agent_id"] for v in rows] == [ids["agent2"]]

    actor.use("leader")
    assert client.get("/api/viewings/").json()["total"] == 1


def test_delete_requires_operations_roles(client, actor, ids, listing):
    property_id, lead_id = listing
    viewing_id = create_viewing(client, property_id, lead_id, agent_id=ids["agent"]).json()["data"]["id"]

    actor.use("agent")
    assert client.delete(f"/api/viewings/{viewing_id}").status_code == 403

    actor.use("operations")
    assert client.delete(f"/api/viewings/{viewing_id}").status_code == 200
    assert query_all(tables.Viewing) == []
