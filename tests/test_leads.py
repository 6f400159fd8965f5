from app.models import tables
from conftest import load, make_lead, query_all


def new_lead(client, **fields):
    body = {"customer_name": "Joseph Harb", "phone_number": "03 456 789", "status_id": fields.pop("status_id")}
    body.update(fields)
    return client.post("/api/leads/", json=body)


def test_agent_created_lead_is_assigned_to_them(client, actor, ids):
    actor.use("agent")

    response = new_lead(client, status_id=ids["active"], agent_id=ids["agent2"])

    assert response.status_code == 201
    data = response.json()["data"]
    assert data["agent_id"] == ids["agent"]
    assert data["added_by_id"] == ids["agent"]
    assert data["phone_number"] == "03456789"
    history = query_all(tables.LeadReferral, tables.LeadReferral.lead_id == data["id"])
    assert [(h.agent_id, h.status) for h in history] == [(ids["agent"], "confirmed")]


def test_create_validates_references(client, ids):
    bad_status = new_lead(client, status_id=9999)
    bad_source = new_lead(client, status_id=ids["active"], reference_source_id=9999)
    bad_phone = new_lead(client, status_id=ids["active"], phone_number="12")

    assert bad_status.json()["message"] == "Invalid lead status"
    assert bad_source.json()["message"] == "Invalid reference source"
    assert bad_phone.status_code == 400
    assert bad_phone.json()["errors"][0]["field"] == "phone_number"


def test_list_is_scoped_by_role(client, actor, ids):
    make_lead(ids, agent="agent", customer_name="Team Lead")
    make_lead(ids, agent="agent2", customer_name="Other Lead")
    make_lead(ids, agent="leader", customer_name="Leader Lead")

    assert client.get("/api/leads/").json()["total"] == 3

    actor.use("agent")
    assert [l["customer_name"] for l in client.get("/api/leads/").json()["data"]] == ["Team Lead"]

    actor.use("leader")
    names = sorted(l["customer_name"] for l in client.get("/api/leads/").json()["data"])
    assert names == ["Leader Lead", "Team Lead"]


def test_list_filters(client, ids):
    make_lead(ids, customer_name="Nabil Saab", phone_number="+9613000111")
    make_lead(ids, customer_name="Rima Saab", status="closed")

    assert client.get("/api/leads/", params={"search": "nabil"}).json()["total"] == 1
    assert client.get("/api/leads/", params={"search": "3000"}).json()["total"] == 1
    assert client.get("/api/leads/", params={"status_id": ids["closed"]}).json()["total"] == 1


def test_hidden_leads_read_as_missing(client, actor, ids):
    lead_id = make_lead(ids, agent="agent2")
    actor.use("agent")

    assert client.get(f"/api/leads/{lead_id}").status_code == 404
    assert client.put(f"/api/leads/{lead_id}", json={"notes": "x"}).status_code == 404


def test_update_and_reassignment_rules(client, actor, ids):
    lead_id = make_lead(ids, agent="agent")

    actor.use("agent")
    ok = client.put(f"/api/leads/{lead_id}", json={"notes": "Wants sea view", "status_id": ids["closed"]})
    assert ok.status_code == 200
    assert ok.json()["data"]["status_id"] == ids["closed"]
    assert client.put(f"/api/leads/{lead_id}", json={"agent_id": ids["agent2"]}).status_code == 403

    actor.use("ops_manager")
    moved = client.put(f"/api/leads/{lead_id}", json={"agent_id": ids["agent2"]})
    assert moved.status_code == 200
    assert load(tables.Lead, lead_id).agent_name == "Tony Aoun"


def test_delete_requires_capability(client, actor, ids):
    lead_id = make_lead(ids, agent="agent")

    actor.use("agent")
    assert client.delete(f"/api/leads/{lead_id}").status_code == 403

    actor.use("admin")
    assert client.delete(f"/api/leads/{lead_id}").json()["message"] == "Lead deleted successfully"
    assert load(tables.Lead, lead_id) is None
