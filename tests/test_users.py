from unittest.mock import AsyncMock, Mock

import pytest

from app.models import tables
from app.routers import users as users_router
from app.utils.storage import StoredFile
from conftest import add_rows, load, query_all


def new_user(client, **fields):
    body = {"name": "Hiba Mansour", "email": "Hiba@Example.com", "role": "Agent", "password": "s3cret-pass"}
    body.update(fields)
    return client.post("/api/users/", json=body)


def test_create_user_normalizes_role_and_email(client):
    response = new_user(client)

    assert response.status_code == 201
    data = response.json()["data"]
    assert data["email"] == "hiba@example.com"
    assert data["role"] == "agent"
    assert "password_hash" not in data


def test_create_user_rejects_unknown_role_and_duplicate_email(client):
    bad_role = new_user(client, role="intern")
    assert bad_role.status_code == 400
    assert bad_role.json()["message"].startswith("Invalid role")

    duplicate = new_user(client, email="agent@example.com")
    assert duplicate.status_code == 409
    assert duplicate.json()["message"] == "A user with this email already exists"


def test_only_admins_manage_users(client, actor):
    actor.use("operations")
    assert new_user(client).status_code == 403
    assert client.get("/api/users/").status_code == 200


def test_users_edit_themselves_but_not_their_role(client, actor, ids):
    actor.use("agent")

    own = client.put(f"/api/users/{ids['agent']}", json={"location": "Jounieh"})
    assert own.status_code == 200
    assert own.json()["data"]["location"] == "Jounieh"

    promote = client.put(f"/api/users/{ids['agent']}", json={"role": "admin"})
    assert promote.status_code == 403

    other = client.put(f"/api/users/{ids['agent2']}", json={"location": "Jbeil"})
    assert other.status_code == 403


def test_referral_targets_are_agents_and_team_leaders(client, actor):
    actor.use("agent")

    names = [u["name"] for u in client.get("/api/users/agents").json()["data"]]

    assert names == ["Joe Saade", "Nadia Frem", "Tony Aoun"]


def test_deactivation_ends_team_membership(client, ids):
    response = client.delete(f"/api/users/{ids['agent']}")

    assert response.status_code == 200
    assert load(tables.User, ids["agent"]).is_active is False
    assert [a.is_active for a in query_all(tables.TeamAssignment)] == [False]


def test_admin_cannot_deactivate_self(client, ids):
    assert client.delete(f"/api/users/{ids['admin']}").status_code == 400


# ===========================
# TEAMS
# ===========================
def test_agent_belongs_to_one_team(client, ids):
    second_leader, = add_rows(tables.User(
        name="Elie Rizk", email="elie@example.com", password_hash="x", role="team_leader",
    ))

    conflict = client.post(f"/api/users/{second_leader}/agents", json={"agent_id": ids["agent"]})
    assert conflict.status_code == 409
    assert conflict.json()["message"] == "Agent is already assigned to another team leader"

    assigned = client.post(f"/api/users/{second_leader}/agents", json={"agent_id": ids["agent2"]})
    assert assigned.status_code == 201

    team = client.get(f"/api/users/{second_leader}/agents").json()["data"]
    assert [u["name"] for u in team] == ["Tony Aoun"]


def test_team_assignment_validates_roles(client, ids):
    not_leader = client.post(f"/api/users/{ids['agent2']}/agents", json={"agent_id": ids["agent"]})
    not_agent = client.post(f"/api/users/{ids['leader']}/agents", json={"agent_id": ids["accountant"]})

    assert not_leader.json()["message"] == "Target user is not a team leader"
    assert not_agent.json()["message"] == "Only agents can be assigned to a team"


def test_unassign_agent(client, ids):
    removed = client.delete(f"/api/users/{ids['leader']}/agents/{ids['agent']}")
    missing = client.delete(f"/api/users/{ids['leader']}/agents/{ids['agent']}")

    assert removed.status_code == 200
    assert missing.status_code == 404


# ===========================
# DOCUMENTS
# ===========================
@pytest.fixture()
def storage(monkeypatch):
    upload = AsyncMock(return_value=StoredFile(
        path="user-5/contract.pdf",
        url="https://storage.example.com/user-5/contract.pdf",
        size=4,
        content_type="application/pdf",
    ))
    remove = Mock()
    monkeypatch.setattr(users_router, "upload_file", upload)
    monkeypatch.setattr(users_router, "remove_file", remove)
    return upload, remove


def test_document_upload_and_delete(client, actor, ids, storage):
    upload, remove = storage
    actor.use("agent")

    created = client.post(
        f"/api/users/{ids['agent']}/documents",
        data={"document_name": "Employment contract"},
        files={"file": ("contract.pdf", b"%PDF", "application/pdf")},
    )
    assert created.status_code == 201
    doc = created.json()["data"]
    assert doc["file_url"] == "https://storage.example.com/user-5/contract.pdf"
    assert upload.await_count == 1

    listed = client.get(f"/api/users/{ids['agent']}/documents").json()["data"]
    assert [d["document_name"] for d in listed] == ["Employment contract"]

    deleted = client.delete(f"/api/users/{ids['agent']}/documents/{doc['id']}")
    assert deleted.status_code == 200
    remove.assert_called_once()
    assert query_all(tables.UserDocument) == []


def test_documents_of_other_users_need_admin(client, actor, ids, storage):
    actor.use("agent")

    assert client.get(f"/api/users/{ids['agent2']}/documents").status_code == 403
