import pytest
from fastapi.testclient import TestClient

from app.core.permissions import Capability
from app.core.security import create_access_token, get_password_hash
from app.main import app
from app.models import tables
from conftest import add_rows


@pytest.fixture()
def raw_client(ids, sink):
    """No auth override: tokens go through the real dependency."""
    app.dependency_overrides.clear()
    add_rows(
        tables.User(name="Carla Mansour", email="carla@example.com", password_hash=get_password_hash("s3cret-pass"), role="Team Leader"),
        tables.User(name="Former Agent", email="former@example.com", password_hash=get_password_hash("s3cret-pass"), role="agent", is_active=False),
    )
    return TestClient(app)


def test_login_returns_token_and_user(raw_client):
    response = raw_client.post("/api/auth/login", json={"email": "Carla@Example.com", "password": "s3cret-pass"})

    assert response.status_code == 200
    body = response.json()
    assert body["token_type"] == "bearer"
    assert body["user"]["email"] == "carla@example.com"

    me = raw_client.get("/api/auth/me", headers={"Authorization": f"Bearer {body['access_token']}"})
    assert me.status_code == 200
    assert me.json()["data"]["name"] == "Carla Mansour"


def test_bad_credentials_and_inactive_accounts(raw_client, sink):
    wrong = raw_client.post("/api/auth/login", json={"email": "carla@example.com", "password": "nope-nope"})
    inactive = raw_client.post("/api/auth/login", json={"email": "former@example.com", "password": "s3cret-pass"})

    assert wrong.status_code == 401
    assert wrong.json() == {"success": False, "message": "Incorrect email or password"}
    assert inactive.status_code == 403
    assert "UNAUTHORIZED_ACCESS" in sink.types()


def test_invalid_token_is_rejected(raw_client):
    response = raw_client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-token"})

    assert response.status_code == 401
    assert response.json()["message"] == "Could not validate credentials"


def test_capabilities_follow_the_role_table(raw_client):
    token = create_access_token({"sub": "carla@example.com"})

    data = raw_client.get("/api/auth/capabilities", headers={"Authorization": f"Bearer {token}"}).json()["data"]

    assert data["role"] == "team_leader"
    assert Capability.REFER.value in data["capabilities"]
    assert Capability.MANAGE_USERS.value not in data["capabilities"]
    assert set(data["roles"]) == {
        "admin", "operations_manager", "operations", "agent_manager", "team_leader", "agent", "accountant",
    }
