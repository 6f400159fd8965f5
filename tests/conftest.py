import os
import tempfile

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="crm-logs-"))
os.environ.setdefault("ENVIRONMENT", "test")

from decimal import Decimal

import pytest
from fastapi import Depends
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from app.core.database import Base, SessionLocal, engine, get_db
from app.core.security import get_current_user
from app.main import app
from app.middleware.security_logging import SecurityEventSink
from app.models import tables


class MemorySink(SecurityEventSink):
    def __init__(self):
        self.events = []

    def write(self, event):
        self.events.append(event)

    def types(self):
        return [event.type for event in self.events]


class Actor:
    """Which seeded user the overridden auth dependency returns."""

    def __init__(self, ids):
        self.ids = ids
        self.user_id = ids["admin"]

    def use(self, name):
        self.user_id = self.ids[name]


SEED_USERS = [
    ("admin", "Rita Haddad", "admin"),
    ("ops_manager", "Karim Nassar", "operations_manager"),
    ("operations", "Maya Khoury", "operations"),
    ("leader", "Joe Saade", "team_leader"),
    ("agent", "Nadia Frem", "agent"),
    ("agent2", "Tony Aoun", "agent"),
    ("accountant", "Lina Daher", "accountant"),
]


def _seed(db: Session) -> dict:
    ids = {}
    for key, name, role in SEED_USERS:
        user = tables.User(name=name, email=f"{key}@example.com", password_hash="not-used", role=role)
        db.add(user)
        db.flush()
        ids[key] = user.id
    db.add(tables.TeamAssignment(team_leader_id=ids["leader"], agent_id=ids["agent"]))

    statuses = {
        "active": tables.LeadStatus(status_name="Active", code="ACTIVE"),
        "closed": tables.LeadStatus(status_name="Closed", code="CLOSED", can_be_referred=False),
        "available": tables.PropertyStatus(name="Available", code="available"),
        "sold": tables.PropertyStatus(name="Sold", code="sold"),
        "rented": tables.PropertyStatus(name="Rented", code="rented"),
        "apartment": tables.Category(name="Apartment", code="AP"),
        "other": tables.Category(name="Other", code="OT"),
        "facebook": tables.ReferenceSource(source_name="Facebook"),
    }
    for key, row in statuses.items():
        db.add(row)
        db.flush()
        ids[key] = row.id
    db.commit()
    return ids


@pytest.fixture()
def ids():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        yield _seed(db)
    finally:
        db.close()


@pytest.fixture()
def actor(ids):
    return Actor(ids)


@pytest.fixture()
def sink():
    memory = MemorySink()
    app.state.security_sink = memory
    return memory


@pytest.fixture()
def client(ids, actor, sink):
    def current_user_override(db: Session = Depends(get_db)):
        return db.get(tables.User, actor.user_id)

    app.dependency_overrides[get_current_user] = current_user_override
    yield TestClient(app)
    app.dependency_overrides.clear()


def make_lead(ids, agent="agent", status="active", **fields):
    from datetime import date

    data = {
        "date": date(2024, 3, 1),
        "customer_name": "Walid Karam",
        "phone_number": "+96171123456",
        "status_id": ids[status],
    }
    if agent:
        data["agent_id"] = ids[agent]
    data.update(fields)
    return _insert(tables.Lead(**data))


def make_property(ids, agent="agent", status="available", **fields):
    data = {
        "status_id": ids[status],
        "category_id": ids["apartment"],
        "location": "Achrafieh",
        "property_type": "sale",
        "price": Decimal("250000"),
        "image_gallery": [],
    }
    if agent:
        data["agent_id"] = ids[agent]
    data.update(fields)
    return _insert(tables.Property(**data))


# The in-memory engine shares one connection, so helper sessions never
# stay open across a request.
def _insert(row) -> int:
    session = SessionLocal()
    try:
        session.add(row)
        session.commit()
        return row.id
    finally:
        session.close()


def add_rows(*rows):
    session = SessionLocal()
    try:
        session.add_all(rows)
        session.commit()
        return [row.id for row in rows]
    finally:
        session.close()


def load(model, pk):
    """Detached copy with column attributes loaded."""
    session = SessionLocal()
    try:
        return session.get(model, pk)
    finally:
        session.close()


def query_all(model, *criteria):
    session = SessionLocal()
    try:
        return session.query(model).filter(*criteria).order_by(model.id).all()
    finally:
        session.close()
