from decimal import Decimal

import mongomock
import pytest
from fastapi.testclient import TestClient

import auth
from database import create_document, ensure_indexes, get_db
from main import app
from schemas import Equipment


@pytest.fixture
def db():
    database = mongomock.MongoClient()["rentflow_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    auth.TOKENS.clear()
    yield TestClient(app)
    app.dependency_overrides.clear()
    auth.TOKENS.clear()


@pytest.fixture
def admin_headers(client):
    resp = client.post("/auth/register", json={"username": "admin", "password": "secret"})
    assert resp.status_code == 200
    return {"Authorization": f"Bearer {resp.json()['token']}"}


@pytest.fixture
def user_headers(client, admin_headers):
    resp = client.post(
        "/auth/register",
        json={"username": "clerk", "password": "clerkpass", "role": "user"},
        headers=admin_headers,
    )
    assert resp.status_code == 200
    return {"Authorization": f"Bearer {resp.json()['token']}"}


def add_equipment(db, name, daily_rate, category="Earthmoving"):
    return create_document(
        db,
        "equipment",
        Equipment(name=name, category=category, daily_rate=Decimal(daily_rate)).model_dump(),
    )


@pytest.fixture
def excavator(db):
    return add_equipment(db, "Mini Excavator", "15000.00")


@pytest.fixture
def mixer(db):
    return add_equipment(db, "Concrete Mixer", "2500.50", category="Concrete")
