"""Pytest fixtures for the marketplace API tests."""

import mongomock
import pytest
from fastapi.testclient import TestClient

PASSWORD = "Secret@123"


@pytest.fixture
def mock_db(monkeypatch):
    """Swap the shared Mongo database for an in-memory one."""
    import database
    import main

    fake = mongomock.MongoClient()["marketplace_test"]
    monkeypatch.setattr(database, "db", fake)
    monkeypatch.setattr(main, "db", fake)
    database.ensure_indexes(fake)
    return fake


@pytest.fixture
def client(mock_db):
    from main import app

    return TestClient(app)


def signup(client, role, username, **extra):
    body = {
        "role": role,
        "email": f"{username}@example.com",
        "username": username,
        "password": PASSWORD,
        **extra,
    }
    response = client.post("/auth/signup", json=body)
    assert response.status_code == 201, response.text
    data = response.json()
    return {"Authorization": f"Bearer {data['access_token']}"}, data["user"]["id"]


@pytest.fixture
def make_account(client):
    """Sign up extra accounts; returns (headers, id)."""

    def _make(role, username, **extra):
        return signup(client, role, username, **extra)

    return _make


@pytest.fixture
def seller(client):
    """Auth headers and id of a seller account."""
    return signup(client, "seller", "seller_one")


@pytest.fixture
def other_seller(client):
    return signup(client, "seller", "seller_two")


@pytest.fixture
def tourist(client):
    return signup(client, "tourist", "tourist_one")


@pytest.fixture
def guide(client):
    return signup(client, "tour-guide", "guide_one", years_of_experience=3)


@pytest.fixture
def other_guide(client):
    return signup(client, "tour-guide", "guide_two")


@pytest.fixture
def admin(client):
    response = client.post("/init/bootstrap")
    assert response.status_code == 200
    login = client.post("/auth/login", json={"username": "admin", "password": "Admin@123"})
    assert login.status_code == 200
    return {"Authorization": f"Bearer {login.json()['access_token']}"}


@pytest.fixture
def make_product(client, seller):
    """Create products as the default seller."""
    headers, _ = seller

    def _make(name="City Map", price=10.0, quantity=5, **extra):
        response = client.post(
            "/products",
            json={"name": name, "price": price, "quantity": quantity, **extra},
            headers=headers,
        )
        assert response.status_code == 201, response.text
        return response.json()

    return _make


@pytest.fixture
def itinerary_body():
    return {
        "title": "Old Cairo Walk",
        "description": "Half-day walking tour",
        "activities": [],
        "language": "English",
        "price": 40,
        "available_dates": [
            {"date": "2025-03-01T00:00:00Z", "times": [{"start_time": "09:00", "end_time": "13:00"}]}
        ],
        "accessibility": True,
        "pick_up_location": "Tahrir Square",
        "drop_off_location": "Khan el-Khalili",
    }
