import mongomock
import pytest
from fastapi.testclient import TestClient

from database import ensure_indexes, get_db
from main import app


@pytest.fixture
def db():
    mongo = mongomock.MongoClient()
    ensure_indexes(mongo.marketplace)
    yield mongo.marketplace
    mongo.drop_database("marketplace")


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(client):
    """Register a user and return (user, auth headers)."""
    def _make(name, email=None, password="secret123"):
        email = email or f"{name.lower()}@shop.io"
        r = client.post("/api/auth/register", json={"name": name, "email": email, "password": password})
        assert r.status_code == 201, r.text
        body = r.json()
        return body["user"], {"Authorization": f"Bearer {body['access_token']}"}
    return _make


@pytest.fixture
def make_product(client):
    def _make(headers, **overrides):
        payload = {
            "title": "Vintage Camera",
            "category": "Electronics",
            "description": "35mm film camera in working order",
            "price": 120.0,
            "quantity": 1,
            "condition": "USED",
            "stock": 5,
        }
        payload.update(overrides)
        r = client.post("/api/products", json=payload, headers=headers)
        assert r.status_code == 201, r.text
        return r.json()["data"]
    return _make


@pytest.fixture
def seller(make_user):
    return make_user("Seller")


@pytest.fixture
def buyer(make_user):
    return make_user("Buyer")


@pytest.fixture
def admin(make_user, db):
    user, headers = make_user("Admin")
    db["user"].update_one({"email": user["email"]}, {"$set": {"role": "ADMIN"}})
    return user, headers
