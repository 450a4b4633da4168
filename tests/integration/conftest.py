import pytest
from fastapi.testclient import TestClient

from database import get_db
from main import app, get_notifier
from manage import create_admin


@pytest.fixture()
def client(mongo_db, notifier):
    app.dependency_overrides[get_db] = lambda: mongo_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    yield TestClient(app)
    app.dependency_overrides.clear()


def _auth(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def register(client):
    def _register(name="Jane Doe", email="jane@example.com", password="s3cret"):
        response = client.post("/api/auth/register", json={"name": name, "email": email, "password": password})
        assert response.status_code == 201, response.text
        body = response.json()
        return body["user"], _auth(body["token"])

    return _register


@pytest.fixture()
def shopper(register):
    return register()


@pytest.fixture()
def admin(client, mongo_db):
    create_admin(mongo_db, "Admin", "admin@example.com", "adminpass")
    response = client.post("/api/auth/login", json={"email": "admin@example.com", "password": "adminpass"})
    assert response.status_code == 200, response.text
    body = response.json()
    return body["user"], _auth(body["token"])


@pytest.fixture()
def add_product(client, admin):
    _, headers = admin

    def _add(name="Widget", price=100.0, stock=10, category="General"):
        response = client.post(
            "/api/products",
            json={"name": name, "price": price, "stock": stock, "category": category},
            headers=headers,
        )
        assert response.status_code == 201, response.text
        return response.json()["product"]

    return _add
