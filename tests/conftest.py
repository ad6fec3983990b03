"""
Shared fixtures: an app wired to an in-memory mongomock database and helpers
for registering customers, sellers and the bootstrap admin.
"""
import mongomock
import pytest
from fastapi.testclient import TestClient

from database import Database
from main import create_app
from settings import Settings

PASSWORD = "Secret123"
ADMIN_EMAIL = "admin@shop.com"
ADMIN_PASSWORD = "Admin123"

SHIPPING = {
    "first_name": "Ada",
    "last_name": "Lovelace",
    "address": "12 Analytical Row",
    "city": "London",
    "state": "LDN",
    "postal_code": "N1 9GU",
    "phone": "+44 20 7946 0000",
    "email": "ada@shop.com",
}
COD = {"method": "cod"}


@pytest.fixture
def settings():
    return Settings(
        jwt_secret="test-secret",
        admin_email=ADMIN_EMAIL,
        admin_password=ADMIN_PASSWORD,
        environment="test",
        log_level="WARNING",
    )


@pytest.fixture
def database():
    return Database(mongomock.MongoClient(), "storefront_test")


@pytest.fixture
def client(settings, database):
    app = create_app(settings, database)
    with TestClient(app) as c:
        yield c


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


def register(client, name="Ada", email="ada@shop.com", password=PASSWORD):
    res = client.post("/api/auth/register", json={"name": name, "email": email, "password": password})
    assert res.status_code == 201, res.text
    return res.json()


@pytest.fixture
def admin_headers(client):
    res = client.post("/api/admin/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
    assert res.status_code == 200, res.text
    return bearer(res.json()["token"])


@pytest.fixture
def user_headers(client):
    return bearer(register(client)["token"])


@pytest.fixture
def seller_headers(client):
    headers = bearer(register(client, name="Sam Seller", email="sam@shop.com")["token"])
    res = client.post("/api/auth/become-seller", json={"store_name": "Sam's Lamps"}, headers=headers)
    assert res.status_code == 200, res.text
    return headers


@pytest.fixture
def make_product(client, admin_headers):
    def _make(**overrides):
        body = {
            "title": "Desk Lamp",
            "description": "Adjustable LED lamp",
            "price": 25.0,
            "category": "furniture",
            "image": "http://img/lamp.png",
            "stock": 5,
        }
        body.update(overrides)
        res = client.post("/api/products", json=body, headers=admin_headers)
        assert res.status_code == 201, res.text
        return res.json()["product"]
    return _make


def product_stock(client, product_id):
    return client.get(f"/api/products/{product_id}").json()["product"]["stock"]
