import os
import uuid

os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("SEED_DATA", "false")
os.environ.setdefault("JWT_SECRET", "test-secret")

import mongomock
import pytest
from fastapi.testclient import TestClient

from database import create_document, ensure_indexes, get_db
from main import app
from schemas import Product
from seed import seed_admin

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "admin-pass"


@pytest.fixture
def db():
    mongo = mongomock.MongoClient()
    name = f"storefront_{uuid.uuid4().hex}"
    database = mongo[name]
    ensure_indexes(database)
    yield database
    mongo.drop_database(name)


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def api(client):
    def call(action, data=None, token=None):
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        return client.post("/api", json={"action": action, "data": data}, headers=headers)
    return call


@pytest.fixture
def register(api):
    def _register(email, password="secret123", name="Test User"):
        response = api("register", {"email": email, "password": password, "name": name})
        assert response.status_code == 200, response.json()
        return response.json()
    return _register


@pytest.fixture
def user_token(register):
    return register("alice@example.com")["token"]


@pytest.fixture
def other_token(register):
    return register("bob@example.com", name="Bob")["token"]


@pytest.fixture
def admin_token(db, api):
    seed_admin(db, ADMIN_EMAIL, ADMIN_PASSWORD)
    response = api("login", {"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
    assert response.status_code == 200
    return response.json()["token"]


@pytest.fixture
def add_product(db):
    def _add(name, price, category="Electronics", stock=50, rating=4.0, reviews=10, description=""):
        product = Product(
            name=name,
            price=price,
            category=category,
            image=f"https://img.example.com/{name.lower().replace(' ', '-')}.jpg",
            description=description or f"{name} description",
            stock=stock,
            rating=rating,
            reviews=reviews,
        )
        return create_document(db, "product", product)
    return _add


@pytest.fixture
def two_products(add_product):
    return add_product("Widget", 10), add_product("Gadget", 20)
