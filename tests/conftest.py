import os

os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.pop("DATABASE_URL", None)

import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from database import ensure_indexes, get_db, now
from main import app

PASSWORD = "Secret123!"


@pytest.fixture
def db():
    database = mongomock.MongoClient().marketplace_test
    ensure_indexes(database)
    return database


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


def make_user(client, db, name, role="consumer"):
    email = f"{name}@example.com"
    res = client.post("/auth/register", json={"username": name, "email": email, "password": PASSWORD})
    assert res.status_code == 201, res.text
    user = res.json()["user"]
    if role != "consumer":
        db["user"].update_one({"_id": ObjectId(user["id"])}, {"$set": {"role": role}})
    token = client.post("/auth/login", json={"email": email, "password": PASSWORD}).json()["access_token"]
    return {"id": user["id"], "email": email, "headers": {"Authorization": f"Bearer {token}"}}


@pytest.fixture
def consumer(client, db):
    return make_user(client, db, "carol")


@pytest.fixture
def other_consumer(client, db):
    return make_user(client, db, "dave")


@pytest.fixture
def vendor(client, db):
    return make_user(client, db, "victor", role="vendor")


@pytest.fixture
def other_vendor(client, db):
    return make_user(client, db, "wendy", role="vendor")


@pytest.fixture
def admin(client, db):
    return make_user(client, db, "alice", role="admin")


def application_payload(**overrides):
    payload = {
        "business_name": "Hela Crafts",
        "tax_id": "TX-1001",
        "category": "handicrafts",
        "certifications": ["fair trade"],
        "business_address": {
            "street": "12 Temple Rd",
            "city": "Kandy",
            "state": "Central",
            "zip_code": "20000",
            "country": "Sri Lanka",
        },
        "business_description": "Hand made masks and wood carvings",
        "contact_person": {"name": "Carol", "phone": "+94 77 000 0000", "email": "carol@example.com"},
        "business_registration_number": "BRN-778",
        "store_type": "online",
        "payment_details": {
            "bank_name": "People's Bank",
            "account_number": "0012345",
            "routing_number": "7135",
            "payment_method": "bank",
        },
        "initial_product_list": [
            {"title": "Raksha mask", "description": "Painted kaduru wood", "images": ["https://img/raksha.jpg"]},
        ],
        "shop_images": ["https://img/shop.jpg"],
    }
    payload.update(overrides)
    return payload


def product_payload(**overrides):
    payload = {
        "name": "Batik scarf",
        "description": "Silk batik scarf",
        "images": ["https://img/scarf.jpg"],
        "category": "clothing",
        "tags": ["silk", "batik"],
        "price": 25.0,
        "stock": 10,
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def product(client, vendor):
    res = client.post("/products", json=product_payload(), headers=vendor["headers"])
    assert res.status_code == 201, res.text
    return res.json()["product"]


def insert_order(db, customer_id, products, status="delivered"):
    """Insert an order document directly, bypassing the cart."""
    doc = {
        "customer_id": customer_id,
        "products": [
            {
                "product_id": p["id"],
                "vendor_id": p["vendor_id"],
                "name": p["name"],
                "image": "",
                "price": p["price"],
                "quantity": 1,
                "customization": {},
            }
            for p in products
        ],
        "shipping_address": {"name": "Carol", "phone": "1", "street": "s", "city": "c", "country": "LK"},
        "total_amount": sum(p["price"] for p in products),
        "payment_method": "cod",
        "payment_status": "pending",
        "status": status,
        "created_at": now(),
        "updated_at": now(),
    }
    return str(db["order"].insert_one(doc).inserted_id)
