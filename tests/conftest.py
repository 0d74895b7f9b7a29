import os
import tempfile

os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="storefront-uploads-"))

import mongomock
import pytest
from fastapi.testclient import TestClient

from auth import create_access_token
from database import RecordStore, get_records
from main import app
from schemas import Order, OrderItem, Product, Store, price_to_cents


@pytest.fixture
def records():
    return RecordStore(mongomock.MongoClient()["storefront_test"])


@pytest.fixture
def client(records):
    app.dependency_overrides[get_records] = lambda: records
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def seller(records):
    return records.create("user", {"name": "Sam Seller", "email": "seller@example.com", "password_hash": "-"})


@pytest.fixture
def seller_headers(seller):
    return {"Authorization": f"Bearer {create_access_token({'sub': seller['id']})}"}


@pytest.fixture
def shopper(records):
    return records.create("user", {"name": "Sky Shopper", "email": "shopper@example.com", "password_hash": "-"})


@pytest.fixture
def shopper_headers(shopper):
    return {"Authorization": f"Bearer {create_access_token({'sub': shopper['id']})}"}


@pytest.fixture
def category(records):
    return records.create("category", {"name": "Shoes", "slug": "shoes", "description": "Rad shoes."})


@pytest.fixture
def subcategory(records, category):
    return records.create("subcategory", {
        "name": "Low Tops", "slug": "low-tops", "description": "", "category_id": category["id"],
    })


@pytest.fixture
def store(records, seller):
    return records.create("store", Store(name="Rad Boards", slug="rad-boards", user_id=seller["id"]))


@pytest.fixture
def make_product(records, store, category):
    def make(name="Deck", price="10.00", **extra):
        fields = {"category_id": category["id"], "store_id": store["id"], **extra}
        product = Product(name=name, price=price, **fields)
        return records.create("product", {**product.model_dump(), "price_cents": price_to_cents(product.price)})
    return make


@pytest.fixture
def make_order(records, store):
    def make(email="buyer@example.com", amount="10.00", status="pending", name="Buyer", **extra):
        fields = {"store_id": store["id"], "address_id": "", **extra}
        order = Order(
            items=[OrderItem(product_id="p1", product_name="Deck", price=amount, quantity=1)],
            quantity=1,
            amount=amount,
            status=status,
            name=name,
            email=email,
            **fields,
        )
        return records.create("order", order)
    return make
