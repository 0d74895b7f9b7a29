import io

from bson import ObjectId
from pymongo.errors import PyMongoError

from auth import AUTH_COOKIE
from cart import CART_COOKIE


CHECKOUT = {
    "name": "Sky Shopper",
    "email": "shopper@example.com",
    "address": "1 Ramp Road",
    "city": "Portland",
    "state": "OR",
    "postal_code": "97201",
    "country": "US",
}


def test_root(client):
    assert client.get("/").status_code == 200


def test_register_login_me(client):
    body = {"name": "Robin", "email": "robin@example.com", "password": "kickflip99"}
    resp = client.post("/api/register", json=body)
    assert resp.status_code == 200
    assert resp.json()["email"] == "robin@example.com"
    assert "password_hash" not in resp.json()

    assert client.post("/api/register", json=body).status_code == 400

    bad = client.post("/api/login", data={"username": "robin@example.com", "password": "wrong-pass"})
    assert bad.status_code == 400

    resp = client.post("/api/login", data={"username": "robin@example.com", "password": "kickflip99"})
    assert resp.status_code == 200
    token = resp.json()["access_token"]
    assert resp.cookies.get(AUTH_COOKIE) == token

    me = client.get("/api/me", headers={"Authorization": f"Bearer {token}"})
    assert me.json()["name"] == "Robin"


def test_me_requires_auth(client):
    assert client.get("/api/me").status_code == 401
    assert client.get("/api/me", headers={"Authorization": "Bearer not-a-jwt"}).status_code == 401


def test_product_listing(client, make_product):
    for i in range(25):
        make_product(f"Product {i:02d}")
    resp = client.get("/api/products", params={"page": 2, "per_page": 10, "sort": "name.asc"})
    assert resp.status_code == 200
    body = resp.json()
    assert len(body["data"]) == 10
    assert body["data"][0]["name"] == "Product 10"
    assert body["page_count"] == 3


def test_product_detail(client, make_product):
    product = make_product()
    assert client.get(f"/api/products/{product['id']}").json()["name"] == "Deck"
    assert client.get(f"/api/products/{ObjectId()}").status_code == 404


def test_category_page(client, category, subcategory, make_product):
    make_product()
    body = client.get("/api/categories/shoes").json()
    assert body["category"]["id"] == category["id"]
    assert [s["slug"] for s in body["subcategories"]] == ["low-tops"]
    assert body["product_count"] == 1
    assert client.get("/api/categories/nope").status_code == 404


def test_cart_flow_uses_cookie(client, make_product):
    product = make_product(price="12.00")

    first = client.post("/api/cart/items", json={"product_id": product["id"]})
    assert first.status_code == 200
    cart_id = first.json()["cart_id"]
    assert client.cookies.get(CART_COOKIE) == cart_id

    second = client.post("/api/cart/items", json={"product_id": product["id"]})
    assert second.json()["cart_id"] == cart_id

    cart = client.get("/api/cart").json()
    assert cart["cart_id"] == cart_id
    assert [i["quantity"] for i in cart["items"]] == [2]
    assert cart["summary"] == {"total_items": 2, "total_price": "24.00"}

    item_id = cart["items"][0]["id"]
    assert client.patch(f"/api/cart/items/{item_id}", json={"quantity": 0}).status_code == 200
    assert client.get("/api/cart/summary").json()["total_items"] == 0
    assert client.delete(f"/api/cart/items/{item_id}").status_code == 404


def test_add_unknown_product_to_cart(client):
    resp = client.post("/api/cart/items", json={"product_id": str(ObjectId())})
    assert resp.status_code == 404


def test_checkout_empties_cart(client, records, make_product):
    product = make_product(price="19.99")
    client.post("/api/cart/items", json={"product_id": product["id"], "quantity": 2})
    items = client.get("/api/cart").json()["items"]

    lines = [
        {"id": i["id"], "product_id": i["product_id"], "name": "Deck", "price": "19.99", "quantity": i["quantity"]}
        for i in items
    ]
    resp = client.post("/api/checkout", json={"checkout": CHECKOUT, "items": lines})
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["order_number"].startswith("ORD-")
    assert records.get_one("order", body["order_id"])["amount"] == "39.98"

    assert client.get("/api/cart").json()["items"] == []


def test_checkout_empty_cart(client, records):
    resp = client.post("/api/checkout", json={"checkout": CHECKOUT, "items": []})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Cart is empty"
    assert records.count("order") == 0


def test_checkout_validates_email(client):
    resp = client.post("/api/checkout", json={"checkout": {**CHECKOUT, "email": "nope"}, "items": []})
    assert resp.status_code == 422


def test_purchases(client, records, shopper, shopper_headers, make_order):
    mine = make_order(user_id=shopper["id"])
    theirs = make_order(user_id="someone-else")

    listing = client.get("/api/dashboard/purchases", headers=shopper_headers).json()
    assert [o["id"] for o in listing["data"]] == [mine["id"]]

    detail = client.get(f"/api/dashboard/purchases/{mine['id']}", headers=shopper_headers)
    assert detail.json()["line_items"][0]["product_name"] == "Deck"
    assert client.get(f"/api/dashboard/purchases/{theirs['id']}", headers=shopper_headers).status_code == 404


def test_dashboard_requires_owner(client, store, seller_headers, shopper_headers):
    url = f"/api/dashboard/stores/{store['id']}"
    assert client.get(url).status_code == 401
    assert client.get(url, headers=shopper_headers).status_code == 403
    assert client.get(f"/api/dashboard/stores/{ObjectId()}", headers=seller_headers).status_code == 404

    overview = client.get(url, headers=seller_headers).json()
    assert overview["store"]["id"] == store["id"]
    assert overview["product_count"] == 0


def test_create_store_via_dashboard(client, shopper_headers):
    resp = client.post("/api/dashboard/stores", json={"name": "Sky Shop"}, headers=shopper_headers)
    assert resp.status_code == 201
    again = client.post("/api/dashboard/stores", json={"name": "Sky Shop Two"}, headers=shopper_headers)
    assert again.status_code == 400
    assert again.json()["detail"] == "Store limit reached for your plan"

    billing = client.get("/api/dashboard/billing", headers=shopper_headers).json()
    assert billing["store_count"] == 1
    assert billing["store_limit_exceeded"] is True


def test_manage_products(client, store, category, seller_headers, shopper_headers):
    base = f"/api/dashboard/stores/{store['id']}/products"
    body = {"name": "Deck", "price": "59.95", "inventory": 4, "category_id": category["id"]}

    assert client.post(base, json=body, headers=shopper_headers).status_code == 403
    assert client.post(base, json={**body, "price": "-1"}, headers=seller_headers).status_code == 422

    created = client.post(base, json=body, headers=seller_headers)
    assert created.status_code == 201
    product_id = created.json()["id"]

    listing = client.get(base, headers=seller_headers).json()
    assert [p["id"] for p in listing["data"]] == [product_id]

    update = {"name": "Deck Pro", "price": "64.00", "inventory": 2}
    assert client.patch(f"{base}/{product_id}", json=update, headers=seller_headers).status_code == 200
    assert client.get(f"/api/products/{product_id}").json()["name"] == "Deck Pro"

    assert client.delete(f"{base}/{product_id}", headers=seller_headers).status_code == 200
    assert client.get(f"/api/products/{product_id}").status_code == 404


def test_orders_and_customers(client, store, seller_headers, make_order):
    order = make_order(email="a@example.com", amount="10.00", status="pending")
    make_order(email="a@example.com", amount="5.00", status="shipped")
    base = f"/api/dashboard/stores/{store['id']}"

    pending = client.get(f"{base}/orders", params={"status": "pending"}, headers=seller_headers).json()
    assert [o["id"] for o in pending["data"]] == [order["id"]]

    resp = client.patch(f"{base}/orders/{order['id']}", json={"status": "delivered"}, headers=seller_headers)
    assert resp.status_code == 200
    resp = client.patch(f"{base}/orders/{order['id']}", json={"status": "lost"}, headers=seller_headers)
    assert resp.status_code == 422

    customers = client.get(f"{base}/customers", headers=seller_headers).json()
    assert customers["data"][0]["total_spent"] == "15.00"
    detail = client.get(f"{base}/customers/a@example.com", headers=seller_headers).json()
    assert detail["order_placed"] == 2


def test_order_of_other_store_is_hidden(client, store, seller_headers, make_order):
    foreign = make_order(store_id="another-store")
    resp = client.patch(
        f"/api/dashboard/stores/{store['id']}/orders/{foreign['id']}",
        json={"status": "shipped"},
        headers=seller_headers,
    )
    assert resp.status_code == 404


def test_newsletter(client, monkeypatch):
    import notifications

    monkeypatch.setattr(notifications, "RESEND_API_KEY", None)
    resp = client.post("/api/email/newsletter", json={"email": "a@example.com"})
    assert resp.status_code == 200
    token = resp.json()["token"]

    assert client.get("/api/notifications", params={"token": token}).json()["newsletter"] is True
    assert client.patch("/api/notifications", json={"token": token, "newsletter": False}).status_code == 200
    assert client.get("/api/notifications", params={"token": "nope"}).status_code == 404


def test_uploads(client, shopper_headers):
    png = ("deck.png", io.BytesIO(b"\x89PNG\r\n\x1a\n"), "image/png")
    resp = client.post("/api/uploads", files={"files": png}, headers=shopper_headers)
    assert resp.status_code == 200
    url = resp.json()["urls"][0]
    assert url.startswith("/files/") and url.endswith(".png")
    assert client.get(url).content == b"\x89PNG\r\n\x1a\n"

    text = ("notes.txt", io.BytesIO(b"hello"), "text/plain")
    assert client.post("/api/uploads", files={"files": text}, headers=shopper_headers).status_code == 400
    again = ("deck.png", io.BytesIO(b"\x89PNG\r\n\x1a\n"), "image/png")
    assert client.post("/api/uploads", files={"files": again}).status_code == 401


def test_seed(client):
    assert client.post("/api/seed").json()["created"]["categories"] == 4
    assert client.post("/api/seed").json()["created"]["categories"] == 0
    assert len(client.get("/api/categories").json()) == 4


def test_checkout_rejects_oversized_price(client, records, make_product):
    product = make_product()
    line = {"product_id": product["id"], "name": "Deck", "price": "1e30", "quantity": 1}
    resp = client.post("/api/checkout", json={"checkout": CHECKOUT, "items": [line]})
    assert resp.status_code == 422
    assert records.count("order") == 0

    line = {**line, "price": "10.00", "quantity": 10_001}
    assert client.post("/api/checkout", json={"checkout": CHECKOUT, "items": [line]}).status_code == 422


def test_cart_lines_belong_to_the_cookie_cart(client, make_product):
    product = make_product()
    client.post("/api/cart/items", json={"product_id": product["id"]})
    item_id = client.get("/api/cart").json()["items"][0]["id"]

    client.cookies.clear()
    assert client.patch(f"/api/cart/items/{item_id}", json={"quantity": 5}).status_code == 404
    assert client.delete(f"/api/cart/items/{item_id}").status_code == 404


def test_newsletter_backend_error(client, records, monkeypatch):
    def broken(*args, **kwargs):
        raise PyMongoError("not primary")

    monkeypatch.setattr(records, "get_first", broken)
    resp = client.post("/api/email/newsletter", json={"email": "a@example.com"})
    assert resp.status_code == 503
    assert resp.json()["detail"] == "Failed to subscribe to the newsletter"
