from bson import ObjectId
from pymongo.errors import PyMongoError
from structlog.testing import capture_logs

import checkout
from cart import add_to_cart, get_cart_items, get_or_create_cart
from checkout import order_number, order_total, process_order
from schemas import CheckoutData, CheckoutItem


def checkout_data(**overrides):
    data = {
        "name": "Sky Shopper",
        "email": "shopper@example.com",
        "phone": "555-0100",
        "address": "1 Ramp Road",
        "city": "Portland",
        "state": "OR",
        "postal_code": "97201",
        "country": "US",
    }
    data.update(overrides)
    return CheckoutData(**data)


def line(product, quantity=1, price=None):
    return CheckoutItem(
        product_id=product["id"],
        name=product["name"],
        price=price if price is not None else product["price"],
        quantity=quantity,
    )


def test_order_number():
    assert order_number("65f1c2aa9e0b4d1234abcdef") == "ORD-34ABCDEF"


def test_order_total():
    items = [
        CheckoutItem(product_id="a", price="19.99", quantity=2),
        CheckoutItem(product_id="b", price="5.01", quantity=3),
    ]
    assert str(order_total(items)) == "55.01"


def test_empty_cart_writes_nothing(records):
    result = process_order(records, checkout_data(), [])
    assert not result.success
    assert result.error == "Cart is empty"
    assert records.count("address") == 0
    assert records.count("order") == 0


def test_order_is_created(records, store, shopper, make_product):
    deck = make_product("Deck", price="19.99")
    wax = make_product("Wax", price="5.01")

    result = process_order(records, checkout_data(notes="Leave at the door"), [line(deck, 2), line(wax, 3)], user_id=shopper["id"])
    assert result.success
    assert result.order_number == order_number(result.order_id)

    order = records.get_one("order", result.order_id)
    assert order["amount"] == "55.01"
    assert order["quantity"] == 5
    assert order["status"] == "pending"
    assert order["store_id"] == store["id"]
    assert order["user_id"] == shopper["id"]
    assert order["notes"] == "Leave at the door"
    assert [(i["product_name"], i["quantity"]) for i in order["items"]] == [("Deck", 2), ("Wax", 3)]

    address = records.get_one("address", order["address_id"])
    assert address["line1"] == "1 Ramp Road"
    assert address["postal_code"] == "97201"


def test_amount_uses_submitted_prices(records, make_product):
    deck = make_product(price="10.00")
    result = process_order(records, checkout_data(), [line(deck, 1, price="7.50")])
    assert records.get_one("order", result.order_id)["amount"] == "7.50"


def test_unknown_store_writes_nothing(records):
    item = CheckoutItem(product_id=str(ObjectId()), name="Ghost", price="1.00", quantity=1)
    result = process_order(records, checkout_data(), [item])
    assert not result.success
    assert result.error == "Unable to determine store for order"
    assert records.count("address") == 0
    assert records.count("order") == 0


def test_guest_cart_is_emptied(records, make_product):
    deck = make_product()
    cart_id = add_to_cart(records, deck["id"], quantity=2).cart_id

    result = process_order(records, checkout_data(), [line(deck, 2)], cart_id=cart_id)
    assert result.success
    assert get_cart_items(records, cart_id) == []


def test_all_user_carts_are_emptied(records, shopper, make_product):
    deck = make_product()
    old_cart = records.create("cart", {"session_id": "old", "user_id": shopper["id"]})["id"]
    add_to_cart(records, deck["id"], cart_id=old_cart)
    guest_cart = add_to_cart(records, deck["id"], cart_id=get_or_create_cart(records)).cart_id

    result = process_order(records, checkout_data(), [line(deck)], user_id=shopper["id"], cart_id=guest_cart)
    assert result.success
    assert get_cart_items(records, old_cart) == []
    assert get_cart_items(records, guest_cart) == []


def test_cart_cleanup_failure_keeps_the_order(records, make_product, monkeypatch):
    deck = make_product()
    cart_id = add_to_cart(records, deck["id"]).cart_id

    def broken(records, cart_id):
        raise PyMongoError("connection reset")

    monkeypatch.setattr(checkout, "delete_items_of_cart", broken)
    with capture_logs() as logs:
        result = process_order(records, checkout_data(), [line(deck)], cart_id=cart_id)

    assert result.success
    assert records.count("order") == 1
    failures = [e for e in logs if e["event"] == "cart_clear_after_order_failed"]
    assert failures and failures[0]["log_level"] == "error"
    assert len(get_cart_items(records, cart_id)) == 1


def test_order_write_failure(records, make_product, monkeypatch):
    deck = make_product()
    real_create = records.create

    def create(collection, data):
        if collection == "order":
            raise PyMongoError("write concern error")
        return real_create(collection, data)

    monkeypatch.setattr(records, "create", create)
    result = process_order(records, checkout_data(), [line(deck)])
    assert not result.success
    assert result.error == "Failed to process order"
