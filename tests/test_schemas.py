from decimal import Decimal

import pytest
from pydantic import ValidationError

from schemas import MAX_QUANTITY, AddToCart, CartItemUpdate, CheckoutItem, ProductCreate, parse_price


def test_parse_price_rounds_to_cents():
    assert parse_price("19.999") == Decimal("20.00")
    assert parse_price(5) == Decimal("5.00")


@pytest.mark.parametrize("value", ["abc", "-1", "NaN", "Infinity", "1e30", "1" * 27, "100000000"])
def test_parse_price_rejects(value):
    with pytest.raises(ValueError):
        parse_price(value)


@pytest.mark.parametrize("price", ["1e30", "9" * 30, "-0.01"])
def test_price_fields_reject_out_of_range(price):
    with pytest.raises(ValidationError):
        CheckoutItem(product_id="p", price=price, quantity=1)
    with pytest.raises(ValidationError):
        ProductCreate(name="Deck", price=price, category_id="c")


def test_quantities_are_capped():
    with pytest.raises(ValidationError):
        CheckoutItem(product_id="p", price="1.00", quantity=MAX_QUANTITY + 1)
    with pytest.raises(ValidationError):
        AddToCart(product_id="p", quantity=MAX_QUANTITY + 1)
    with pytest.raises(ValidationError):
        CartItemUpdate(quantity=MAX_QUANTITY + 1)
    assert CartItemUpdate(quantity=-1).quantity == -1
