"""
Checkout

Turns the cart lines the customer confirmed into an order. Writes happen one
after another with no transaction: address, then order, then cart cleanup.
"""
from decimal import Decimal
from typing import List, Optional

import structlog
from pymongo.errors import PyMongoError

from cart import delete_items_of_cart
from database import RecordNotFound, RecordStore
from filters import Field
from schemas import Address, CheckoutData, CheckoutItem, CheckoutResult, Order, OrderItem, format_amount, parse_price

logger = structlog.get_logger(__name__)


def order_number(order_id: str) -> str:
    return f"ORD-{order_id[-8:].upper()}"


def order_total(items: List[CheckoutItem]) -> Decimal:
    return sum((parse_price(i.price) * i.quantity for i in items), Decimal("0"))


def product_store(records: RecordStore, product_id: str) -> Optional[str]:
    try:
        product = records.get_one("product", product_id)
    except RecordNotFound:
        logger.warning("checkout_product_missing", product_id=product_id)
        return None
    return product.get("store_id") or None


def clear_user_cart(records: RecordStore, user_id: Optional[str], cart_id: Optional[str] = None) -> None:
    """Empty every cart of the user plus the visitor's cookie cart.

    The order is already placed at this point, so failures are only logged.
    """
    try:
        cart_ids = []
        if user_id:
            cart_ids = [c["id"] for c in records.get_full_list("cart", filter=Field("user_id") == user_id)]
        if cart_id and cart_id not in cart_ids:
            cart_ids.append(cart_id)
        for cid in cart_ids:
            delete_items_of_cart(records, cid)
    except (PyMongoError, RecordNotFound) as e:
        logger.error("cart_clear_after_order_failed", user_id=user_id, cart_id=cart_id, error=str(e))


def process_order(
    records: RecordStore,
    checkout: CheckoutData,
    items: List[CheckoutItem],
    user_id: Optional[str] = None,
    cart_id: Optional[str] = None,
) -> CheckoutResult:
    if not items:
        return CheckoutResult(success=False, error="Cart is empty")

    try:
        # all lines are assumed to come from the first line's store
        store_id = product_store(records, items[0].product_id)
        if not store_id:
            return CheckoutResult(success=False, error="Unable to determine store for order")

        address = records.create("address", Address(
            line1=checkout.address,
            line2="",
            city=checkout.city,
            state=checkout.state,
            postal_code=checkout.postal_code,
            country=checkout.country,
            user_id=user_id or "",
        ))

        order = records.create("order", Order(
            user_id=user_id or "",
            store_id=store_id,
            items=[
                OrderItem(product_id=i.product_id, product_name=i.name, price=i.price, quantity=i.quantity)
                for i in items
            ],
            quantity=sum(i.quantity for i in items),
            amount=format_amount(order_total(items)),
            status="pending",
            name=checkout.name,
            email=checkout.email,
            address_id=address["id"],
            notes=checkout.notes or None,
        ))
    except PyMongoError as e:
        logger.error("order_processing_failed", error=str(e))
        return CheckoutResult(success=False, error="Failed to process order")

    logger.info("order_created", order_id=order["id"], store_id=store_id, amount=order["amount"])
    clear_user_cart(records, user_id, cart_id)

    return CheckoutResult(success=True, order_id=order["id"], order_number=order_number(order["id"]))
