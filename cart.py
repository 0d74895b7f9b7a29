"""
Shopping cart

A visitor's cart is a `cart` record whose id travels in the `cart_id` cookie;
its lines are `cart_item` records, one per product.
"""
import uuid
from decimal import Decimal
from typing import List, Optional

import structlog
from pymongo.errors import PyMongoError

from database import RecordNotFound, RecordStore
from filters import Field, all_of
from schemas import ActionResult, Cart, CartItem, CartResult, CartSummary, format_amount, parse_price

logger = structlog.get_logger(__name__)

CART_COOKIE = "cart_id"
CART_COOKIE_MAX_AGE = 60 * 60 * 24 * 30  # 30 days
CART_ITEM_EXPAND = ["product", "product.category", "product.subcategory", "product.store"]


def get_or_create_cart(records: RecordStore, cart_id: Optional[str] = None, user_id: Optional[str] = None) -> str:
    """Return the id of the visitor's cart, creating one when needed.

    The cookie cart wins while it still exists. A signed-in user without one
    gets back their most recent cart. Anyone else gets a new cart.
    """
    if cart_id:
        try:
            return records.get_one("cart", cart_id)["id"]
        except RecordNotFound:
            logger.info("cart_not_found", cart_id=cart_id)
    if user_id:
        cart = records.get_first("cart", Field("user_id") == user_id, sort="-created_at")
        if cart:
            return cart["id"]
    cart = records.create("cart", Cart(session_id=str(uuid.uuid4()), user_id=user_id))
    logger.info("cart_created", cart_id=cart["id"], user_id=user_id)
    return cart["id"]


def get_cart_items(records: RecordStore, cart_id: Optional[str]) -> List[dict]:
    if not cart_id:
        return []
    try:
        return records.get_full_list(
            "cart_item",
            filter=Field("cart_id") == cart_id,
            sort="created_at",
            expand=CART_ITEM_EXPAND,
        )
    except PyMongoError as e:
        logger.error("cart_items_fetch_failed", cart_id=cart_id, error=str(e))
        return []


def add_to_cart(
    records: RecordStore,
    product_id: str,
    quantity: int = 1,
    cart_id: Optional[str] = None,
    user_id: Optional[str] = None,
    subcategory_id: Optional[str] = None,
) -> CartResult:
    """Add `quantity` of a product, bumping the existing line if there is one."""
    if quantity < 1:
        return CartResult(success=False, error="Quantity must be at least 1")
    try:
        records.get_one("product", product_id)
    except RecordNotFound:
        return CartResult(success=False, error="Product not found")
    except PyMongoError as e:
        logger.error("add_to_cart_failed", cart_id=cart_id, product_id=product_id, error=str(e))
        return CartResult(success=False, cart_id=cart_id, error="Failed to add to cart")

    try:
        cart_id = get_or_create_cart(records, cart_id, user_id)
        existing = records.get_first(
            "cart_item",
            all_of(
                Field("cart_id") == cart_id,
                Field("product_id") == product_id,
                Field("subcategory_id") == subcategory_id if subcategory_id else None,
            ),
        )
        if existing:
            records.increment("cart_item", existing["id"], "quantity", quantity)
        else:
            records.create("cart_item", CartItem(
                cart_id=cart_id,
                product_id=product_id,
                quantity=quantity,
                subcategory_id=subcategory_id,
            ))
    except (PyMongoError, RecordNotFound) as e:
        logger.error("add_to_cart_failed", cart_id=cart_id, product_id=product_id, error=str(e))
        return CartResult(success=False, cart_id=cart_id, error="Failed to add to cart")

    logger.info("cart_item_added", cart_id=cart_id, product_id=product_id, quantity=quantity)
    return CartResult(success=True, cart_id=cart_id)


def _cart_line(records: RecordStore, item_id: str, cart_id: Optional[str]) -> dict:
    # lines of someone else's cart do not exist for this visitor
    item = records.get_one("cart_item", item_id)
    if not cart_id or item.get("cart_id") != cart_id:
        raise RecordNotFound("cart_item", item_id)
    return item


def update_cart_item(records: RecordStore, item_id: str, quantity: int, cart_id: Optional[str]) -> ActionResult:
    try:
        _cart_line(records, item_id, cart_id)
        if quantity <= 0:
            records.delete("cart_item", item_id)
        else:
            records.update("cart_item", item_id, {"quantity": quantity})
    except RecordNotFound:
        return ActionResult(success=False, error="Cart item not found")
    except PyMongoError as e:
        logger.error("cart_item_update_failed", item_id=item_id, error=str(e))
        return ActionResult(success=False, error="Failed to update item")
    return ActionResult(success=True)


def delete_cart_item(records: RecordStore, item_id: str, cart_id: Optional[str]) -> ActionResult:
    try:
        _cart_line(records, item_id, cart_id)
        records.delete("cart_item", item_id)
    except RecordNotFound:
        return ActionResult(success=False, error="Cart item not found")
    except PyMongoError as e:
        logger.error("cart_item_delete_failed", item_id=item_id, error=str(e))
        return ActionResult(success=False, error="Failed to delete item")
    return ActionResult(success=True)


def delete_items_of_cart(records: RecordStore, cart_id: str) -> int:
    """Delete every line of a cart one by one, returns how many went."""
    items = records.get_full_list("cart_item", filter=Field("cart_id") == cart_id)
    for item in items:
        records.delete("cart_item", item["id"])
    return len(items)


def clear_cart(records: RecordStore, cart_id: str) -> ActionResult:
    try:
        delete_items_of_cart(records, cart_id)
    except (PyMongoError, RecordNotFound) as e:
        logger.error("cart_clear_failed", cart_id=cart_id, error=str(e))
        return ActionResult(success=False, error="Failed to clear cart")
    return ActionResult(success=True)


def get_cart_summary(records: RecordStore, cart_id: Optional[str]) -> CartSummary:
    if not cart_id:
        return CartSummary()
    try:
        items = records.get_full_list("cart_item", filter=Field("cart_id") == cart_id, expand=["product"])
    except PyMongoError as e:
        logger.error("cart_summary_failed", cart_id=cart_id, error=str(e))
        return CartSummary()

    total_items = 0
    total_price = Decimal("0")
    for item in items:
        total_items += item["quantity"]
        product = item.get("expand", {}).get("product")
        if product:
            total_price += parse_price(product.get("price", "0")) * item["quantity"]
    return CartSummary(total_items=total_items, total_price=format_amount(total_price))
