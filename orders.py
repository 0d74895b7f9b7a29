"""
Order history and order status

Orders are written once by checkout; afterwards only `status` changes.
"""
from typing import List, Optional

import structlog
from pymongo.errors import PyMongoError

from database import RecordNotFound, RecordStore
from filters import Field
from schemas import ActionResult, OrderStatus

logger = structlog.get_logger(__name__)

ORDER_EXPAND = ["user", "store", "address"]


def get_orders(records: RecordStore, user_id: Optional[str] = None, page: int = 1, per_page: int = 10) -> dict:
    try:
        result = records.get_list(
            "order",
            page=page,
            per_page=per_page,
            filter=Field("user_id") == user_id if user_id else None,
            sort="-created_at",
            expand=ORDER_EXPAND,
        )
    except PyMongoError as e:
        logger.error("orders_fetch_failed", user_id=user_id, error=str(e))
        return {"data": [], "page_count": 0}
    return {"data": result.items, "page_count": result.total_pages}


def get_order(records: RecordStore, order_id: str) -> Optional[dict]:
    try:
        return records.get_one("order", order_id, expand=ORDER_EXPAND)
    except RecordNotFound:
        return None
    except PyMongoError as e:
        logger.error("order_fetch_failed", order_id=order_id, error=str(e))
        return None


def get_order_line_items(records: RecordStore, order_id: str) -> List[dict]:
    order = get_order(records, order_id)
    return (order or {}).get("items") or []


def get_order_count(records: RecordStore, store_id: str) -> int:
    try:
        return records.count("order", Field("store_id") == store_id)
    except PyMongoError as e:
        logger.error("order_count_failed", store_id=store_id, error=str(e))
        return 0


def get_sale_count(records: RecordStore, store_id: str) -> int:
    try:
        return records.count("order", (Field("store_id") == store_id) & (Field("status") != "cancelled"))
    except PyMongoError as e:
        logger.error("sale_count_failed", store_id=store_id, error=str(e))
        return 0


def update_order_status(records: RecordStore, order_id: str, status: OrderStatus) -> ActionResult:
    try:
        records.update("order", order_id, {"status": status})
    except RecordNotFound:
        return ActionResult(success=False, error="Order not found")
    except PyMongoError as e:
        logger.error("order_status_update_failed", order_id=order_id, error=str(e))
        return ActionResult(success=False, error="Failed to update order")
    logger.info("order_status_updated", order_id=order_id, status=status)
    return ActionResult(success=True, id=order_id)
