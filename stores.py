"""
Stores, the seller dashboard listings and plan limits
"""
import re
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

import structlog
from pymongo.errors import PyMongoError

from database import RecordNotFound, RecordStore
from filters import Field, all_of, page_count, sort_param
from schemas import ActionResult, Customer, Store, StoreCreate, StoreUpdate, format_amount

logger = structlog.get_logger(__name__)

# plan -> (store limit, product limit)
PLAN_LIMITS = {
    "free": (1, 10),
    "standard": (3, 100),
    "pro": (10, 1000),
}

ORDER_SORT_FIELDS = ["created_at", "quantity", "status", "email"]
CUSTOMER_SORT_FIELDS = ["name", "email", "total_spent", "order_placed", "created_at"]


def slugify(name: str) -> str:
    return re.sub(r"\s+", "-", name.strip().lower())


def _date_range(field: str, start: Optional[datetime], end: Optional[datetime]):
    # both ends or nothing
    if start is None or end is None:
        return None
    return (Field(field) >= _naive(start)) & (Field(field) <= _naive(end))


def _naive(value: datetime) -> datetime:
    # stored timestamps are naive UTC
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def get_featured_stores(records: RecordStore) -> List[dict]:
    try:
        stores = records.get_list(
            "store", page=1, per_page=8, filter=Field("active") == True, sort="-created_at", expand=["user"]  # noqa: E712
        ).items
        for store in stores:
            store["product_count"] = records.count("product", Field("store_id") == store["id"])
        return stores
    except PyMongoError as e:
        logger.error("featured_stores_fetch_failed", error=str(e))
        return []


def get_stores(records: RecordStore, user_id: str) -> List[dict]:
    try:
        return records.get_full_list("store", filter=Field("user_id") == user_id, sort="-created_at", expand=["user"])
    except PyMongoError as e:
        logger.error("user_stores_fetch_failed", user_id=user_id, error=str(e))
        return []


def get_store(records: RecordStore, store_id: str) -> Optional[dict]:
    try:
        return records.get_one("store", store_id, expand=["user"])
    except RecordNotFound:
        return None
    except PyMongoError as e:
        logger.error("store_fetch_failed", store_id=store_id, error=str(e))
        return None


def get_store_by_user_id(records: RecordStore, user_id: str) -> Optional[dict]:
    try:
        return records.get_first("store", Field("user_id") == user_id, sort="-created_at", expand=["user"])
    except PyMongoError as e:
        logger.error("user_store_fetch_failed", user_id=user_id, error=str(e))
        return None


def get_store_products(records: RecordStore, store_id: str, page: int = 1, per_page: int = 10) -> dict:
    try:
        result = records.get_list(
            "product",
            page=page,
            per_page=per_page,
            filter=Field("store_id") == store_id,
            sort="-created_at",
            expand=["category", "subcategory"],
        )
    except PyMongoError as e:
        logger.error("store_products_fetch_failed", store_id=store_id, error=str(e))
        return {"data": [], "page_count": 0}
    return {"data": result.items, "page_count": result.total_pages}


def get_store_orders(
    records: RecordStore,
    store_id: str,
    page: int = 1,
    per_page: int = 10,
    sort: Optional[str] = None,
    customer: Optional[str] = None,
    status: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> dict:
    """Orders table of the dashboard. `status` is a dot separated set, e.g. 'pending.shipped'."""
    statuses = [s for s in (status or "").split(".") if s]
    expr = all_of(
        Field("store_id") == store_id,
        Field("email").like(customer) if customer else None,
        Field("status").in_(statuses) if statuses else None,
        _date_range("created_at", start, end),
    )
    try:
        result = records.get_list(
            "order",
            page=page,
            per_page=per_page,
            filter=expr,
            sort=sort_param(sort, ORDER_SORT_FIELDS),
            expand=["store"],
        )
    except PyMongoError as e:
        logger.error("store_orders_fetch_failed", store_id=store_id, error=str(e))
        return {"data": [], "page_count": 0}
    rows = [
        {
            "id": order["id"],
            "store_id": order["store_id"],
            "quantity": order.get("quantity", 0),
            "amount": order.get("amount", "0.00"),
            "status": order.get("status"),
            "customer": order.get("email"),
            "created_at": order.get("created_at"),
        }
        for order in result.items
    ]
    return {"data": rows, "page_count": result.total_pages}


def group_customers(orders: List[dict]) -> List[Customer]:
    """Fold orders into one row per customer email, keeping the first order date."""
    customers = {}
    for order in orders:
        email = order.get("email")
        created = order.get("created_at")
        if email not in customers:
            customers[email] = {
                "name": order.get("name") or "N/A",
                "email": email,
                "order_placed": 0,
                "total_spent": Decimal("0"),
                "created_at": created,
            }
        entry = customers[email]
        entry["order_placed"] += 1
        entry["total_spent"] += Decimal(order.get("amount") or "0")
        if created is not None and (entry["created_at"] is None or created < entry["created_at"]):
            entry["created_at"] = created
    return [
        Customer(
            name=c["name"],
            email=c["email"],
            order_placed=c["order_placed"],
            total_spent=format_amount(c["total_spent"]),
            created_at=c["created_at"].isoformat() if c["created_at"] else None,
        )
        for c in customers.values()
    ]


def _customer_sort_key(field: str):
    if field == "total_spent":
        return lambda c: Decimal(c.total_spent)
    if field == "name":
        return lambda c: c.name.lower()
    if field == "email":
        return lambda c: c.email.lower()
    return lambda c: getattr(c, field) or ""


def get_store_customers(
    records: RecordStore,
    store_id: str,
    page: int = 1,
    per_page: int = 10,
    sort: Optional[str] = None,
    email: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> dict:
    """Customers are not stored; every matching order is loaded and grouped here."""
    page = page if page and page > 0 else 1
    per_page = per_page if per_page and per_page > 0 else 10
    expr = all_of(
        Field("store_id") == store_id,
        Field("email").like(email) if email else None,
        _date_range("created_at", start, end),
    )
    try:
        orders = records.get_full_list("order", filter=expr)
    except PyMongoError as e:
        logger.error("store_customers_fetch_failed", store_id=store_id, error=str(e))
        return {"data": [], "page_count": 0}

    customers = group_customers(orders)
    signed = sort_param(sort, CUSTOMER_SORT_FIELDS)
    field = signed.lstrip("-")
    customers.sort(key=_customer_sort_key(field), reverse=signed.startswith("-"))

    offset = (page - 1) * per_page
    return {
        "data": [c.model_dump() for c in customers[offset:offset + per_page]],
        "page_count": page_count(len(customers), per_page),
    }


def get_store_customer(records: RecordStore, store_id: str, email: str) -> Optional[dict]:
    try:
        orders = records.get_full_list(
            "order", filter=(Field("store_id") == store_id) & (Field("email") == email), sort="-created_at"
        )
    except PyMongoError as e:
        logger.error("store_customer_fetch_failed", store_id=store_id, error=str(e))
        return None
    if not orders:
        return None
    customer = group_customers(orders)[0]
    return {**customer.model_dump(), "orders": orders}


# -----------------------------
# Plan metrics
# -----------------------------

def get_user_usage_metrics(records: RecordStore, user_id: str) -> dict:
    try:
        stores = records.get_full_list("store", filter=Field("user_id") == user_id)
        product_count = sum(records.count("product", Field("store_id") == s["id"]) for s in stores)
    except PyMongoError as e:
        logger.error("usage_metrics_failed", user_id=user_id, error=str(e))
        return {"store_count": 0, "product_count": 0}
    return {"store_count": len(stores), "product_count": product_count}


def get_user_plan_metrics(records: RecordStore, user_id: str) -> dict:
    """Usage against the limits of the plan on the user's newest store."""
    try:
        usage = get_user_usage_metrics(records, user_id)
        store = records.get_first("store", Field("user_id") == user_id, sort="-created_at")
    except PyMongoError as e:
        logger.error("plan_metrics_failed", user_id=user_id, error=str(e))
        return {
            "store_count": 0,
            "store_limit": 0,
            "product_count": 0,
            "product_limit": 0,
            "store_limit_exceeded": False,
            "product_limit_exceeded": False,
            "subscription_plan": None,
        }
    plan = (store or {}).get("plan") or "free"
    store_limit, product_limit = PLAN_LIMITS.get(plan, PLAN_LIMITS["free"])
    return {
        "store_count": usage["store_count"],
        "store_limit": store_limit,
        "product_count": usage["product_count"],
        "product_limit": product_limit,
        "store_limit_exceeded": usage["store_count"] >= store_limit,
        "product_limit_exceeded": usage["product_count"] >= product_limit,
        "subscription_plan": plan,
    }


# -----------------------------
# Store actions
# -----------------------------

def create_store(records: RecordStore, user_id: str, data: StoreCreate) -> ActionResult:
    if get_user_plan_metrics(records, user_id)["store_limit_exceeded"]:
        return ActionResult(success=False, error="Store limit reached for your plan")
    store = Store(
        name=data.name,
        slug=data.slug or slugify(data.name),
        description=data.description or "",
        user_id=user_id,
        plan="free",
        cancel_plan_at_end=False,
        product_limit=10,
        tag_limit=5,
        variant_limit=5,
        active=True,
    )
    try:
        created = records.create("store", store)
    except PyMongoError as e:
        logger.error("store_create_failed", user_id=user_id, error=str(e))
        return ActionResult(success=False, error="Failed to create store. Please try again.")
    logger.info("store_created", store_id=created["id"], user_id=user_id)
    return ActionResult(success=True, id=created["id"])


def update_store(records: RecordStore, store_id: str, data: StoreUpdate) -> ActionResult:
    changes = {}
    if data.name:
        changes["name"] = data.name
    if data.description is not None:
        changes["description"] = data.description
    if data.slug:
        changes["slug"] = data.slug
    try:
        records.update("store", store_id, changes)
    except RecordNotFound:
        return ActionResult(success=False, error="Store not found")
    except PyMongoError as e:
        logger.error("store_update_failed", store_id=store_id, error=str(e))
        return ActionResult(success=False, error="Failed to update store")
    return ActionResult(success=True, id=store_id)


def delete_store(records: RecordStore, store_id: str) -> ActionResult:
    try:
        records.delete("store", store_id)
    except RecordNotFound:
        return ActionResult(success=False, error="Store not found")
    except PyMongoError as e:
        logger.error("store_delete_failed", store_id=store_id, error=str(e))
        return ActionResult(success=False, error="Failed to delete store")
    logger.info("store_deleted", store_id=store_id)
    return ActionResult(success=True, id=store_id)
