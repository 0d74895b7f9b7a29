"""
Catalog queries and product actions

Read functions never raise on backend trouble: they log and hand back an
empty value so the page can show an empty state.
"""
from decimal import InvalidOperation
from typing import List, Optional

import structlog
from pymongo.errors import PyMongoError

from database import RecordNotFound, RecordStore
from filters import Field, all_of, sort_param
from schemas import ActionResult, Product, ProductCreate, ProductUpdate, parse_price, price_to_cents

logger = structlog.get_logger(__name__)

PRODUCT_EXPAND = ["category", "subcategory", "store"]
PRODUCT_SORT_FIELDS = ["created_at", "name", "price", "rating", "inventory"]
PRODUCT_SORT_ALIASES = {"price": "price_cents"}


def _split(value: Optional[str]) -> List[str]:
    return [v.strip() for v in (value or "").split(",") if v.strip()]


def _price_bound(value: str) -> Optional[int]:
    try:
        return int(parse_price(value) * 100) if value.strip() else None
    except (InvalidOperation, ValueError):
        return None


def price_range_filter(price_range: Optional[str]):
    """'10-50' -> 10.00 <= price <= 50.00; either side may be left empty."""
    if not price_range:
        return None
    low, _, high = price_range.partition("-")
    low_cents, high_cents = _price_bound(low), _price_bound(high)
    return all_of(
        Field("price_cents") >= low_cents if low_cents is not None else None,
        Field("price_cents") <= high_cents if high_cents is not None else None,
    )


def _ids_for_slugs(records: RecordStore, collection: str, slugs: List[str]) -> List[str]:
    return [r["id"] for r in records.get_full_list(collection, filter=Field("slug").in_(slugs))]


def get_featured_products(records: RecordStore) -> List[dict]:
    try:
        return records.get_list(
            "product",
            page=1,
            per_page=8,
            filter=(Field("active") == True) & (Field("rating") >= 4),  # noqa: E712
            sort="-rating,-created_at",
            expand=PRODUCT_EXPAND,
        ).items
    except PyMongoError as e:
        logger.error("featured_products_fetch_failed", error=str(e))
        return []


def get_products(
    records: RecordStore,
    page: int = 1,
    per_page: int = 10,
    sort: Optional[str] = None,
    categories: Optional[str] = None,
    subcategories: Optional[str] = None,
    price_range: Optional[str] = None,
    store_ids: Optional[str] = None,
    active: str = "true",
) -> dict:
    """One page of the product listing: {"data": [...], "page_count": n}."""
    try:
        category_slugs = _split(categories)
        subcategory_slugs = _split(subcategories)
        stores = _split(store_ids)
        expr = all_of(
            Field("active") == (active == "true"),
            Field("category_id").in_(_ids_for_slugs(records, "category", category_slugs)) if category_slugs else None,
            Field("subcategory_id").in_(_ids_for_slugs(records, "subcategory", subcategory_slugs)) if subcategory_slugs else None,
            price_range_filter(price_range),
            Field("store_id").in_(stores) if stores else None,
        )
        result = records.get_list(
            "product",
            page=page,
            per_page=per_page,
            filter=expr,
            sort=sort_param(sort, PRODUCT_SORT_FIELDS, aliases=PRODUCT_SORT_ALIASES),
            expand=PRODUCT_EXPAND,
        )
    except PyMongoError as e:
        logger.error("products_fetch_failed", error=str(e))
        return {"data": [], "page_count": 0}
    return {"data": result.items, "page_count": result.total_pages}


def get_product(records: RecordStore, product_id: str) -> Optional[dict]:
    try:
        return records.get_one("product", product_id, expand=PRODUCT_EXPAND)
    except RecordNotFound:
        return None
    except PyMongoError as e:
        logger.error("product_fetch_failed", product_id=product_id, error=str(e))
        return None


def get_product_inventory(records: RecordStore, product_id: str) -> int:
    product = get_product(records, product_id)
    return int(product.get("inventory") or 0) if product else 0


def filter_products(
    records: RecordStore,
    category: Optional[str] = None,
    subcategory: Optional[str] = None,
    store: Optional[str] = None,
    search: Optional[str] = None,
) -> dict:
    try:
        expr = all_of(
            Field("active") == True,  # noqa: E712
            Field("category_id") == category if category else None,
            Field("subcategory_id") == subcategory if subcategory else None,
            Field("store_id") == store if store else None,
            Field("name").like(search) if search else None,
        )
        products = records.get_list("product", page=1, per_page=50, filter=expr, sort="-created_at")
    except PyMongoError as e:
        logger.error("products_filter_failed", error=str(e))
        return {"data": [], "error": "Failed to fetch products"}
    return {"data": products.items, "error": None}


def get_categories(records: RecordStore) -> List[dict]:
    try:
        return records.get_full_list("category", sort="name")
    except PyMongoError as e:
        logger.error("categories_fetch_failed", error=str(e))
        return []


def get_category(records: RecordStore, slug: str) -> Optional[dict]:
    try:
        return records.get_first("category", Field("slug") == slug)
    except PyMongoError as e:
        logger.error("category_fetch_failed", slug=slug, error=str(e))
        return None


def get_subcategories(records: RecordStore, category_id: Optional[str] = None) -> List[dict]:
    try:
        return records.get_full_list(
            "subcategory",
            filter=Field("category_id") == category_id if category_id else None,
            sort="name",
            expand=["category"],
        )
    except PyMongoError as e:
        logger.error("subcategories_fetch_failed", category_id=category_id, error=str(e))
        return []


def get_product_count_by_category(records: RecordStore, category_id: str) -> int:
    try:
        return records.count("product", (Field("category_id") == category_id) & (Field("active") == True))  # noqa: E712
    except PyMongoError as e:
        logger.error("product_count_failed", category_id=category_id, error=str(e))
        return 0


# -----------------------------
# Product actions
# -----------------------------

def add_product(records: RecordStore, store_id: str, data: ProductCreate) -> ActionResult:
    try:
        store = records.get_one("store", store_id)
        records.get_one("category", data.category_id)
        if records.count("product", Field("store_id") == store_id) >= store.get("product_limit", 10):
            return ActionResult(success=False, error="Product limit reached for this store")
        product = Product(
            name=data.name,
            description=data.description or "",
            price=data.price,
            inventory=data.inventory or 0,
            category_id=data.category_id,
            subcategory_id=data.subcategory_id or None,
            images=data.images,
            store_id=store_id,
            active=True,
        )
        created = records.create("product", {**product.model_dump(), "price_cents": price_to_cents(product.price)})
    except RecordNotFound as e:
        return ActionResult(success=False, error=f"{e.collection.capitalize()} not found")
    except PyMongoError as e:
        logger.error("product_create_failed", store_id=store_id, error=str(e))
        return ActionResult(success=False, error="Failed to add product")
    logger.info("product_created", product_id=created["id"], store_id=store_id)
    return ActionResult(success=True, id=created["id"])


def update_product(records: RecordStore, product_id: str, data: ProductUpdate) -> ActionResult:
    changes = {
        "name": data.name,
        "description": data.description or "",
        "price": data.price,
        "price_cents": price_to_cents(data.price),
        "inventory": data.inventory or 0,
    }
    # relations and images only change when given
    if data.category_id:
        changes["category_id"] = data.category_id
    if data.subcategory_id:
        changes["subcategory_id"] = data.subcategory_id
    if data.images is not None:
        changes["images"] = data.images
    try:
        records.update("product", product_id, changes)
    except RecordNotFound:
        return ActionResult(success=False, error="Product not found")
    except PyMongoError as e:
        logger.error("product_update_failed", product_id=product_id, error=str(e))
        return ActionResult(success=False, error="Failed to update product")
    return ActionResult(success=True, id=product_id)


def delete_product(records: RecordStore, product_id: str) -> ActionResult:
    try:
        records.delete("product", product_id)
        for item in records.get_full_list("cart_item", filter=Field("product_id") == product_id):
            records.delete("cart_item", item["id"])
    except RecordNotFound:
        return ActionResult(success=False, error="Product not found")
    except PyMongoError as e:
        logger.error("product_delete_failed", product_id=product_id, error=str(e))
        return ActionResult(success=False, error="Failed to delete product")
    logger.info("product_deleted", product_id=product_id)
    return ActionResult(success=True, id=product_id)


def update_product_rating(records: RecordStore, product_id: str, rating: float) -> ActionResult:
    try:
        records.update("product", product_id, {"rating": rating})
    except RecordNotFound:
        return ActionResult(success=False, error="Product not found")
    except PyMongoError as e:
        logger.error("product_rating_failed", product_id=product_id, error=str(e))
        return ActionResult(success=False, error="Failed to update rating")
    return ActionResult(success=True, id=product_id)


def check_product_inventory(records: RecordStore, product_id: str) -> dict:
    product = get_product(records, product_id)
    if product is None:
        return {"available": False, "stock": 0}
    stock = int(product.get("inventory") or 0)
    return {"available": stock > 0, "stock": stock}


# -----------------------------
# Seed data
# -----------------------------

INITIAL_CATEGORIES = [
    {"name": "Vieboards", "slug": "vieboards", "description": "The best vieboards for all levels of viers."},
    {"name": "Clothing", "slug": "clothing", "description": "Stylish and comfortable vieboarding clothing."},
    {"name": "Shoes", "slug": "shoes", "description": "Rad shoes for long vie sessions."},
    {"name": "Accessories", "slug": "accessories", "description": "The essential vieboarding accessories to keep you rolling."},
]

INITIAL_SUBCATEGORIES = {
    "vieboards": [
        ("Decks", "decks", "The board itself."),
        ("Wheels", "wheels", "The wheels that go on the board."),
        ("Trucks", "trucks", "The trucks that go on the board."),
        ("Bearings", "bearings", "The bearings that go in the wheels."),
        ("Griptape", "griptape", "The griptape that goes on the board."),
        ("Hardware", "hardware", "The hardware that goes on the board."),
        ("Tools", "tools", "The tools that go with the board."),
    ],
    "clothing": [
        ("T-shirts", "t-shirts", "Cool and comfy tees for effortless style."),
        ("Hoodies", "hoodies", "Cozy up in trendy hoodies."),
        ("Pants", "pants", "Relaxed and stylish pants for everyday wear."),
        ("Shorts", "shorts", "Stay cool with casual and comfortable shorts."),
        ("Hats", "hats", "Top off your look with stylish and laid-back hats."),
    ],
    "shoes": [
        ("Low Tops", "low-tops", "Rad low tops shoes for a stylish low-profile look."),
        ("High Tops", "high-tops", "Elevate your style with rad high top shoes."),
        ("Slip-ons", "slip-ons", "Effortless style with rad slip-on shoes."),
        ("Pros", "pros", "Performance-driven rad shoes for the pros."),
        ("Classics", "classics", "Timeless style with rad classic shoes."),
    ],
    "accessories": [
        ("Vie Tools", "vie-tools", "Essential tools for maintaining your vieboard, all rad."),
        ("Bushings", "bushings", "Upgrade your ride with our rad selection of bushings."),
        ("Shock & Riser Pads", "shock-riser-pads", "Enhance your vieboard's performance with rad shock and riser pads."),
        ("Vie Rails", "vie-rails", "Add creativity and style to your tricks with our rad vie rails."),
        ("Wax", "wax", "Keep your board gliding smoothly with our rad vie wax."),
        ("Socks", "socks", "Keep your feet comfy and stylish with our rad socks."),
        ("Backpacks", "backpacks", "Carry your gear in style with our rad backpacks."),
    ],
}


def seed_categories(records: RecordStore) -> dict:
    """Insert the initial categories and subcategories if there are none yet."""
    if records.count("category") > 0:
        return {"categories": 0, "subcategories": 0}
    subcategories = 0
    for category in INITIAL_CATEGORIES:
        created = records.create("category", category)
        for name, slug, description in INITIAL_SUBCATEGORIES[category["slug"]]:
            records.create("subcategory", {
                "name": name,
                "slug": slug,
                "description": description,
                "category_id": created["id"],
            })
            subcategories += 1
    return {"categories": len(INITIAL_CATEGORIES), "subcategories": subcategories}
