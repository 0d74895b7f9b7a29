import logging
import os
from datetime import datetime
from typing import List, Optional

import structlog
from fastapi import Cookie, Depends, FastAPI, File, HTTPException, Query, Response, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import OAuth2PasswordRequestForm
from fastapi.staticfiles import StaticFiles

import catalog
import orders
import stores
from auth import (
    ACCESS_TOKEN_EXPIRE_MINUTES,
    AUTH_COOKIE,
    Token,
    UserOut,
    authenticate,
    create_access_token,
    get_current_user,
    get_optional_user,
    register_user,
)
from cart import (
    CART_COOKIE,
    CART_COOKIE_MAX_AGE,
    add_to_cart,
    clear_cart,
    delete_cart_item,
    get_cart_items,
    get_cart_summary,
    update_cart_item,
)
from checkout import process_order
from database import RecordStore, db, get_records
from filters import Field
from notifications import EmailError, get_notification, subscribe_newsletter, update_notification
from schemas import (
    ActionResult,
    AddToCart,
    CartItemUpdate,
    CartResult,
    CheckoutRequest,
    CheckoutResult,
    NewsletterSignup,
    NotificationUpdate,
    OrderStatusUpdate,
    ProductCreate,
    ProductUpdate,
    RatingUpdate,
    StoreCreate,
    StoreUpdate,
    UserCreate,
)
from uploads import FILES_URL_PREFIX, UPLOAD_DIR, UploadRejected, save_uploads

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(LOG_LEVEL)),
)

app = FastAPI(title="Storefront API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

os.makedirs(UPLOAD_DIR, exist_ok=True)
app.mount(FILES_URL_PREFIX, StaticFiles(directory=UPLOAD_DIR), name="files")


# Helpers
def failed(result: ActionResult, status_code: int = 400):
    not_found = result.error and result.error.endswith("not found")
    raise HTTPException(404 if not_found else status_code, result.error)


def set_cart_cookie(response: Response, cart_id: str):
    response.set_cookie(CART_COOKIE, cart_id, max_age=CART_COOKIE_MAX_AGE, httponly=True, samesite="lax")


def owned_store(
    store_id: str,
    current: UserOut = Depends(get_current_user),
    records: RecordStore = Depends(get_records),
) -> dict:
    store = stores.get_store(records, store_id)
    if not store:
        raise HTTPException(404, "Store not found")
    if store.get("user_id") != current.id:
        raise HTTPException(403, "Not your store")
    return store


def store_product(records: RecordStore, store: dict, product_id: str) -> dict:
    product = catalog.get_product(records, product_id)
    if not product or product.get("store_id") != store["id"]:
        raise HTTPException(404, "Product not found")
    return product


@app.get("/")
def read_root():
    return {"message": "Storefront backend is running"}


# Auth
@app.post("/api/register", response_model=UserOut)
def register(user: UserCreate, records: RecordStore = Depends(get_records)):
    return register_user(records, user.name, user.email, user.password)


@app.post("/api/login", response_model=Token)
def login(response: Response, form_data: OAuth2PasswordRequestForm = Depends(), records: RecordStore = Depends(get_records)):
    user = authenticate(records, form_data.username, form_data.password)
    if not user:
        raise HTTPException(400, "Incorrect email or password")
    access_token = create_access_token({"sub": user["id"]})
    response.set_cookie(AUTH_COOKIE, access_token, max_age=ACCESS_TOKEN_EXPIRE_MINUTES * 60, httponly=True, samesite="lax")
    return Token(access_token=access_token)


@app.post("/api/logout")
def logout(response: Response):
    response.delete_cookie(AUTH_COOKIE)
    return {"ok": True}


@app.get("/api/me", response_model=UserOut)
def me(current: UserOut = Depends(get_current_user)):
    return current


# Catalog
@app.get("/api/categories")
def list_categories(records: RecordStore = Depends(get_records)):
    return catalog.get_categories(records)


@app.get("/api/categories/{slug}")
def get_category(slug: str, records: RecordStore = Depends(get_records)):
    category = catalog.get_category(records, slug)
    if not category:
        raise HTTPException(404, "Category not found")
    return {
        "category": category,
        "subcategories": catalog.get_subcategories(records, category["id"]),
        "product_count": catalog.get_product_count_by_category(records, category["id"]),
    }


@app.get("/api/subcategories")
def list_subcategories(category_id: Optional[str] = None, records: RecordStore = Depends(get_records)):
    return catalog.get_subcategories(records, category_id)


@app.get("/api/products")
def list_products(
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=100),
    sort: Optional[str] = Query(None, description="field.asc|field.desc, e.g. price.asc"),
    categories: Optional[str] = Query(None, description="comma separated category slugs"),
    subcategories: Optional[str] = Query(None, description="comma separated subcategory slugs"),
    price_range: Optional[str] = Query(None, description="min-max"),
    store_ids: Optional[str] = Query(None, description="comma separated store ids"),
    active: str = Query("true"),
    records: RecordStore = Depends(get_records),
):
    return catalog.get_products(
        records,
        page=page,
        per_page=per_page,
        sort=sort,
        categories=categories,
        subcategories=subcategories,
        price_range=price_range,
        store_ids=store_ids,
        active=active,
    )


@app.get("/api/products/featured")
def featured_products(records: RecordStore = Depends(get_records)):
    return catalog.get_featured_products(records)


@app.get("/api/products/filter")
def filter_products(
    category: Optional[str] = None,
    subcategory: Optional[str] = None,
    store: Optional[str] = None,
    search: Optional[str] = None,
    records: RecordStore = Depends(get_records),
):
    return catalog.filter_products(records, category=category, subcategory=subcategory, store=store, search=search)


@app.get("/api/products/{product_id}")
def get_product(product_id: str, records: RecordStore = Depends(get_records)):
    product = catalog.get_product(records, product_id)
    if not product:
        raise HTTPException(404, "Product not found")
    return product


@app.get("/api/products/{product_id}/inventory")
def product_inventory(product_id: str, records: RecordStore = Depends(get_records)):
    return catalog.check_product_inventory(records, product_id)


@app.post("/api/products/{product_id}/rating", response_model=ActionResult)
def rate_product(
    product_id: str,
    body: RatingUpdate,
    current: UserOut = Depends(get_current_user),
    records: RecordStore = Depends(get_records),
):
    result = catalog.update_product_rating(records, product_id, body.rating)
    if not result.success:
        failed(result)
    return result


# Stores
@app.get("/api/stores/featured")
def featured_stores(records: RecordStore = Depends(get_records)):
    return stores.get_featured_stores(records)


@app.get("/api/stores/{store_id}")
def get_store(store_id: str, records: RecordStore = Depends(get_records)):
    store = stores.get_store(records, store_id)
    if not store:
        raise HTTPException(404, "Store not found")
    return store


@app.get("/api/stores/{store_id}/products")
def store_products(
    store_id: str,
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=100),
    records: RecordStore = Depends(get_records),
):
    if not stores.get_store(records, store_id):
        raise HTTPException(404, "Store not found")
    return stores.get_store_products(records, store_id, page=page, per_page=per_page)


# Cart (the cart id lives in a cookie)
@app.get("/api/cart")
def get_cart(cart_id: Optional[str] = Cookie(None), records: RecordStore = Depends(get_records)):
    return {
        "cart_id": cart_id,
        "items": get_cart_items(records, cart_id),
        "summary": get_cart_summary(records, cart_id),
    }


@app.get("/api/cart/summary")
def cart_summary(cart_id: Optional[str] = Cookie(None), records: RecordStore = Depends(get_records)):
    return get_cart_summary(records, cart_id)


@app.post("/api/cart/items", response_model=CartResult)
def add_cart_item(
    body: AddToCart,
    response: Response,
    cart_id: Optional[str] = Cookie(None),
    current: Optional[UserOut] = Depends(get_optional_user),
    records: RecordStore = Depends(get_records),
):
    result = add_to_cart(
        records,
        body.product_id,
        body.quantity,
        cart_id=cart_id,
        user_id=current.id if current else None,
        subcategory_id=body.subcategory_id,
    )
    if not result.success:
        failed(result)
    set_cart_cookie(response, result.cart_id)
    return result


@app.patch("/api/cart/items/{item_id}", response_model=ActionResult)
def update_cart_line(
    item_id: str,
    body: CartItemUpdate,
    cart_id: Optional[str] = Cookie(None),
    records: RecordStore = Depends(get_records),
):
    result = update_cart_item(records, item_id, body.quantity, cart_id)
    if not result.success:
        failed(result)
    return result


@app.delete("/api/cart/items/{item_id}", response_model=ActionResult)
def delete_cart_line(item_id: str, cart_id: Optional[str] = Cookie(None), records: RecordStore = Depends(get_records)):
    result = delete_cart_item(records, item_id, cart_id)
    if not result.success:
        failed(result)
    return result


@app.delete("/api/cart", response_model=ActionResult)
def empty_cart(cart_id: Optional[str] = Cookie(None), records: RecordStore = Depends(get_records)):
    if not cart_id:
        return ActionResult(success=True)
    result = clear_cart(records, cart_id)
    if not result.success:
        failed(result)
    return result


# Checkout
@app.post("/api/checkout", response_model=CheckoutResult)
def checkout(
    body: CheckoutRequest,
    cart_id: Optional[str] = Cookie(None),
    current: Optional[UserOut] = Depends(get_optional_user),
    records: RecordStore = Depends(get_records),
):
    result = process_order(
        records,
        body.checkout,
        body.items,
        user_id=current.id if current else None,
        cart_id=cart_id,
    )
    if not result.success:
        failed(result)
    return result


# Purchases of the signed-in customer
@app.get("/api/dashboard/purchases")
def list_purchases(
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=100),
    current: UserOut = Depends(get_current_user),
    records: RecordStore = Depends(get_records),
):
    return orders.get_orders(records, user_id=current.id, page=page, per_page=per_page)


@app.get("/api/dashboard/purchases/{order_id}")
def get_purchase(order_id: str, current: UserOut = Depends(get_current_user), records: RecordStore = Depends(get_records)):
    order = orders.get_order(records, order_id)
    if not order or order.get("user_id") != current.id:
        raise HTTPException(404, "Order not found")
    return {"order": order, "line_items": orders.get_order_line_items(records, order_id)}


@app.get("/api/dashboard/billing")
def billing(current: UserOut = Depends(get_current_user), records: RecordStore = Depends(get_records)):
    return stores.get_user_plan_metrics(records, current.id)


# Seller dashboard
@app.get("/api/dashboard/stores")
def my_stores(current: UserOut = Depends(get_current_user), records: RecordStore = Depends(get_records)):
    return stores.get_stores(records, current.id)


@app.post("/api/dashboard/stores", response_model=ActionResult, status_code=201)
def create_store(body: StoreCreate, current: UserOut = Depends(get_current_user), records: RecordStore = Depends(get_records)):
    result = stores.create_store(records, current.id, body)
    if not result.success:
        failed(result)
    return result


@app.get("/api/dashboard/stores/{store_id}")
def store_overview(store: dict = Depends(owned_store), records: RecordStore = Depends(get_records)):
    return {
        "store": store,
        "product_count": records.count("product", Field("store_id") == store["id"]),
        "order_count": orders.get_order_count(records, store["id"]),
        "sale_count": orders.get_sale_count(records, store["id"]),
    }


@app.patch("/api/dashboard/stores/{store_id}", response_model=ActionResult)
def update_store(body: StoreUpdate, store: dict = Depends(owned_store), records: RecordStore = Depends(get_records)):
    result = stores.update_store(records, store["id"], body)
    if not result.success:
        failed(result)
    return result


@app.delete("/api/dashboard/stores/{store_id}", response_model=ActionResult)
def delete_store(store: dict = Depends(owned_store), records: RecordStore = Depends(get_records)):
    result = stores.delete_store(records, store["id"])
    if not result.success:
        failed(result)
    return result


@app.get("/api/dashboard/stores/{store_id}/products")
def dashboard_products(
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=100),
    store: dict = Depends(owned_store),
    records: RecordStore = Depends(get_records),
):
    return stores.get_store_products(records, store["id"], page=page, per_page=per_page)


@app.post("/api/dashboard/stores/{store_id}/products", response_model=ActionResult, status_code=201)
def add_product(body: ProductCreate, store: dict = Depends(owned_store), records: RecordStore = Depends(get_records)):
    result = catalog.add_product(records, store["id"], body)
    if not result.success:
        failed(result)
    return result


@app.patch("/api/dashboard/stores/{store_id}/products/{product_id}", response_model=ActionResult)
def update_product(
    product_id: str,
    body: ProductUpdate,
    store: dict = Depends(owned_store),
    records: RecordStore = Depends(get_records),
):
    store_product(records, store, product_id)
    result = catalog.update_product(records, product_id, body)
    if not result.success:
        failed(result)
    return result


@app.delete("/api/dashboard/stores/{store_id}/products/{product_id}", response_model=ActionResult)
def delete_product(product_id: str, store: dict = Depends(owned_store), records: RecordStore = Depends(get_records)):
    store_product(records, store, product_id)
    result = catalog.delete_product(records, product_id)
    if not result.success:
        failed(result)
    return result


@app.get("/api/dashboard/stores/{store_id}/orders")
def dashboard_orders(
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=100),
    sort: Optional[str] = Query(None, description="field.asc|field.desc"),
    customer: Optional[str] = None,
    status: Optional[str] = Query(None, description="dot separated statuses, e.g. pending.shipped"),
    start: Optional[datetime] = Query(None, alias="from"),
    end: Optional[datetime] = Query(None, alias="to"),
    store: dict = Depends(owned_store),
    records: RecordStore = Depends(get_records),
):
    return stores.get_store_orders(
        records, store["id"], page=page, per_page=per_page, sort=sort,
        customer=customer, status=status, start=start, end=end,
    )


@app.patch("/api/dashboard/stores/{store_id}/orders/{order_id}", response_model=ActionResult)
def update_order_status(
    order_id: str,
    body: OrderStatusUpdate,
    store: dict = Depends(owned_store),
    records: RecordStore = Depends(get_records),
):
    order = orders.get_order(records, order_id)
    if not order or order.get("store_id") != store["id"]:
        raise HTTPException(404, "Order not found")
    result = orders.update_order_status(records, order_id, body.status)
    if not result.success:
        failed(result)
    return result


@app.get("/api/dashboard/stores/{store_id}/customers")
def dashboard_customers(
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=100),
    sort: Optional[str] = Query(None, description="field.asc|field.desc"),
    email: Optional[str] = None,
    start: Optional[datetime] = Query(None, alias="from"),
    end: Optional[datetime] = Query(None, alias="to"),
    store: dict = Depends(owned_store),
    records: RecordStore = Depends(get_records),
):
    return stores.get_store_customers(
        records, store["id"], page=page, per_page=per_page, sort=sort, email=email, start=start, end=end,
    )


@app.get("/api/dashboard/stores/{store_id}/customers/{email}")
def dashboard_customer(email: str, store: dict = Depends(owned_store), records: RecordStore = Depends(get_records)):
    customer = stores.get_store_customer(records, store["id"], email)
    if not customer:
        raise HTTPException(404, "Customer not found")
    return customer


# Email
@app.post("/api/email/newsletter")
def join_newsletter(body: NewsletterSignup, records: RecordStore = Depends(get_records)):
    try:
        notification = subscribe_newsletter(records, body.email, token=body.token, subject=body.subject)
    except EmailError as e:
        raise HTTPException(500, str(e))
    if notification is None:
        failed(ActionResult(success=False, error="Failed to subscribe to the newsletter"), 503)
    return {"ok": True, "token": notification["token"]}


@app.get("/api/notifications")
def read_notification(token: str, records: RecordStore = Depends(get_records)):
    notification = get_notification(records, token)
    if not notification:
        raise HTTPException(404, "Notification not found")
    return notification


@app.patch("/api/notifications", response_model=ActionResult)
def change_notification(body: NotificationUpdate, records: RecordStore = Depends(get_records)):
    result = update_notification(records, body)
    if not result.success:
        failed(result)
    return result


# Uploads
@app.post("/api/uploads")
def upload_files(files: List[UploadFile] = File(...), current: UserOut = Depends(get_current_user)):
    try:
        urls = save_uploads(files)
    except UploadRejected as e:
        raise HTTPException(400, str(e))
    return {"urls": urls, "uploaded_by": current.id}


# Seed the category tree if empty
@app.post("/api/seed")
def seed(records: RecordStore = Depends(get_records)):
    return {"ok": True, "created": catalog.seed_categories(records)}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "collections": []
    }
    try:
        if db is not None:
            response["database"] = "✅ Available"
            response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
            response["database_name"] = "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set"
            try:
                collections = db.list_collection_names()
                response["collections"] = collections[:10]
                response["database"] = "✅ Connected & Working"
            except Exception as e:
                response["database"] = f"⚠️ Connected but Error: {str(e)[:50]}"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:50]}"
    return response


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
