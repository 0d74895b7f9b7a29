"""
Database Schemas for the storefront

Each Pydantic model represents a collection in MongoDB.
Collection name is the lowercase snake_case of the class name
(CartItem -> "cart_item"). Relation fields hold the string id of the
referenced record and end in `_id`.
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Annotated, List, Optional, Literal
from pydantic import BaseModel, BeforeValidator, Field, EmailStr

StorePlan = Literal["free", "standard", "pro"]
OrderStatus = Literal["pending", "processing", "shipped", "delivered", "cancelled"]

CENT = Decimal("0.01")
MAX_PRICE = Decimal("99999999.99")
MAX_QUANTITY = 10_000


def parse_price(value) -> Decimal:
    """Parse a price given as a string or number, rounded to cents."""
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValueError("Price must be a decimal number")
    if not amount.is_finite() or amount < 0:
        raise ValueError("Price must be a non-negative decimal number")
    if amount > MAX_PRICE:
        raise ValueError(f"Price must not exceed {MAX_PRICE}")
    try:
        return amount.quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValueError("Price must be a decimal number")


def format_amount(amount: Decimal) -> str:
    return f"{amount.quantize(CENT, rounding=ROUND_HALF_UP):.2f}"


def price_to_cents(price: str) -> int:
    return int(parse_price(price) * 100)


def _normalise_price(value):
    if value is None:
        return value
    return format_amount(parse_price(value))


Price = Annotated[str, BeforeValidator(_normalise_price)]


# never inlined into another record through expand
HIDDEN_FIELDS = {"user": ["password_hash"]}

# relation name -> (field on the record, target collection)
RELATIONS = {
    "subcategory": {"category": ("category_id", "category")},
    "store": {"user": ("user_id", "user")},
    "product": {
        "store": ("store_id", "store"),
        "category": ("category_id", "category"),
        "subcategory": ("subcategory_id", "subcategory"),
    },
    "cart": {"user": ("user_id", "user")},
    "cart_item": {
        "cart": ("cart_id", "cart"),
        "product": ("product_id", "product"),
    },
    "address": {"user": ("user_id", "user")},
    "order": {
        "user": ("user_id", "user"),
        "store": ("store_id", "store"),
        "address": ("address_id", "address"),
    },
    "notification": {"user": ("user_id", "user")},
}


class User(BaseModel):
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address")
    password_hash: str = Field(..., description="Hashed password")
    avatar_url: Optional[str] = Field(None)
    is_active: bool = Field(True)


class Category(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    slug: str = Field(..., pattern=r"^[a-z0-9]+(?:-[a-z0-9]+)*$", description="URL-safe identifier")
    description: Optional[str] = Field(None, max_length=500)
    image: Optional[str] = None


class Subcategory(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    slug: str = Field(..., pattern=r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
    description: Optional[str] = Field(None, max_length=500)
    category_id: str = Field(..., description="Parent category id")


class Store(BaseModel):
    name: str = Field(..., min_length=3, max_length=50)
    slug: str
    description: Optional[str] = None
    user_id: str = Field(..., description="Owner id")
    plan: StorePlan = "free"
    plan_ends_at: Optional[str] = None
    cancel_plan_at_end: bool = False
    product_limit: int = Field(10, ge=0)
    tag_limit: int = Field(5, ge=0)
    variant_limit: int = Field(5, ge=0)
    active: bool = True


class Product(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    images: List[str] = Field(default_factory=list, max_length=5)
    category_id: str
    subcategory_id: Optional[str] = None
    price: Price = Field(..., description="Decimal string, e.g. '19.99'")
    inventory: int = Field(0, ge=0)
    rating: float = Field(0, ge=0, le=5)
    store_id: str
    active: bool = True


class Cart(BaseModel):
    session_id: Optional[str] = None
    user_id: Optional[str] = None


class CartItem(BaseModel):
    cart_id: str
    product_id: str
    quantity: int = Field(1, ge=1)
    subcategory_id: Optional[str] = None


class Address(BaseModel):
    line1: str
    line2: Optional[str] = ""
    city: str
    state: str
    postal_code: str
    country: str
    user_id: Optional[str] = ""


class OrderItem(BaseModel):
    product_id: str
    product_name: str = ""
    price: str = "0.00"
    quantity: int = Field(..., ge=1)


class Order(BaseModel):
    user_id: Optional[str] = ""
    store_id: str
    items: List[OrderItem]
    quantity: int = Field(..., ge=0)
    amount: str = Field(..., description="Sum of item price x quantity, two decimals")
    status: OrderStatus = "pending"
    name: str
    email: EmailStr
    address_id: str
    notes: Optional[str] = None


class Customer(BaseModel):
    """Not a collection: built by grouping a store's orders by email."""
    name: str
    email: str
    order_placed: int = 0
    total_spent: str = "0.00"
    created_at: Optional[str] = None


class Notification(BaseModel):
    email: EmailStr
    token: str
    user_id: Optional[str] = None
    communication: bool = False
    newsletter: bool = False
    marketing: bool = False


# -----------------------------
# Request bodies
# -----------------------------

class UserCreate(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=72)


class StoreCreate(BaseModel):
    name: str = Field(..., min_length=3, max_length=50)
    slug: Optional[str] = None
    description: Optional[str] = None


class StoreUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=3, max_length=50)
    slug: Optional[str] = None
    description: Optional[str] = None


class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = ""
    price: Price
    inventory: int = Field(0, ge=0)
    category_id: str
    subcategory_id: Optional[str] = None
    images: List[str] = Field(default_factory=list, max_length=5)


class ProductUpdate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = ""
    price: Price
    inventory: int = Field(0, ge=0)
    category_id: Optional[str] = None
    subcategory_id: Optional[str] = None
    images: Optional[List[str]] = None


class RatingUpdate(BaseModel):
    rating: float = Field(..., ge=0, le=5)


class AddToCart(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1, le=MAX_QUANTITY)
    subcategory_id: Optional[str] = None


class CartItemUpdate(BaseModel):
    # zero or less removes the item
    quantity: int = Field(..., le=MAX_QUANTITY)


class CheckoutData(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    phone: str = ""
    address: str = Field(..., min_length=1)
    city: str
    state: str
    postal_code: str
    country: str
    notes: Optional[str] = None


class CheckoutItem(BaseModel):
    """Cart line as the client last saw it, the price is taken on trust."""
    id: Optional[str] = None
    product_id: str
    name: str = ""
    price: Price = "0.00"
    quantity: int = Field(..., ge=1, le=MAX_QUANTITY)


class CheckoutRequest(BaseModel):
    checkout: CheckoutData
    items: List[CheckoutItem] = Field(default_factory=list)


class OrderStatusUpdate(BaseModel):
    status: OrderStatus


class NewsletterSignup(BaseModel):
    email: EmailStr
    token: Optional[str] = None
    subject: Optional[str] = None


class NotificationUpdate(BaseModel):
    token: str
    communication: Optional[bool] = None
    newsletter: Optional[bool] = None
    marketing: Optional[bool] = None


# -----------------------------
# Action results
# -----------------------------

class ActionResult(BaseModel):
    success: bool
    error: Optional[str] = None
    id: Optional[str] = None


class CheckoutResult(ActionResult):
    order_id: Optional[str] = None
    order_number: Optional[str] = None


class CartSummary(BaseModel):
    total_items: int = 0
    total_price: str = "0.00"


class CartResult(ActionResult):
    cart_id: Optional[str] = None
