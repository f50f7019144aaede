"""
Database Schemas

Pydantic models that define MongoDB collections used by the app.
Each class name (lowercased) maps to a collection name.

Request bodies further down use camelCase aliases to match the JSON API
and refuse fields they don't know about.
"""

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator
from pydantic.alias_generators import to_camel

Category = Literal[
    "electronics", "clothing", "books", "home", "sports",
    "beauty", "toys", "automotive", "other",
]
PaymentMethod = Literal["credit_card", "debit_card", "paypal", "stripe"]
PaymentStatus = Literal["pending", "paid", "failed", "refunded"]
OrderStatus = Literal["pending", "confirmed", "processing", "shipped", "delivered", "cancelled"]
Role = Literal["customer", "admin"]


# User collection
class User(BaseModel):
    first_name: str = Field(..., description="Given name")
    last_name: str = Field(..., description="Family name")
    email: EmailStr = Field(..., description="Login email, unique")
    password_hash: str = Field(..., description="argon2id encoded hash")
    phone: Optional[str] = None
    role: Role = Field("customer", description="Role checked by admin routes")


class ProductImage(BaseModel):
    url: str = Field(..., description="Image URL")
    alt: str = Field("Product image", max_length=100)


# Product collection
class Product(BaseModel):
    name: str = Field(..., description="Product name")
    description: str = Field(..., description="Product description")
    price: float = Field(..., ge=0, description="Price in dollars")
    category: Category = Field(..., description="Product category")
    brand: Optional[str] = None
    images: List[ProductImage] = Field(default_factory=list)
    stock: int = Field(0, ge=0, description="Units in stock")
    sku: str = Field(..., description="Stock keeping unit, unique and uppercase")
    tags: List[str] = Field(default_factory=list)
    specifications: Dict[str, str] = Field(default_factory=dict)
    is_active: bool = Field(True, description="False once soft-deleted")
    average_rating: float = Field(0, ge=0, le=5)
    review_count: int = Field(0, ge=0)
    created_by: str = Field(..., description="Creating user _id as string")


# Cart line (embedded in Cart)
class CartItem(BaseModel):
    product_id: str = Field(..., description="Referenced product _id as string")
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0, description="Unit price when the line was last written")


# Cart collection
class Cart(BaseModel):
    user_id: str = Field(..., description="Owning user _id as string")
    items: List[CartItem] = Field(default_factory=list)
    total_items: int = Field(0, ge=0)
    total_price: float = Field(0, ge=0)


class ShippingAddress(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid",
                              str_strip_whitespace=True)

    first_name: str = Field(..., min_length=2, max_length=50)
    last_name: str = Field(..., min_length=2, max_length=50)
    street: str = Field(..., min_length=5, max_length=100)
    city: str = Field(..., min_length=2, max_length=50)
    state: str = Field(..., min_length=2, max_length=50)
    zip_code: str = Field(..., min_length=5, max_length=10)
    country: str = Field("US", max_length=50)


# Order Item (embedded in Order)
class OrderItem(BaseModel):
    product_id: str = Field(..., description="Referenced product _id as string")
    name: str = Field(..., description="Snapshot of product name at purchase time")
    price: float = Field(..., ge=0, description="Unit price at purchase time")
    quantity: int = Field(..., ge=1, description="Quantity ordered")


class StatusHistoryEntry(BaseModel):
    status: OrderStatus
    timestamp: datetime
    actor: str = Field(..., description="User id, or 'system' for checkout")
    note: Optional[str] = None


# Order collection
class Order(BaseModel):
    order_number: str = Field(..., description="ORD-<epoch ms>-<sequence>")
    user_id: str = Field(..., description="Ordering user _id as string")
    items: List[OrderItem] = Field(..., min_length=1)
    shipping_address: ShippingAddress
    payment_method: PaymentMethod
    payment_status: PaymentStatus = "pending"
    order_status: OrderStatus = "pending"
    subtotal: float = Field(..., ge=0)
    shipping_cost: float = Field(0, ge=0)
    tax: float = Field(0, ge=0)
    total: float = Field(..., ge=0)
    notes: Optional[str] = Field(None, max_length=500)
    tracking_number: Optional[str] = None
    transaction_id: Optional[str] = None
    status_history: List[StatusHistoryEntry] = Field(default_factory=list)
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    needs_reconciliation: bool = False


# --- Request bodies ---


class RequestModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid",
                              str_strip_whitespace=True)


class SignupRequest(RequestModel):
    first_name: str = Field(..., min_length=2, max_length=50)
    last_name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6)
    phone: Optional[str] = Field(None, pattern=r"^\+?[1-9]\d{0,15}$")
    role: Role = "customer"


class LoginRequest(RequestModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class ProductCreate(RequestModel):
    name: str = Field(..., min_length=2, max_length=100)
    description: str = Field(..., min_length=10, max_length=1000)
    price: float = Field(..., ge=0)
    category: Category
    brand: Optional[str] = Field(None, max_length=50)
    stock: int = Field(..., ge=0)
    sku: Optional[str] = Field(None, max_length=64)
    images: List[ProductImage] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list, max_length=10)
    specifications: Dict[str, str] = Field(default_factory=dict)


class ProductUpdate(RequestModel):
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    description: Optional[str] = Field(None, min_length=10, max_length=1000)
    price: Optional[float] = Field(None, ge=0)
    category: Optional[Category] = None
    brand: Optional[str] = Field(None, max_length=50)
    stock: Optional[int] = Field(None, ge=0)
    images: Optional[List[ProductImage]] = None
    tags: Optional[List[str]] = Field(None, max_length=10)
    specifications: Optional[Dict[str, str]] = None
    is_active: Optional[bool] = None

    @model_validator(mode="after")
    def _at_least_one_field(self):
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided for update")
        return self


class RestockRequest(RequestModel):
    quantity: int = Field(..., ge=1)


class AddToCartRequest(RequestModel):
    product_id: str = Field(..., pattern=r"^[0-9a-fA-F]{24}$")
    quantity: int = Field(1, ge=1, le=100)


class UpdateCartItemRequest(RequestModel):
    # zero removes the line
    quantity: int = Field(..., ge=0, le=100)


class CheckoutRequest(RequestModel):
    shipping_address: ShippingAddress
    payment_method: PaymentMethod
    notes: Optional[str] = Field(None, max_length=500)


class OrderStatusUpdate(RequestModel):
    status: OrderStatus
    note: Optional[str] = Field(None, max_length=200)
    tracking_number: Optional[str] = Field(None, max_length=64)
