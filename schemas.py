"""
Database Schemas for the E-commerce Catalog

Each stored model maps to one MongoDB collection. Documents are written with
camelCase keys; Python code uses snake_case attributes.

- User -> "users"
- Category -> "categories"
- Product -> "products"
- OrderItem -> "orderitems"
- Order -> "orders"

The *Create / *Update / *Request models describe incoming request bodies and
are validated before anything touches the database.
"""
from datetime import datetime, timezone
from typing import Any, List, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Schema(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        arbitrary_types_allowed=True,
    )

    def changes(self) -> dict:
        """Fields explicitly sent by the client, keyed as stored."""
        return self.model_dump(by_alias=True, exclude_unset=True, exclude_none=True)


# ----- Users -----

class User(Schema):
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address, unique")
    password_hash: str = Field(..., description="bcrypt hash")
    phone: str = Field(..., description="Phone number")
    is_admin: bool = Field(False, description="Elevated privileges")
    street: str = ""
    apartment: str = ""
    zip: str = ""
    city: str = ""
    country: str = ""


class UserCreate(Schema):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=1)
    phone: str
    is_admin: bool = False
    street: str = ""
    apartment: str = ""
    zip: str = ""
    city: str = ""
    country: str = ""


class UserUpdate(Schema):
    name: Optional[str] = Field(None, min_length=1)
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(None, min_length=1)
    phone: Optional[str] = None
    is_admin: Optional[bool] = None
    street: Optional[str] = None
    apartment: Optional[str] = None
    zip: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None


class LoginRequest(Schema):
    email: Optional[str] = None
    name: Optional[str] = None
    password: Optional[str] = None


# ----- Categories -----

class Category(Schema):
    name: str = Field(..., min_length=1)
    icon: Optional[str] = None
    color: Optional[str] = None


class CategoryUpdate(Schema):
    name: Optional[str] = Field(None, min_length=1)
    icon: Optional[str] = None
    color: Optional[str] = None


# ----- Products -----

class Product(Schema):
    name: str = Field(..., min_length=1)
    description: str
    rich_description: str = ""
    image: str = ""
    images: List[str] = Field(default_factory=list)
    brand: str = ""
    price: float = Field(0, ge=0)
    category: ObjectId
    count_in_stock: int = Field(0, ge=0)
    rating: float = 0
    num_reviews: int = 0
    is_featured: bool = False
    date_created: datetime = Field(default_factory=utcnow)


class ProductUpdate(Schema):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    rich_description: Optional[str] = None
    brand: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    category: Optional[ObjectId] = None
    count_in_stock: Optional[int] = Field(None, ge=0)
    rating: Optional[float] = None
    num_reviews: Optional[int] = None
    is_featured: Optional[bool] = None


# ----- Orders -----

class OrderItem(Schema):
    quantity: int
    product: Any = Field(..., description="Product ObjectId, or the raw reference when it is not one")


class OrderItemIn(Schema):
    quantity: int
    product: str


class OrderCreate(Schema):
    order_items: List[OrderItemIn]
    shipping_address1: str
    shipping_address2: str = ""
    city: str
    zip: str
    country: str
    phone: str
    user: str


class Order(Schema):
    order_items: List[ObjectId]
    shipping_address1: str
    shipping_address2: str = ""
    city: str
    zip: str
    country: str
    phone: str
    status: str = "Pending"
    total_price: float
    user: Any
    date_ordered: datetime = Field(default_factory=utcnow)


class OrderStatusUpdate(Schema):
    status: str = Field(..., min_length=1)
