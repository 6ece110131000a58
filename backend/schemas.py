"""
Database Schemas for the Marketplace
Each Pydantic model represents a MongoDB collection (collection name = class name lowercased).
"""
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, EmailStr


class Role(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


# Users. password_hash is None for accounts created through an OAuth provider.
class User(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    email: EmailStr
    password_hash: Optional[str] = None
    name: str
    role: Role = Role.USER
    avatar: Optional[str] = None
    phone: Optional[str] = None


# Address book
class Address(BaseModel):
    user_id: str
    street: str
    city: str
    state: str
    county: Optional[str] = None
    pincode: str
    country: str = "India"
    is_default: bool = False


# Products
class Product(BaseModel):
    seller_id: str
    title: str
    category: str
    description: str
    price: float = Field(ge=0)
    quantity: int = Field(ge=1)
    condition: str
    year_of_manufacture: Optional[int] = None
    brand: Optional[str] = None
    model: Optional[str] = None
    dimension_length: Optional[float] = None
    dimension_width: Optional[float] = None
    dimension_height: Optional[float] = None
    weight: Optional[float] = None
    material: Optional[str] = None
    color: Optional[str] = None
    original_packaging: bool = False
    manual_included: bool = False
    working_condition_desc: Optional[str] = None
    thumbnail: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    stock: int = Field(default=0, ge=0)
    is_active: bool = True
    is_approved: bool = True


# Product reviews (one per user per product)
class Review(BaseModel):
    product_id: str
    user_id: str
    rating: int = Field(ge=1, le=5)
    comment: Optional[str] = None


# Cart items are embedded; totals are computed on read
class CartItem(BaseModel):
    id: str
    product_id: str
    quantity: int = Field(ge=1)


class Cart(BaseModel):
    user_id: str
    items: List[CartItem] = Field(default_factory=list)


# Orders. Items snapshot the product at purchase time.
class OrderItem(BaseModel):
    product_id: str
    seller_id: str
    product_name: str
    price: float
    quantity: int = Field(ge=1)
    subtotal: float


class Order(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    buyer_id: str
    items: List[OrderItem]
    total: float = Field(ge=0)
    status: OrderStatus = OrderStatus.PENDING
    shipping_info: str
