"""
Database Schemas

Define your MongoDB collection schemas here using Pydantic models.
Each Pydantic model represents a collection in your database.
Model name lowercased is the collection name.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

Role = Literal["user", "admin"]
OrderStatus = Literal["Processing", "Shipped", "Delivered", "Cancelled"]


class User(BaseModel):
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address, stored lower-cased")
    password_hash: str = Field(..., description="BCrypt hashed password")
    role: Role = Field("user", description="Role: user | admin")


class Product(BaseModel):
    name: str
    price: float = Field(..., ge=0)
    category: str
    image: Optional[str] = None
    description: str = ""
    stock: int = Field(0, ge=0)
    rating: float = Field(0, ge=0, le=5)
    reviews: int = Field(0, ge=0, description="Review count")


class CartItem(BaseModel):
    """
    One row per (user, product)
    Collection name: "cartitem"
    """
    user_id: str
    product_id: str
    quantity: int = Field(1, ge=1)
    added_at: Optional[datetime] = None
    checkout_id: Optional[str] = Field(None, description="Set while a checkout holds the entry")


class OrderItem(BaseModel):
    """Frozen copy of the product at checkout time"""
    product_id: str
    name: str
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    image: Optional[str] = None


class Order(BaseModel):
    user_id: str
    checkout_id: str = Field(..., description="Idempotency key of the checkout that created the order")
    items: List[OrderItem]
    total: float = Field(..., ge=0)
    shipping_address: str
    payment_method: str
    status: OrderStatus = "Processing"


class Review(BaseModel):
    product_id: str
    user_id: Optional[str] = None
    rating: Optional[int] = Field(None, ge=1, le=5)
    comment: Optional[str] = None


class Wishlist(BaseModel):
    user_id: str
    product_id: str
    added_at: Optional[datetime] = None
