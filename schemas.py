"""
Database Schemas for the Grocery App

Each Pydantic model corresponds to one MongoDB collection.
Collection name is the lowercase of the class name.
ProductVariant and OrderItem are embedded in their parent documents, so a
product and its variants, or an order and its items, are written together.
References between collections are stored as id strings.
"""
from datetime import datetime
from typing import List, Literal, Optional

from bson.objectid import ObjectId
from pydantic import BaseModel, EmailStr, Field


def new_id() -> str:
    return str(ObjectId())


Role = Literal["customer", "admin"]
PaymentMethod = Literal["COD", "ONLINE"]
NotificationType = Literal["ORDER_CREATED", "ORDER_UPDATED"]


class User(BaseModel):
    username: str
    email: Optional[EmailStr] = None
    phone_number: Optional[str] = None
    password_hash: Optional[str] = Field(None, description="Salted hash, absent for OTP-only users")
    role: Role = "customer"


class Cart(BaseModel):
    user_id: str


class CartItem(BaseModel):
    cart_id: str
    variant_id: str
    product_id: str
    quantity: int = Field(..., ge=1)


class Category(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    image_url: Optional[str] = None
    parent_category_id: Optional[str] = Field(None, description="None for top-level categories")


class ProductVariant(BaseModel):
    id: str = Field(default_factory=new_id)
    weight: str = Field(..., description='Packaged size, e.g. "500g"')
    price: float = Field(..., ge=0)
    mrp: float = Field(..., ge=0)
    in_stock: bool = True


class Product(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    category_id: str
    image_url: Optional[str] = None
    is_active: bool = True
    variants: List[ProductVariant] = []


class Address(BaseModel):
    user_id: str
    street_address: str
    landmark: Optional[str] = None
    city: str
    state: str
    country: str = "India"
    zip_code: str


class OrderItem(BaseModel):
    id: str = Field(default_factory=new_id)
    product_id: str
    variant_id: Optional[str] = None
    quantity: int = Field(..., ge=1)
    price_at_purchase: float = Field(..., ge=0)


class Order(BaseModel):
    user_id: str
    address_id: str
    payment_method: PaymentMethod = "COD"
    is_paid: bool = False
    status: str = "PENDING"
    total_price: float
    order_date: datetime
    delivery_date: Optional[datetime] = None
    items: List[OrderItem]


class Notification(BaseModel):
    recipient_id: str
    title: str
    type: NotificationType
    message: str
    is_read: bool = False
    order_id: Optional[str] = None


# ----------------------- Inputs -----------------------
class OrderItemIn(BaseModel):
    product_id: str
    variant_id: Optional[str] = None
    quantity: int = Field(..., ge=1)
    price_at_purchase: float = Field(..., ge=0)


class OrderCreate(BaseModel):
    user_id: str
    address_id: str
    payment_method: PaymentMethod
    is_paid: bool = False
    items: List[OrderItemIn]


class VariantIn(BaseModel):
    weight: str
    price: float = Field(..., ge=0)
    mrp: float = Field(..., ge=0)
    in_stock: bool = True


class VariantPatch(BaseModel):
    """Fields left unset keep their stored value; no id means a new variant."""
    id: Optional[str] = None
    weight: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    mrp: Optional[float] = Field(None, ge=0)
    in_stock: Optional[bool] = None


class ProductPatch(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    is_active: Optional[bool] = None
    variants: List[VariantPatch] = []
    deleted_variant_ids: List[str] = []


class CategoryPatch(BaseModel):
    name: Optional[str] = None
    image_url: Optional[str] = None


class AddressIn(BaseModel):
    user_id: str
    street_address: str
    landmark: Optional[str] = None
    city: str
    state: str
    postal_code: str


class AddressUpdate(BaseModel):
    street_address: str
    city: str
    state: str
    postal_code: str
    landmark: Optional[str] = None
