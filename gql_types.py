"""
GraphQL object, input and result types.

The service modules return serialized documents (plain dicts with snake_case
keys); the *_from helpers below turn them into these types. strawberry
exposes every field in camelCase.
"""
from enum import Enum
from typing import List, Optional

import strawberry


@strawberry.enum
class PaymentMethod(Enum):
    COD = "COD"
    ONLINE = "ONLINE"


# ----------------------- Objects -----------------------
@strawberry.type
class ProductVariant:
    id: strawberry.ID
    product_id: strawberry.ID
    weight: str
    price: float
    mrp: float
    in_stock: bool
    product: Optional["Product"] = None


@strawberry.type
class Product:
    id: strawberry.ID
    name: str
    description: Optional[str]
    category_id: strawberry.ID
    image_url: Optional[str]
    is_active: bool
    variants: List[ProductVariant]


@strawberry.type
class Category:
    id: strawberry.ID
    name: str
    description: Optional[str]
    image_url: Optional[str]
    parent_category_id: Optional[strawberry.ID]
    sub_categories: List["Category"]
    products: Optional[List[Product]] = None


@strawberry.type
class CartItem:
    id: strawberry.ID
    cart_id: strawberry.ID
    quantity: int
    product_variant: Optional[ProductVariant]


@strawberry.type
class Cart:
    id: strawberry.ID
    user_id: strawberry.ID
    cart_items: List[CartItem]


@strawberry.type
class Address:
    id: strawberry.ID
    user_id: strawberry.ID
    street_address: str
    landmark: Optional[str]
    city: str
    state: str
    country: str
    zip_code: str


@strawberry.type
class User:
    id: strawberry.ID
    username: str
    role: str
    email: Optional[str] = None
    phone_number: Optional[str] = None
    cart: Optional[Cart] = None
    addresses: List[Address] = strawberry.field(default_factory=list)


@strawberry.type
class OrderItem:
    id: strawberry.ID
    product_id: strawberry.ID
    variant_id: Optional[strawberry.ID]
    quantity: int
    price_at_purchase: float
    product: Optional[Product]
    variant: Optional[ProductVariant]


@strawberry.type
class Order:
    id: strawberry.ID
    user_id: strawberry.ID
    user: Optional[User]
    status: str
    total_price: float
    payment_method: PaymentMethod
    is_paid: bool
    shipping_address: Optional[Address]
    order_date: str
    delivery_date: Optional[str]
    order_items: List[OrderItem]


@strawberry.type
class Notification:
    id: strawberry.ID
    recipient_id: strawberry.ID
    title: str
    type: str
    message: str
    is_read: bool
    order_id: Optional[strawberry.ID]
    created_at: Optional[str]


# ----------------------- Results -----------------------
@strawberry.type
class AuthResponse:
    token: Optional[str] = None
    user: Optional[User] = None
    error: Optional[str] = None


@strawberry.type
class CategoryResponse:
    category: Optional[Category] = None
    error: Optional[str] = None
    success: bool = False


@strawberry.type
class ProductResponse:
    product: Optional[Product] = None
    error: Optional[str] = None


@strawberry.type
class DeleteResponse:
    success: bool
    error: Optional[str] = None
    count: Optional[int] = None


@strawberry.type
class CartResponse:
    cart: Optional[Cart] = None
    error: Optional[str] = None


@strawberry.type
class CartItemResponse:
    cart_item: Optional[CartItem] = None
    error: Optional[str] = None


@strawberry.type
class UpdateQuantityResponse:
    message: Optional[str] = None
    updated_quantity: Optional[int] = None
    error: Optional[str] = None


@strawberry.type
class AddressResponse:
    address: Optional[Address] = None
    error: Optional[str] = None


@strawberry.type
class AddressListResponse:
    addresses: List[Address] = strawberry.field(default_factory=list)
    error: Optional[str] = None


@strawberry.type
class OrderResponse:
    order: Optional[Order] = None
    error: Optional[str] = None
    success: bool = False


@strawberry.type
class OrderListResponse:
    orders: List[Order] = strawberry.field(default_factory=list)
    error: Optional[str] = None


@strawberry.type
class NotificationListResponse:
    notifications: List[Notification] = strawberry.field(default_factory=list)
    error: Optional[str] = None


@strawberry.type
class NotificationUpdateResponse:
    success: bool
    message: str
    count: int = 0


# ----------------------- Inputs -----------------------
@strawberry.input
class ProductVariantInput:
    weight: str
    price: float
    mrp: float
    in_stock: bool = True


@strawberry.input
class UpdateVariantInput:
    id: Optional[strawberry.ID] = strawberry.UNSET
    weight: Optional[str] = strawberry.UNSET
    price: Optional[float] = strawberry.UNSET
    mrp: Optional[float] = strawberry.UNSET
    in_stock: Optional[bool] = strawberry.UNSET


@strawberry.input
class UpdateProductInput:
    name: Optional[str] = strawberry.UNSET
    description: Optional[str] = strawberry.UNSET
    image_url: Optional[str] = strawberry.UNSET
    is_active: Optional[bool] = strawberry.UNSET
    variants: Optional[List[UpdateVariantInput]] = None
    deleted_variant_ids: Optional[List[strawberry.ID]] = None


@strawberry.input
class UpdateSubCategoryInput:
    name: Optional[str] = strawberry.UNSET
    image_url: Optional[str] = strawberry.UNSET


@strawberry.input
class CreateAddressInput:
    user_id: strawberry.ID
    street_address: str
    city: str
    state: str
    postal_code: str
    landmark: Optional[str] = None


@strawberry.input
class UpdateAddressInput:
    street_address: str
    city: str
    state: str
    postal_code: str
    landmark: Optional[str] = None


@strawberry.input
class OrderItemInput:
    product_id: strawberry.ID
    quantity: int
    price_at_purchase: float
    variant_id: Optional[strawberry.ID] = None


@strawberry.input
class CreateOrderInput:
    user_id: strawberry.ID
    address_id: strawberry.ID
    payment_method: PaymentMethod
    is_paid: bool
    order_items: List[OrderItemInput]


def present_fields(value, exclude=()) -> dict:
    """Input fields the client actually sent (explicit nulls included)."""
    return {k: v for k, v in vars(value).items() if v is not strawberry.UNSET and k not in exclude}


# ----------------------- Converters -----------------------
def variant_from(data: dict, product: Optional[Product] = None) -> ProductVariant:
    return ProductVariant(
        id=data["id"],
        product_id=data.get("product_id") or (product.id if product else ""),
        weight=data["weight"],
        price=data["price"],
        mrp=data["mrp"],
        in_stock=data.get("in_stock", True),
        product=product,
    )


def product_from(data: dict) -> Product:
    product = Product(
        id=data["id"],
        name=data["name"],
        description=data.get("description"),
        category_id=data["category_id"],
        image_url=data.get("image_url"),
        is_active=data.get("is_active", True),
        variants=[],
    )
    product.variants = [variant_from({**v, "product_id": data["id"]}, product) for v in data.get("variants", [])]
    return product


def linked_variant_from(data: Optional[dict]) -> Optional[ProductVariant]:
    """A variant hydrated with its parent product under the "product" key."""
    if not data:
        return None
    product = product_from(data["product"]) if data.get("product") else None
    return variant_from(data, product)


def category_from(data: dict) -> Category:
    products = data.get("products")
    return Category(
        id=data["id"],
        name=data["name"],
        description=data.get("description"),
        image_url=data.get("image_url"),
        parent_category_id=data.get("parent_category_id"),
        sub_categories=[category_from(s) for s in data.get("sub_categories", [])],
        products=[product_from(p) for p in products] if products is not None else None,
    )


def cart_item_from(data: dict) -> CartItem:
    return CartItem(
        id=data["id"],
        cart_id=data["cart_id"],
        quantity=data["quantity"],
        product_variant=linked_variant_from(data.get("product_variant")),
    )


def cart_from(data: dict) -> Cart:
    return Cart(
        id=data["id"],
        user_id=data["user_id"],
        cart_items=[cart_item_from(i) for i in data.get("cart_items", [])],
    )


def address_from(data: dict) -> Address:
    return Address(
        id=data["id"],
        user_id=data["user_id"],
        street_address=data["street_address"],
        landmark=data.get("landmark"),
        city=data["city"],
        state=data["state"],
        country=data.get("country", "India"),
        zip_code=data["zip_code"],
    )


def user_from(data: Optional[dict]) -> Optional[User]:
    if not data:
        return None
    cart = data.get("cart")
    return User(
        id=data["id"],
        username=data["username"],
        role=data.get("role", "customer"),
        email=data.get("email"),
        phone_number=data.get("phone_number"),
        cart=Cart(id=cart["id"], user_id=cart["user_id"], cart_items=[]) if cart else None,
        addresses=[address_from(a) for a in data.get("addresses", [])],
    )


def order_item_from(data: dict) -> OrderItem:
    return OrderItem(
        id=data["id"],
        product_id=data["product_id"],
        variant_id=data.get("variant_id"),
        quantity=data["quantity"],
        price_at_purchase=data["price_at_purchase"],
        product=product_from(data["product"]) if data.get("product") else None,
        variant=linked_variant_from(data.get("variant")),
    )


def order_from(data: dict) -> Order:
    address = data.get("shipping_address")
    return Order(
        id=data["id"],
        user_id=data["user_id"],
        user=user_from(data.get("user")),
        status=data["status"],
        total_price=data["total_price"],
        payment_method=PaymentMethod(data["payment_method"]),
        is_paid=data.get("is_paid", False),
        shipping_address=address_from(address) if address else None,
        order_date=data["order_date"],
        delivery_date=data.get("delivery_date"),
        order_items=[order_item_from(i) for i in data.get("items", [])],
    )


def notification_from(data: dict) -> Notification:
    return Notification(
        id=data["id"],
        recipient_id=data["recipient_id"],
        title=data["title"],
        type=data["type"],
        message=data["message"],
        is_read=data.get("is_read", False),
        order_id=data.get("order_id"),
        created_at=data.get("created_at"),
    )
