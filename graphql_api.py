"""
GraphQL query/mutation surface mounted at /graphql.

Every resolver returns a typed result: expected failures (validation,
not-found, conflicts, permissions) come back in the `error` field with the
service's message, unexpected ones are logged and reported with a generic
message. Service calls block on database I/O and run in the threadpool.
"""
from typing import List, Optional

import strawberry
import structlog
from fastapi import Depends, Request
from starlette.concurrency import run_in_threadpool
from strawberry.fastapi import GraphQLRouter
from strawberry.types import Info

import addresses
import carts
import catalog
import notifications
import orders
import users
from errors import PermissionDenied, ServiceError
from gql_types import (
    AddressListResponse,
    AddressResponse,
    AuthResponse,
    CartItemResponse,
    CartResponse,
    Category,
    CategoryResponse,
    CreateAddressInput,
    CreateOrderInput,
    DeleteResponse,
    NotificationListResponse,
    NotificationUpdateResponse,
    OrderListResponse,
    OrderResponse,
    Product,
    ProductResponse,
    ProductVariantInput,
    UpdateAddressInput,
    UpdateProductInput,
    UpdateQuantityResponse,
    UpdateSubCategoryInput,
    User,
    address_from,
    cart_from,
    cart_item_from,
    category_from,
    notification_from,
    order_from,
    present_fields,
    product_from,
    user_from,
)
from schemas import AddressIn, AddressUpdate, CategoryPatch, ProductPatch, VariantIn, VariantPatch
from security import set_session_cookie, token_from_connection

logger = structlog.get_logger(__name__)


def failure_message(exc: Exception, action: str) -> str:
    """Client-facing text for a failed operation. Call from an except block."""
    if isinstance(exc, ServiceError):
        return exc.message
    logger.exception("resolver_failed", action=action)
    return f"Failed to {action}."


def current_user(info: Info) -> Optional[dict]:
    return info.context.get("user")


def require_admin(info: Info):
    user = current_user(info)
    if not user or user.get("role") != "admin":
        raise PermissionDenied("Admin only")


def _start_session(info: Info, token: str):
    request: Request = info.context["request"]
    set_session_cookie(info.context["response"], token, request.url.hostname)


# ----------------------- Queries -----------------------
@strawberry.type
class Query:
    @strawberry.field
    async def users(self, username: Optional[str] = None) -> List[User]:
        return [user_from(u) for u in await run_in_threadpool(users.list_users, username)]

    @strawberry.field
    async def user(self, id: strawberry.ID) -> Optional[User]:
        doc = await run_in_threadpool(users.get_user_doc, id)
        return user_from(await run_in_threadpool(users.hydrate_user, doc)) if doc else None

    @strawberry.field
    async def me(self, info: Info) -> Optional[User]:
        session = current_user(info)
        return user_from(await run_in_threadpool(users.get_user, session["id"])) if session else None

    @strawberry.field
    async def categories(self) -> List[Category]:
        return [category_from(c) for c in await run_in_threadpool(catalog.list_categories)]

    @strawberry.field
    async def category(self, id: strawberry.ID) -> CategoryResponse:
        try:
            category = await run_in_threadpool(catalog.get_category, id)
        except Exception as exc:
            return CategoryResponse(error=failure_message(exc, "fetch category"))
        return CategoryResponse(category=category_from(category), success=True)

    @strawberry.field
    async def products(self, category_id: Optional[strawberry.ID] = None) -> List[Product]:
        return [product_from(p) for p in await run_in_threadpool(catalog.list_products, category_id)]

    @strawberry.field
    async def product(self, id: strawberry.ID) -> ProductResponse:
        try:
            product = await run_in_threadpool(catalog.get_product, id)
        except Exception as exc:
            return ProductResponse(error=failure_message(exc, "fetch product"))
        return ProductResponse(product=product_from(product))

    @strawberry.field
    async def cart(self, cart_id: strawberry.ID) -> CartResponse:
        try:
            cart = await run_in_threadpool(carts.get_cart, cart_id)
        except Exception as exc:
            return CartResponse(error=failure_message(exc, "fetch cart"))
        return CartResponse(cart=cart_from(cart))

    @strawberry.field
    async def fetch_user_orders(self, user_id: strawberry.ID) -> OrderListResponse:
        try:
            found = await run_in_threadpool(orders.list_orders, user_id)
        except Exception as exc:
            return OrderListResponse(error=failure_message(exc, "fetch user orders"))
        return OrderListResponse(orders=[order_from(o) for o in found])

    @strawberry.field
    async def fetch_all_orders(self) -> OrderListResponse:
        try:
            found = await run_in_threadpool(orders.list_orders)
        except Exception as exc:
            return OrderListResponse(error=failure_message(exc, "fetch all orders"))
        return OrderListResponse(orders=[order_from(o) for o in found])

    @strawberry.field
    async def fetch_order_by_id(self, id: strawberry.ID) -> OrderResponse:
        try:
            order = await run_in_threadpool(orders.get_order, id)
        except Exception as exc:
            return OrderResponse(error=failure_message(exc, "fetch order"))
        return OrderResponse(order=order_from(order), success=True)

    @strawberry.field
    async def fetch_address(self) -> AddressListResponse:
        try:
            found = await run_in_threadpool(addresses.list_addresses)
        except Exception as exc:
            return AddressListResponse(error=failure_message(exc, "fetch addresses"))
        return AddressListResponse(addresses=[address_from(a) for a in found])

    @strawberry.field
    async def fetch_address_by_user(self, user_id: strawberry.ID) -> AddressListResponse:
        try:
            found = await run_in_threadpool(addresses.list_addresses, user_id)
        except Exception as exc:
            return AddressListResponse(error=failure_message(exc, "fetch addresses"))
        return AddressListResponse(addresses=[address_from(a) for a in found])

    @strawberry.field
    async def notification(self, recipient_id: strawberry.ID) -> NotificationListResponse:
        try:
            items = await run_in_threadpool(notifications.list_for_recipient, recipient_id)
        except Exception as exc:
            return NotificationListResponse(error=failure_message(exc, "fetch notifications"))
        return NotificationListResponse(notifications=[notification_from(n) for n in items])


# ----------------------- Mutations -----------------------
@strawberry.type
class Mutation:
    # users
    @strawberry.mutation
    async def create_user(self, info: Info, username: str, email: str, password: str) -> AuthResponse:
        try:
            token, user = await run_in_threadpool(users.signup, username, email, password)
        except Exception as exc:
            return AuthResponse(error=failure_message(exc, "sign up. Please try again"))
        _start_session(info, token)
        return AuthResponse(token=token, user=user_from(user))

    @strawberry.mutation
    async def user_login(self, info: Info, email: str, password: str) -> AuthResponse:
        try:
            token, user = await run_in_threadpool(users.login, email, password)
        except Exception as exc:
            return AuthResponse(error=failure_message(exc, "login the user"))
        _start_session(info, token)
        return AuthResponse(token=token, user=user_from(user))

    # categories
    @strawberry.mutation
    async def create_category(
        self, info: Info, name: str, description: Optional[str] = None, image_url: Optional[str] = None
    ) -> CategoryResponse:
        try:
            require_admin(info)
            category = await run_in_threadpool(catalog.create_category, name, description, image_url)
        except Exception as exc:
            return CategoryResponse(error=failure_message(exc, "create category"))
        return CategoryResponse(category=category_from(category), success=True)

    @strawberry.mutation
    async def update_category(self, info: Info, category_id: strawberry.ID, new_name: str) -> CategoryResponse:
        try:
            require_admin(info)
            category = await run_in_threadpool(catalog.update_category, category_id, new_name)
        except Exception as exc:
            return CategoryResponse(error=failure_message(exc, "update category"))
        return CategoryResponse(category=category_from(category), success=True)

    @strawberry.mutation
    async def delete_category(self, info: Info, category_id: strawberry.ID) -> DeleteResponse:
        try:
            require_admin(info)
            removed = await run_in_threadpool(catalog.delete_category, category_id)
        except Exception as exc:
            return DeleteResponse(success=False, error=failure_message(exc, "delete category"))
        return DeleteResponse(success=True, count=removed)

    @strawberry.mutation
    async def create_sub_category(
        self, info: Info, name: str, parent_category_id: strawberry.ID, image_url: Optional[str] = None
    ) -> CategoryResponse:
        try:
            require_admin(info)
            category = await run_in_threadpool(catalog.create_subcategory, name, parent_category_id, image_url)
        except Exception as exc:
            return CategoryResponse(error=failure_message(exc, "create subcategory"))
        return CategoryResponse(category=category_from(category), success=True)

    @strawberry.mutation
    async def update_sub_category(
        self, info: Info, id: strawberry.ID, input: UpdateSubCategoryInput
    ) -> CategoryResponse:
        try:
            require_admin(info)
            patch = CategoryPatch(**present_fields(input))
            category = await run_in_threadpool(catalog.update_subcategory, id, patch)
        except Exception as exc:
            return CategoryResponse(error=failure_message(exc, "update subcategory"))
        return CategoryResponse(category=category_from(category), success=True)

    @strawberry.mutation
    async def delete_sub_category(self, info: Info, id: strawberry.ID) -> DeleteResponse:
        try:
            require_admin(info)
            removed = await run_in_threadpool(catalog.delete_subcategory, id)
        except Exception as exc:
            return DeleteResponse(success=False, error=failure_message(exc, "delete subcategory and its products"))
        return DeleteResponse(success=True, count=removed)

    # products
    @strawberry.mutation
    async def create_product(
        self,
        info: Info,
        name: str,
        category_id: strawberry.ID,
        is_active: bool,
        description: Optional[str] = None,
        image_url: Optional[str] = None,
        variants: Optional[List[ProductVariantInput]] = None,
    ) -> ProductResponse:
        try:
            require_admin(info)
            product = await run_in_threadpool(
                catalog.create_product,
                name=name,
                category_id=category_id,
                is_active=is_active,
                description=description,
                image_url=image_url,
                variants=[VariantIn(**vars(v)) for v in variants or []],
            )
        except Exception as exc:
            return ProductResponse(error=failure_message(exc, "create product"))
        return ProductResponse(product=product_from(product))

    @strawberry.mutation
    async def update_product(self, info: Info, id: strawberry.ID, input: UpdateProductInput) -> ProductResponse:
        try:
            require_admin(info)
            patch = ProductPatch(
                **present_fields(input, exclude=("variants", "deleted_variant_ids")),
                variants=[VariantPatch(**present_fields(v)) for v in input.variants or []],
                deleted_variant_ids=[str(i) for i in input.deleted_variant_ids or []],
            )
            product = await run_in_threadpool(catalog.update_product, id, patch)
        except Exception as exc:
            return ProductResponse(error=failure_message(exc, "update product"))
        return ProductResponse(product=product_from(product))

    @strawberry.mutation
    async def delete_product(self, info: Info, id: strawberry.ID) -> DeleteResponse:
        try:
            require_admin(info)
            await run_in_threadpool(catalog.delete_product, id)
        except Exception as exc:
            return DeleteResponse(success=False, error=failure_message(exc, "delete product"))
        return DeleteResponse(success=True)

    # cart
    @strawberry.mutation
    async def add_to_cart(
        self, cart_id: strawberry.ID, product_variant_id: strawberry.ID, quantity: int
    ) -> CartItemResponse:
        try:
            item = await run_in_threadpool(carts.add_to_cart, cart_id, product_variant_id, quantity)
        except Exception as exc:
            return CartItemResponse(error=failure_message(exc, "add product to cart"))
        return CartItemResponse(cart_item=cart_item_from(item))

    @strawberry.mutation
    async def delete_cart_item(self, cart_item_id: strawberry.ID) -> DeleteResponse:
        try:
            await run_in_threadpool(carts.delete_cart_item, cart_item_id)
        except Exception as exc:
            return DeleteResponse(success=False, error=failure_message(exc, "delete cart item"))
        return DeleteResponse(success=True)

    @strawberry.mutation
    async def clear_cart_items(self, cart_id: strawberry.ID) -> DeleteResponse:
        try:
            removed = await run_in_threadpool(carts.clear_cart_items, cart_id)
        except Exception as exc:
            return DeleteResponse(success=False, error=failure_message(exc, "clear cart items"))
        return DeleteResponse(success=True, count=removed)

    @strawberry.mutation
    async def update_quantity(self, cart_item_id: strawberry.ID, quantity: int) -> UpdateQuantityResponse:
        try:
            message, updated = await run_in_threadpool(carts.update_quantity, cart_item_id, quantity)
        except Exception as exc:
            return UpdateQuantityResponse(error=failure_message(exc, "update cart quantity"))
        return UpdateQuantityResponse(message=message, updated_quantity=updated)

    # addresses
    @strawberry.mutation
    async def create_address(self, input: CreateAddressInput) -> AddressResponse:
        try:
            address = await run_in_threadpool(addresses.create_address, AddressIn(**vars(input)))
        except Exception as exc:
            return AddressResponse(error=failure_message(exc, "create address"))
        return AddressResponse(address=address_from(address))

    @strawberry.mutation
    async def update_address(self, id: strawberry.ID, data: UpdateAddressInput) -> AddressResponse:
        try:
            address = await run_in_threadpool(addresses.update_address, id, AddressUpdate(**vars(data)))
        except Exception as exc:
            return AddressResponse(error=failure_message(exc, "update address"))
        return AddressResponse(address=address_from(address))

    @strawberry.mutation
    async def delete_address(self, id: strawberry.ID) -> DeleteResponse:
        try:
            await run_in_threadpool(addresses.delete_address, id)
        except Exception as exc:
            return DeleteResponse(success=False, error=failure_message(exc, "delete address"))
        return DeleteResponse(success=True)

    # orders
    @strawberry.mutation
    async def create_order(self, info: Info, input: CreateOrderInput) -> OrderResponse:
        try:
            session = current_user(info)
            if not session or (session["id"] != input.user_id and session.get("role") != "admin"):
                raise PermissionDenied("Not allowed")
            payload = {
                "user_id": input.user_id,
                "address_id": input.address_id,
                "payment_method": input.payment_method.value,
                "is_paid": input.is_paid,
                "items": [vars(item) for item in input.order_items],
            }
            order = await orders.create_order(info.context["hub"], payload)
        except Exception as exc:
            return OrderResponse(error=failure_message(exc, "create order"))
        return OrderResponse(order=order_from(order), success=True)

    @strawberry.mutation
    async def update_order_status(
        self, info: Info, id: strawberry.ID, status: str, delivery_date: Optional[str] = None
    ) -> OrderResponse:
        try:
            require_admin(info)
            order = await run_in_threadpool(orders.update_order_status, id, status, delivery_date)
        except Exception as exc:
            return OrderResponse(error=failure_message(exc, "update order status"))
        return OrderResponse(order=order_from(order), success=True)

    # notifications
    @strawberry.mutation
    async def mark_all_notifications_as_read(self, recipient_id: strawberry.ID) -> NotificationUpdateResponse:
        try:
            count = await run_in_threadpool(notifications.mark_all_read, recipient_id)
        except Exception as exc:
            return NotificationUpdateResponse(success=False, message=failure_message(exc, "update notifications"))
        return NotificationUpdateResponse(success=True, message=f"{count} notifications marked as read.", count=count)

    @strawberry.mutation
    async def mark_notification_as_read(self, id: strawberry.ID) -> NotificationUpdateResponse:
        try:
            await run_in_threadpool(notifications.mark_read, id)
        except Exception as exc:
            return NotificationUpdateResponse(success=False, message=failure_message(exc, "update notification"))
        return NotificationUpdateResponse(success=True, message="Notification marked as read.", count=1)


schema = strawberry.Schema(query=Query, mutation=Mutation)


def get_session_user(request: Request) -> Optional[dict]:
    return users.session_user(token_from_connection(request))


async def get_context(request: Request, user=Depends(get_session_user)):
    return {"user": user, "hub": request.app.state.hub}


graphql_app = GraphQLRouter(schema, context_getter=get_context)
