"""
Order placement and lifecycle.

An order and its line items are one document, so placing an order is a single
insert: either the whole order exists afterwards or nothing was written. All
lookups and validation happen before that insert.
"""
from datetime import date, datetime, time, timezone
from typing import List, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError
from starlette.concurrency import run_in_threadpool

import addresses
import catalog
import notifications
import users
from database import create_document, get_db, now, serialize_doc, to_object_id
from errors import ConflictError, NotFoundError, ValidationError, from_pydantic
from realtime import ConnectionHub
from schemas import Order, OrderCreate, OrderItem

logger = structlog.get_logger(__name__)


def order_total(items) -> float:
    return sum(item.quantity * item.price_at_purchase for item in items)


def parse_delivery_date(value: Optional[str]) -> Optional[datetime]:
    """ISO date or datetime; anything unparsable reads as no date."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        try:
            parsed = datetime.combine(date.fromisoformat(value.strip()), time())
        except ValueError:
            logger.info("delivery_date_ignored", value=value)
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _validate_lines(data: OrderCreate):
    products = catalog.get_products(item.product_id for item in data.items)
    for item in data.items:
        product = products.get(item.product_id)
        if product is None:
            raise NotFoundError(f"Product not found: {item.product_id}")
        if item.variant_id and not any(v["id"] == item.variant_id for v in product["variants"]):
            raise NotFoundError(f"Variant {item.variant_id} does not belong to product {item.product_id}")


def place_order(payload: dict) -> dict:
    """Validate and persist an order; returns it hydrated."""
    if not payload.get("items"):
        raise ValidationError("Order must contain at least one item")
    try:
        data = OrderCreate(**payload)
    except PydanticValidationError as exc:
        raise from_pydantic(exc)

    if not users.get_user_doc(data.user_id):
        raise NotFoundError("User not found.")
    address = addresses.address_doc(data.address_id)
    if not address or address.get("user_id") != data.user_id:
        raise NotFoundError("Shipping address not found for this user.")
    _validate_lines(data)

    order = Order(
        user_id=data.user_id,
        address_id=data.address_id,
        payment_method=data.payment_method,
        is_paid=data.is_paid,
        total_price=order_total(data.items),
        order_date=now(),
        items=[OrderItem(**item.model_dump()) for item in data.items],
    )
    order_id = create_document("order", order)
    logger.info("order_placed", order_id=order_id, user_id=data.user_id, total_price=order.total_price)
    return get_order(order_id)


async def create_order(hub: ConnectionHub, payload: dict) -> dict:
    order = await run_in_threadpool(place_order, payload)
    try:
        await notifications.announce_order_created(hub, order)
    except Exception:
        # the order is committed; admins still see it in the order list
        logger.exception("order_notification_failed", order_id=order["id"])
    return order


def update_order_status(order_id: str, status: str, delivery_date: Optional[str] = None) -> dict:
    """Set status and delivery date, and record the owner's notification.

    If the notification cannot be recorded the previous status and delivery
    date are put back before the error propagates.
    """
    if not status or not status.strip():
        raise ValidationError("Status is required.")
    oid = to_object_id(order_id)
    collection = get_db()["order"]
    previous = collection.find_one({"_id": oid}) if oid else None
    if not previous:
        raise NotFoundError("Order not found.")

    res = collection.update_one(
        {"_id": oid, "updated_at": previous.get("updated_at")},
        {"$set": {"status": status, "delivery_date": parse_delivery_date(delivery_date), "updated_at": now()}},
    )
    if res.matched_count == 0:
        raise ConflictError("Order was modified by another request. Please retry.")

    written = collection.find_one({"_id": oid})
    order = hydrate_orders([written])[0]
    try:
        notifications.record_order_updated(order)
    except Exception:
        # only undo our own write; a later update wins
        collection.update_one(
            {"_id": oid, "updated_at": written.get("updated_at")},
            {
                "$set": {
                    "status": previous.get("status"),
                    "delivery_date": previous.get("delivery_date"),
                    "updated_at": previous.get("updated_at"),
                }
            },
        )
        logger.warning("order_status_reverted", order_id=order_id, status=status)
        raise
    logger.info("order_status_updated", order_id=order_id, status=status)
    return order


def hydrate_orders(docs) -> List[dict]:
    orders = [serialize_doc(d) for d in docs]
    if not orders:
        return []
    database = get_db()
    user_ids = {to_object_id(o["user_id"]) for o in orders}
    address_ids = {to_object_id(o["address_id"]) for o in orders}
    owners = {
        str(u["_id"]): {"id": str(u["_id"]), "username": u.get("username"), "role": u.get("role", "customer")}
        for u in database["user"].find({"_id": {"$in": [i for i in user_ids if i]}})
    }
    shipping = {
        str(a["_id"]): serialize_doc(a)
        for a in database["address"].find({"_id": {"$in": [i for i in address_ids if i]}})
    }
    products = catalog.get_products(item["product_id"] for o in orders for item in o["items"])

    for order in orders:
        order["user"] = owners.get(order["user_id"])
        order["shipping_address"] = shipping.get(order["address_id"])
        for item in order["items"]:
            product = products.get(item["product_id"])
            item["product"] = product
            variant = None
            if product and item.get("variant_id"):
                variant = next((v for v in product["variants"] if v["id"] == item["variant_id"]), None)
            item["variant"] = {**variant, "product_id": product["id"], "product": product} if variant else None
    return orders


def get_order(order_id: str) -> dict:
    oid = to_object_id(order_id)
    doc = get_db()["order"].find_one({"_id": oid}) if oid else None
    if not doc:
        raise NotFoundError("Order not found.")
    return hydrate_orders([doc])[0]


def list_orders(user_id: Optional[str] = None) -> List[dict]:
    filt = {"user_id": user_id} if user_id else {}
    return hydrate_orders(get_db()["order"].find(filt).sort("order_date", -1))
