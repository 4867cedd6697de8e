"""
Notification fan-out for order events.

Each event is first written as one notification record per recipient, then
pushed once to the recipients' realtime room. The record is the durable copy;
the push is best-effort.
"""
from typing import List

import structlog
from starlette.concurrency import run_in_threadpool

from database import create_document, get_db, now, serialize_doc, to_object_id
from errors import NotFoundError
from realtime import ADMIN_ROOM, ConnectionHub, user_room
from schemas import Notification

logger = structlog.get_logger(__name__)

ORDER_CREATED = "ORDER_CREATED"
ORDER_UPDATED = "ORDER_UPDATED"


def record_order_created(order: dict) -> List[str]:
    """One ORDER_CREATED record per admin user."""
    database = get_db()
    username = (order.get("user") or {}).get("username") or "Unknown User"
    docs = [
        Notification(
            recipient_id=str(admin["_id"]),
            title="new order placed",
            type=ORDER_CREATED,
            message=f"New order placed by {username}",
            order_id=order["id"],
        ).model_dump()
        for admin in database["user"].find({"role": "admin"}, {"_id": 1})
    ]
    if not docs:
        return []
    created_at = now()
    for doc in docs:
        doc["created_at"] = doc["updated_at"] = created_at
    result = database["notification"].insert_many(docs)
    return [str(i) for i in result.inserted_ids]


def record_order_updated(order: dict) -> str:
    return create_document(
        "notification",
        Notification(
            recipient_id=order["user_id"],
            title="Order status updated",
            type=ORDER_UPDATED,
            message=f"Your order #{order['id']} has been {order['status'].lower()}",
            order_id=order["id"],
        ),
    )


async def announce_order_created(hub: ConnectionHub, order: dict) -> int:
    ids = await run_in_threadpool(record_order_created, order)
    logger.info("order_created_notified", order_id=order["id"], admins=len(ids))
    return await hub.publish(ADMIN_ROOM, "newOrder", {"message": "New order placed", "order": order})


async def broadcast_order_update(hub: ConnectionHub, order: dict) -> int:
    return await hub.publish(
        user_room(order["user_id"]),
        "updatedOrder",
        {"message": "New order updated", "order": order},
    )


def list_for_recipient(recipient_id: str) -> List[dict]:
    docs = get_db()["notification"].find({"recipient_id": recipient_id}).sort("created_at", -1)
    return [serialize_doc(d) for d in docs]


def mark_all_read(recipient_id: str) -> int:
    res = get_db()["notification"].update_many(
        {"recipient_id": recipient_id, "is_read": False},
        {"$set": {"is_read": True, "updated_at": now()}},
    )
    return res.modified_count


def mark_read(notification_id: str) -> dict:
    oid = to_object_id(notification_id)
    collection = get_db()["notification"]
    res = collection.update_one({"_id": oid}, {"$set": {"is_read": True, "updated_at": now()}}) if oid else None
    if not res or res.matched_count == 0:
        raise NotFoundError("Notification not found.")
    return serialize_doc(collection.find_one({"_id": oid}))
