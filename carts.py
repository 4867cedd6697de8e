from typing import Optional, Tuple

import structlog
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

import catalog
from database import get_db, now, serialize_doc, to_object_id
from errors import ConflictError, NotFoundError, ValidationError

logger = structlog.get_logger(__name__)

MAX_CAS_ATTEMPTS = 5


def _cart_doc(cart_id: str) -> Optional[dict]:
    oid = to_object_id(cart_id)
    if oid is None:
        return None
    return get_db()["cart"].find_one({"_id": oid})


def hydrate_items(items) -> list:
    items = [serialize_doc(i) for i in items]
    products = catalog.get_products(i["product_id"] for i in items)
    for item in items:
        product = products.get(item["product_id"])
        variant = None
        if product:
            variant = next((v for v in product["variants"] if v["id"] == item["variant_id"]), None)
        if variant is not None:
            variant = {**variant, "product_id": product["id"], "product": product}
        item["product_variant"] = variant
    return items


def get_cart(cart_id: str) -> dict:
    doc = _cart_doc(cart_id)
    if not doc:
        raise NotFoundError("Cart not exist")
    cart = serialize_doc(doc)
    items = get_db()["cartitem"].find({"cart_id": cart["id"]}).sort("created_at", 1)
    cart["cart_items"] = hydrate_items(items)
    return cart


def add_to_cart(cart_id: str, variant_id: str, quantity: int) -> dict:
    """Add quantity of a variant to the cart, accumulating onto an existing line."""
    if not _cart_doc(cart_id):
        raise NotFoundError("Cart not exist")
    product, variant = catalog.find_variant(variant_id)
    if variant is None:
        raise NotFoundError("variant not found")
    if quantity <= 0:
        raise ValidationError("quantity must be greater than 0")

    collection = get_db()["cartitem"]
    key = {"cart_id": cart_id, "variant_id": variant_id}
    update = {
        "$inc": {"quantity": quantity},
        "$set": {"updated_at": now()},
        "$setOnInsert": {"product_id": product["id"], "created_at": now()},
    }
    try:
        item = collection.find_one_and_update(key, update, upsert=True, return_document=ReturnDocument.AFTER)
    except DuplicateKeyError:
        # lost the insert race on the unique (cart_id, variant_id) index; the row exists now
        item = collection.find_one_and_update(key, update, return_document=ReturnDocument.AFTER)
    logger.info("cart_item_added", cart_id=cart_id, variant_id=variant_id, quantity=item["quantity"])
    return hydrate_items([item])[0]


def delete_cart_item(cart_item_id: str):
    oid = to_object_id(cart_item_id)
    res = get_db()["cartitem"].delete_one({"_id": oid}) if oid else None
    if not res or res.deleted_count == 0:
        raise NotFoundError("Cart item not found.")


def clear_cart_items(cart_id: str) -> int:
    if not _cart_doc(cart_id):
        raise NotFoundError("Cart not found.")
    removed = get_db()["cartitem"].delete_many({"cart_id": cart_id}).deleted_count
    logger.info("cart_cleared", cart_id=cart_id, removed=removed)
    return removed


def update_quantity(cart_item_id: str, delta: int) -> Tuple[str, int]:
    """Apply a signed quantity change to a cart item.

    A result of zero removes the item; a result below zero is rejected.
    Writes are compare-and-set on the quantity that was read.
    """
    oid = to_object_id(cart_item_id)
    collection = get_db()["cartitem"]
    for _ in range(MAX_CAS_ATTEMPTS):
        item = collection.find_one({"_id": oid}) if oid else None
        if not item:
            raise NotFoundError("Cart item not found.")
        current = item["quantity"]
        target = current + delta
        if target < 0:
            raise ValidationError(f"Quantity cannot go below zero (current quantity is {current}).")
        if target == 0:
            if collection.delete_one({"_id": oid, "quantity": current}).deleted_count:
                return "Cart item removed successfully", 0
            continue
        res = collection.update_one(
            {"_id": oid, "quantity": current},
            {"$set": {"quantity": target, "updated_at": now()}},
        )
        if res.matched_count:
            return "Cart quantity updated successfully", target
    raise ConflictError("Cart item is being updated by another request. Please retry.")
