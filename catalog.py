"""
Categories, subcategories and products.

A category with parent_category_id None is top-level; one level of
subcategories hangs below it. Products keep their variants embedded, so every
product write, including a batch of variant edits, is a single document
update. Cascades (category -> products -> cart items) are done here
explicitly.
"""
from typing import Iterable, List, Optional, Tuple

import structlog
from pydantic import ValidationError as PydanticValidationError
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError

from database import create_document, get_db, now, serialize_doc, to_object_id
from errors import ConflictError, NotFoundError, ValidationError, from_pydantic
from schemas import Category, CategoryPatch, Product, ProductPatch, ProductVariant, VariantIn

logger = structlog.get_logger(__name__)

NON_NULLABLE_PRODUCT_FIELDS = ("name", "is_active")


# ----------------------- Categories -----------------------
def _category_doc(category_id: str) -> Optional[dict]:
    oid = to_object_id(category_id)
    if oid is None:
        return None
    return get_db()["category"].find_one({"_id": oid})


def _assert_unique_name(name: str, parent_id: Optional[str], exclude_id=None):
    filt = {"name": name, "parent_category_id": parent_id}
    if exclude_id is not None:
        filt["_id"] = {"$ne": exclude_id}
    if get_db()["category"].find_one(filt):
        if parent_id is None:
            raise ConflictError("Category with this name already exists. Please choose another name.")
        raise ConflictError(
            "Subcategory with this name already exists under this parent category. Please provide another name."
        )


def _insert_category(category: Category) -> dict:
    _assert_unique_name(category.name, category.parent_category_id)
    try:
        category_id = create_document("category", category)
    except DuplicateKeyError:
        raise ConflictError("Category with this name already exists. Please choose another name.")
    logger.info("category_created", category_id=category_id, parent_id=category.parent_category_id)
    return get_category(category_id)


def hydrate_category(doc: dict, with_products: bool = False) -> dict:
    category = serialize_doc(doc)
    subs = get_db()["category"].find({"parent_category_id": category["id"]}).sort("created_at", ASCENDING)
    category["sub_categories"] = [serialize_doc(s) for s in subs]
    if with_products:
        category["products"] = list_products(category["id"])
    return category


def list_categories() -> List[dict]:
    docs = get_db()["category"].find({"parent_category_id": None}).sort("created_at", DESCENDING)
    return [hydrate_category(d) for d in docs]


def get_category(category_id: str) -> dict:
    doc = _category_doc(category_id)
    if not doc:
        raise NotFoundError("Category not found.")
    return hydrate_category(doc, with_products=True)


def create_category(name: str, description: Optional[str] = None, image_url: Optional[str] = None) -> dict:
    try:
        category = Category(name=name, description=description, image_url=image_url)
    except PydanticValidationError as exc:
        raise from_pydantic(exc)
    return _insert_category(category)


def update_category(category_id: str, new_name: str) -> dict:
    doc = _category_doc(category_id)
    if not doc:
        raise NotFoundError("Category not found.")
    if not new_name:
        raise ValidationError("Category name cannot be empty.")
    _assert_unique_name(new_name, doc.get("parent_category_id"), exclude_id=doc["_id"])
    get_db()["category"].update_one({"_id": doc["_id"]}, {"$set": {"name": new_name, "updated_at": now()}})
    return get_category(category_id)


def _delete_products(filt: dict) -> int:
    database = get_db()
    variant_ids = [v["id"] for p in database["product"].find(filt) for v in p.get("variants", [])]
    _forget_variants(variant_ids)
    return database["product"].delete_many(filt).deleted_count


def delete_category(category_id: str) -> int:
    """Delete a top-level category with its subcategories and their products.

    Returns the number of products removed.
    """
    doc = _category_doc(category_id)
    if not doc:
        raise NotFoundError("Category not found")
    database = get_db()
    ids = [str(doc["_id"])]
    ids += [str(s["_id"]) for s in database["category"].find({"parent_category_id": ids[0]}, {"_id": 1})]
    removed = _delete_products({"category_id": {"$in": ids}})
    database["category"].delete_many({"_id": {"$in": [to_object_id(i) for i in ids]}})
    logger.info("category_deleted", category_id=category_id, categories=len(ids), products=removed)
    return removed


# ----------------------- Subcategories -----------------------
def create_subcategory(name: str, parent_category_id: str, image_url: Optional[str] = None) -> dict:
    parent = _category_doc(parent_category_id)
    if not parent:
        raise NotFoundError("Parent category not found.")
    if parent.get("parent_category_id") is not None:
        raise ValidationError("Subcategories can only be created under a top-level category.")
    try:
        category = Category(name=name, image_url=image_url, parent_category_id=str(parent["_id"]))
    except PydanticValidationError as exc:
        raise from_pydantic(exc)
    return _insert_category(category)


def update_subcategory(category_id: str, patch: CategoryPatch) -> dict:
    doc = _category_doc(category_id)
    if not doc or doc.get("parent_category_id") is None:
        raise NotFoundError("Subcategory not found or is not a subcategory.")
    updates = patch.model_dump(exclude_unset=True)
    if "name" in updates:
        if not updates["name"]:
            raise ValidationError("Subcategory name cannot be empty.")
        _assert_unique_name(updates["name"], doc["parent_category_id"], exclude_id=doc["_id"])
    if updates:
        updates["updated_at"] = now()
        get_db()["category"].update_one({"_id": doc["_id"]}, {"$set": updates})
    return get_category(category_id)


def delete_subcategory(category_id: str) -> int:
    doc = _category_doc(category_id)
    if not doc:
        raise NotFoundError("Subcategory not found.")
    if doc.get("parent_category_id") is None:
        raise ValidationError("Cannot delete a top-level category using this mutation.")
    removed = _delete_products({"category_id": str(doc["_id"])})
    get_db()["category"].delete_one({"_id": doc["_id"]})
    logger.info("subcategory_deleted", category_id=category_id, products=removed)
    return removed


# ----------------------- Products -----------------------
def _product_doc(product_id: str) -> Optional[dict]:
    oid = to_object_id(product_id)
    if oid is None:
        return None
    return get_db()["product"].find_one({"_id": oid})


def list_products(category_id: Optional[str] = None) -> List[dict]:
    filt = {"category_id": category_id} if category_id else {}
    return [serialize_doc(p) for p in get_db()["product"].find(filt).sort("created_at", ASCENDING)]


def get_product(product_id: str) -> dict:
    doc = _product_doc(product_id)
    if not doc:
        raise NotFoundError("Product not found.")
    return serialize_doc(doc)


def get_products(product_ids: Iterable[str]) -> dict:
    """Products by id, for hydrating carts and orders."""
    oids = [oid for oid in (to_object_id(i) for i in set(product_ids)) if oid is not None]
    if not oids:
        return {}
    return {str(p["_id"]): serialize_doc(p) for p in get_db()["product"].find({"_id": {"$in": oids}})}


def find_variant(variant_id: str) -> Tuple[Optional[dict], Optional[dict]]:
    product = get_db()["product"].find_one({"variants.id": variant_id})
    if not product:
        return None, None
    product = serialize_doc(product)
    variant = next(v for v in product["variants"] if v["id"] == variant_id)
    return product, variant


def create_product(
    name: str,
    category_id: str,
    is_active: bool = True,
    description: Optional[str] = None,
    image_url: Optional[str] = None,
    variants: Optional[List[VariantIn]] = None,
) -> dict:
    if not _category_doc(category_id):
        raise NotFoundError("Category not found.")
    try:
        product = Product(
            name=name,
            description=description,
            category_id=category_id,
            image_url=image_url,
            is_active=is_active,
            variants=[ProductVariant(**v.model_dump()) for v in variants or []],
        )
    except PydanticValidationError as exc:
        raise from_pydantic(exc)
    product_id = create_document("product", product)
    logger.info("product_created", product_id=product_id, variants=len(product.variants))
    return get_product(product_id)


def update_product(product_id: str, patch: ProductPatch) -> dict:
    """Apply a partial update and a batch of variant edits in one write.

    Only fields present in the patch change. Variants with an id are updated,
    variants without one are created, and deleted_variant_ids are removed. The
    write is conditional on the product being unchanged since it was read.
    """
    doc = _product_doc(product_id)
    if not doc:
        raise NotFoundError("Product not found.")

    fields = patch.model_dump(exclude_unset=True, exclude={"variants", "deleted_variant_ids"})
    for key in NON_NULLABLE_PRODUCT_FIELDS:
        if key in fields and fields[key] is None:
            raise ValidationError(f"{key} cannot be null.")
    if "name" in fields and not fields["name"]:
        raise ValidationError("name cannot be empty.")

    variants = [dict(v) for v in doc.get("variants", [])]
    by_id = {v["id"]: v for v in variants}
    deleted = set(patch.deleted_variant_ids)
    missing = deleted - by_id.keys()
    if missing:
        raise NotFoundError(f"Variant not found: {sorted(missing)[0]}")
    variants = [v for v in variants if v["id"] not in deleted]

    for variant_patch in patch.variants:
        changes = variant_patch.model_dump(exclude_unset=True)
        variant_id = changes.pop("id", None)
        if variant_id:
            if variant_id not in by_id or variant_id in deleted:
                raise NotFoundError(f"Variant not found: {variant_id}")
            for key, value in changes.items():
                if value is None:
                    raise ValidationError(f"variant {key} cannot be null.")
                by_id[variant_id][key] = value
        else:
            try:
                variants.append(ProductVariant(**{k: v for k, v in changes.items() if v is not None}).model_dump())
            except PydanticValidationError as exc:
                raise from_pydantic(exc)

    fields["variants"] = variants
    fields["updated_at"] = now()
    res = get_db()["product"].update_one(
        {"_id": doc["_id"], "updated_at": doc.get("updated_at")},
        {"$set": fields},
    )
    if res.matched_count == 0:
        raise ConflictError("Product was modified by another request. Please retry.")
    _forget_variants(deleted)
    logger.info("product_updated", product_id=product_id, variants=len(variants), deleted=len(deleted))
    return get_product(product_id)


def delete_product(product_id: str):
    doc = _product_doc(product_id)
    if not doc:
        raise NotFoundError("Product not found.")
    _delete_products({"_id": doc["_id"]})
    logger.info("product_deleted", product_id=product_id)


def _forget_variants(variant_ids: Iterable[str]):
    variant_ids = list(variant_ids)
    if variant_ids:
        get_db()["cartitem"].delete_many({"variant_id": {"$in": variant_ids}})
