"""
MongoDB access for the grocery backend.

`db` is None when DATABASE_URL / DATABASE_NAME are not configured. Helpers look
the handle up at call time so it can be swapped (tests use mongomock).
"""
import os
from datetime import datetime, timezone
from typing import Any, Optional, Union

from bson.objectid import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

_client = None
db = None

if DATABASE_URL and DATABASE_NAME:
    _client = MongoClient(DATABASE_URL)
    db = _client[DATABASE_NAME]


def get_db():
    if db is None:
        raise RuntimeError("Database not available. Set DATABASE_URL and DATABASE_NAME.")
    return db


def now():
    return datetime.now(timezone.utc)


def to_object_id(value: Union[str, ObjectId, None]) -> Optional[ObjectId]:
    """Parse an id coming from the API; malformed ids read as missing."""
    if value is None or isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    data_dict.setdefault("created_at", now())
    data_dict["updated_at"] = data_dict["created_at"]
    result = get_db()[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None, sort=None):
    cursor = get_db()[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def _serialize_value(value: Any):
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    if isinstance(value, dict):
        return serialize_doc(value)
    if isinstance(value, list):
        return [_serialize_value(v) for v in value]
    return value


def serialize_doc(doc):
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.pop("_id", None)
    if _id is not None:
        doc["id"] = str(_id)
    # ObjectId references and datetimes, nested documents included
    for k, v in list(doc.items()):
        doc[k] = _serialize_value(v)
    return doc


# (collection, keys, options) created at start-up
INDEXES = [
    ("user", [("email", ASCENDING)], {"unique": True, "sparse": True}),
    ("user", [("phone_number", ASCENDING)], {"unique": True, "sparse": True}),
    ("cart", [("user_id", ASCENDING)], {"unique": True}),
    ("cartitem", [("cart_id", ASCENDING), ("variant_id", ASCENDING)], {"unique": True}),
    ("category", [("name", ASCENDING), ("parent_category_id", ASCENDING)], {"unique": True}),
    ("product", [("category_id", ASCENDING)], {}),
    ("order", [("user_id", ASCENDING), ("order_date", DESCENDING)], {}),
    ("notification", [("recipient_id", ASCENDING), ("created_at", DESCENDING)], {}),
]


def ensure_indexes():
    database = get_db()
    for collection, keys, options in INDEXES:
        database[collection].create_index(keys, **options)


def index_report() -> dict:
    """Which start-up indexes exist, keyed "<collection>:<field>,<field>"."""
    database = get_db()
    report = {}
    for collection, keys, _ in INDEXES:
        existing = [
            [(field, direction) for field, direction in info["key"]]
            for info in database[collection].index_information().values()
        ]
        report[f"{collection}:{','.join(field for field, _ in keys)}"] = keys in existing
    return report
