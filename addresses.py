from typing import List, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError

import users
from database import create_document, get_db, get_documents, now, serialize_doc, to_object_id
from errors import NotFoundError, from_pydantic
from schemas import Address, AddressIn, AddressUpdate

logger = structlog.get_logger(__name__)


def address_doc(address_id: str) -> Optional[dict]:
    oid = to_object_id(address_id)
    if oid is None:
        return None
    return get_db()["address"].find_one({"_id": oid})


def create_address(data: AddressIn) -> dict:
    if not users.get_user_doc(data.user_id):
        raise NotFoundError("User not found.")
    try:
        address = Address(
            user_id=data.user_id,
            street_address=data.street_address,
            landmark=data.landmark,
            city=data.city,
            state=data.state,
            zip_code=data.postal_code,
        )
    except PydanticValidationError as exc:
        raise from_pydantic(exc)
    address_id = create_document("address", address)
    logger.info("address_created", address_id=address_id, user_id=data.user_id)
    return get_address(address_id)


def update_address(address_id: str, data: AddressUpdate) -> dict:
    doc = address_doc(address_id)
    if not doc:
        raise NotFoundError("Address not found.")
    get_db()["address"].update_one(
        {"_id": doc["_id"]},
        {
            "$set": {
                "street_address": data.street_address,
                "city": data.city,
                "state": data.state,
                "zip_code": data.postal_code,
                "landmark": data.landmark,
                "updated_at": now(),
            }
        },
    )
    return get_address(address_id)


def delete_address(address_id: str):
    oid = to_object_id(address_id)
    res = get_db()["address"].delete_one({"_id": oid}) if oid else None
    if not res or res.deleted_count == 0:
        raise NotFoundError("Address not found.")


def get_address(address_id: str) -> dict:
    doc = address_doc(address_id)
    if not doc:
        raise NotFoundError("Address not found.")
    return serialize_doc(doc)


def list_addresses(user_id: Optional[str] = None) -> List[dict]:
    filt = {"user_id": user_id} if user_id else {}
    return [serialize_doc(a) for a in get_documents("address", filt, sort=[("created_at", 1)])]
