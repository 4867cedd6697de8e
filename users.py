import random
from typing import Optional

import structlog
from pydantic import ValidationError as PydanticValidationError
from pymongo.errors import DuplicateKeyError

from database import create_document, get_db, get_documents, serialize_doc, to_object_id
from errors import ConflictError, NotFoundError, ValidationError, from_pydantic
from schemas import Cart, User
from security import create_token, hash_password, read_token, verify_password

logger = structlog.get_logger(__name__)


def get_user_doc(user_id: str) -> Optional[dict]:
    oid = to_object_id(user_id)
    if oid is None:
        return None
    return get_db()["user"].find_one({"_id": oid})


def hydrate_user(doc: dict) -> dict:
    user = serialize_doc(doc)
    user.pop("password_hash", None)
    database = get_db()
    cart = database["cart"].find_one({"user_id": user["id"]})
    user["cart"] = serialize_doc(cart) if cart else None
    user["addresses"] = [serialize_doc(a) for a in database["address"].find({"user_id": user["id"]})]
    return user


def issue_token(user: dict) -> str:
    return create_token({"id": user["id"], "name": user["username"], "role": user.get("role", "customer")})


def create_user(user: User) -> dict:
    # unset contact keys are left out so the sparse unique indexes skip them
    user_id = create_document("user", user.model_dump(exclude_none=True))
    create_document("cart", Cart(user_id=user_id))
    logger.info("user_created", user_id=user_id, role=user.role)
    return get_user_doc(user_id)


def signup(username: str, email: str, password: str) -> tuple:
    if not password:
        raise ValidationError("Password is required.")
    database = get_db()
    if database["user"].find_one({"email": email}):
        raise ConflictError("User already exists with this email.")
    try:
        user = User(username=username, email=email, password_hash=hash_password(password))
    except PydanticValidationError as exc:
        raise from_pydantic(exc)
    try:
        doc = create_user(user)
    except DuplicateKeyError:
        raise ConflictError("User already exists with this email.")
    hydrated = hydrate_user(doc)
    return issue_token(hydrated), hydrated


def login(email: str, password: str) -> tuple:
    doc = get_db()["user"].find_one({"email": email})
    if not doc:
        raise NotFoundError("user not found.")
    if not verify_password(password, doc.get("password_hash")):
        raise ValidationError("invalid user or password.")
    user = hydrate_user(doc)
    logger.info("user_logged_in", user_id=user["id"])
    return issue_token(user), user


def find_or_create_by_phone(phone_number: str) -> dict:
    doc = get_db()["user"].find_one({"phone_number": phone_number})
    if doc is None:
        try:
            doc = create_user(User(username=f"user{random.randint(0, 99999)}", phone_number=phone_number))
        except DuplicateKeyError:
            # created by a concurrent verification of the same phone
            doc = get_db()["user"].find_one({"phone_number": phone_number})
    return hydrate_user(doc)


def list_users(username: Optional[str] = None) -> list:
    filt = {"username": username} if username else {}
    return [hydrate_user(u) for u in get_documents("user", filt)]


def get_user(user_id: str) -> dict:
    doc = get_user_doc(user_id)
    if not doc:
        raise NotFoundError("User not found.")
    return hydrate_user(doc)


def session_user(token: Optional[str]) -> Optional[dict]:
    """The user behind a session token, or None for a missing/invalid token."""
    claims = read_token(token)
    if not claims or not claims.get("id"):
        return None
    doc = get_user_doc(claims["id"])
    if not doc:
        return None
    return {"id": str(doc["_id"]), "username": doc.get("username"), "role": doc.get("role", "customer")}
