import hashlib
import hmac
import ipaddress
import os
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

import firebase_admin
import jwt
import structlog
from firebase_admin import auth as firebase_auth
from firebase_admin import credentials
from starlette.requests import HTTPConnection
from starlette.responses import Response

logger = structlog.get_logger(__name__)

JWT_SECRET = os.getenv("JWT_SECRET", "devsecret")
JWT_ALGO = "HS256"
SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "jwtToken")
SESSION_TTL = timedelta(hours=24)

PBKDF2_ITERATIONS = 260_000


# ----------------------- Passwords -----------------------
def hash_password(password: str) -> str:
    salt = secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), PBKDF2_ITERATIONS).hex()
    return f"pbkdf2_sha256${PBKDF2_ITERATIONS}${salt}${digest}"


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    if not password_hash:
        return False
    try:
        _, iterations, salt, digest = password_hash.split("$")
        candidate = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), int(iterations)).hex()
    except ValueError:
        return False
    return hmac.compare_digest(candidate, digest)


# ----------------------- Session tokens -----------------------
def create_token(payload: dict) -> str:
    exp = datetime.now(timezone.utc) + SESSION_TTL
    to_encode = {**payload, "exp": exp}
    return jwt.encode(to_encode, JWT_SECRET, algorithm=JWT_ALGO)


def read_token(token: Optional[str]) -> Optional[dict]:
    """Claims of a valid session token, None when missing, expired or forged."""
    if not token:
        return None
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGO])
    except jwt.InvalidTokenError as exc:
        logger.info("session_token_rejected", reason=str(exc))
        return None


def token_from_connection(conn: HTTPConnection) -> Optional[str]:
    authorization = conn.headers.get("authorization", "")
    scheme, _, credentials_ = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials_:
        return credentials_.strip()
    return conn.cookies.get(SESSION_COOKIE_NAME)


# ----------------------- Cookies -----------------------
def is_local_host(hostname: Optional[str]) -> bool:
    if not hostname:
        return False
    if hostname == "localhost":
        return True
    try:
        address = ipaddress.ip_address(hostname)
    except ValueError:
        return False
    return address.is_loopback or address.is_private


def _cookie_flags(hostname: Optional[str]) -> dict:
    local = is_local_host(hostname)
    return {
        "httponly": True,
        "samesite": "lax" if local else "none",
        "secure": not local,
    }


def set_session_cookie(response: Response, token: str, hostname: Optional[str]):
    response.set_cookie(
        SESSION_COOKIE_NAME,
        token,
        max_age=int(SESSION_TTL.total_seconds()),
        **_cookie_flags(hostname),
    )


def clear_session_cookie(response: Response, hostname: Optional[str]):
    response.delete_cookie(SESSION_COOKIE_NAME, **_cookie_flags(hostname))


# ----------------------- Identity provider -----------------------
def _firebase_app():
    try:
        return firebase_admin.get_app()
    except ValueError:
        pass
    private_key = os.getenv("FIREBASE_PRIVATE_KEY")
    if not private_key:
        raise RuntimeError("Firebase credentials are not configured")
    cred = credentials.Certificate(
        {
            "type": "service_account",
            "project_id": os.getenv("FIREBASE_PROJECT_ID"),
            "private_key": private_key.replace("\\n", "\n"),
            "client_email": os.getenv("FIREBASE_CLIENT_EMAIL"),
            "token_uri": "https://oauth2.googleapis.com/token",
        }
    )
    return firebase_admin.initialize_app(cred)


def verify_id_token(id_token: str) -> dict:
    """Verify a Firebase ID token and return its decoded claims."""
    return firebase_auth.verify_id_token(id_token, app=_firebase_app())
