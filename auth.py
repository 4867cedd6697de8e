from typing import Optional

import structlog
from fastapi import APIRouter, HTTPException, Request, Response
from firebase_admin.exceptions import FirebaseError
from pydantic import BaseModel

import security
import users
from security import clear_session_cookie, set_session_cookie

logger = structlog.get_logger(__name__)

router = APIRouter()


class VerifyOtpBody(BaseModel):
    idToken: Optional[str] = None


@router.post("/verify-otp")
def verify_otp(body: VerifyOtpBody, request: Request, response: Response):
    if not body.idToken:
        raise HTTPException(status_code=400, detail="ID token is required")
    try:
        claims = security.verify_id_token(body.idToken)
    except (ValueError, FirebaseError) as exc:
        logger.warning("id_token_rejected", error=str(exc))
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    phone_number = claims.get("phone_number")
    if not phone_number:
        raise HTTPException(status_code=400, detail="Phone number missing in token")

    user = users.find_or_create_by_phone(phone_number)
    token = users.issue_token(user)
    set_session_cookie(response, token, request.url.hostname)
    logger.info("otp_login", user_id=user["id"])
    return {"token": token, "user": user}


@router.post("/logout")
def logout(request: Request, response: Response):
    clear_session_cookie(response, request.url.hostname)
    return {"message": "Logged out successfully."}
