"""Session control routes.

POST /register          → issue token, open session, return QR
GET  /status/{uid}      → authenticated | unauthenticated | not_found
POST /disconnect/{uid}  → log out and delete credential material
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict

from wagate.api.auth import issue_token
from wagate.api.deps import get_gateway
from wagate.errors import NotFoundError, ValidationError
from wagate.gateway import Gateway
from wagate.observability.logging import get_logger
from wagate.observability.redaction import uid_context
from wagate.sessions.models import StatusReport

logger = get_logger(__name__)

router = APIRouter(tags=["sessions"])


class RegisterRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    uid: str


@router.post("/register")
async def register(body: RegisterRequest, gateway: Gateway = Depends(get_gateway)) -> dict:
    """Open a session for uid and return its QR code.

    Returns:
        {success, qrCode, token, status}. qrCode is null when the uid
        authenticated from stored credentials without a QR.
    """
    lifecycle = gateway.lifecycle
    uid = body.uid.strip()
    if lifecycle.get_state(uid) == StatusReport.AUTHENTICATED:
        raise ValidationError("uid is already authenticated")

    settings = gateway.settings
    token = issue_token(uid, secret=settings.jwt_secret, ttl_seconds=settings.jwt_ttl_seconds)
    qr_code = await lifecycle.create(uid, token=token)

    status = "qr" if qr_code else "authenticated"
    logger.info("register completed", extra={"extra_fields": uid_context(uid, status=status)})
    return {"success": True, "qrCode": qr_code, "token": token, "status": status}


@router.get("/status/{uid}")
def status(uid: str, gateway: Gateway = Depends(get_gateway)) -> dict:
    report = gateway.lifecycle.get_state(uid)
    return {"uid": uid, "status": report.value}


@router.post("/disconnect/{uid}")
async def disconnect(uid: str, gateway: Gateway = Depends(get_gateway)) -> dict:
    result = await gateway.lifecycle.disconnect(uid)
    if not result.success:
        raise NotFoundError(result.message)
    return {"success": True, "message": result.message}
