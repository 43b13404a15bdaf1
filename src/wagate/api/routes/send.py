"""Outbound send routes.

Security:
- Callers authenticate with the token issued on /register
- Recipient and text never reach the logs
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, field_validator

from wagate.api.auth import verify_send_credentials
from wagate.api.deps import get_gateway
from wagate.errors import AuthError
from wagate.gateway import Gateway
from wagate.outbound.dispatcher import SendStatus

router = APIRouter(prefix="/send", tags=["send"])

_STATUS_CODES = {
    SendStatus.SENT: 200,
    SendStatus.SESSION_NOT_FOUND: 404,
    SendStatus.FAILED: 502,
}


class _SendRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    token: str
    uid: str
    to: str

    @field_validator("token", "uid", "to")
    @classmethod
    def not_blank(cls, v: str) -> str:
        """Reject empty or whitespace-only values."""
        v = v.strip()
        if not v:
            raise ValueError("must not be empty")
        return v


class SendChatRequest(_SendRequest):
    text: str

    @field_validator("text")
    @classmethod
    def text_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("text cannot be empty")
        return v


class SendMediaRequest(_SendRequest):
    url: str
    type: str | None = None

    @field_validator("url")
    @classmethod
    def url_not_empty(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("url cannot be empty")
        return v


def _auth_failed(exc: AuthError) -> JSONResponse:
    return JSONResponse(status_code=401, content={"success": False, "error": str(exc)})


def _send_result(status: SendStatus) -> JSONResponse:
    return JSONResponse(status_code=_STATUS_CODES[status], content={"status": status.value})


@router.post("/chat")
async def send_chat(body: SendChatRequest, gateway: Gateway = Depends(get_gateway)) -> JSONResponse:
    """Send a text message through the uid's live session."""
    try:
        await verify_send_credentials(gateway, uid=body.uid, token=body.token)
    except AuthError as exc:
        return _auth_failed(exc)

    status = await gateway.dispatcher.send_text(body.uid, body.to, body.text)
    return _send_result(status)


@router.post("/media")
async def send_media(
    body: SendMediaRequest, gateway: Gateway = Depends(get_gateway)
) -> JSONResponse:
    """Send the media at url. type is inferred from the URL when omitted."""
    try:
        await verify_send_credentials(gateway, uid=body.uid, token=body.token)
    except AuthError as exc:
        return _auth_failed(exc)

    status = await gateway.dispatcher.send_media(body.uid, body.to, body.url, body.type)
    return _send_result(status)
