"""Send credentials: HS256 JWTs issued on register.

Provides:
- issue_token(): signs a token with sub = uid
- verify_send_credentials(): token + quota check for /send/* callers
"""

from __future__ import annotations

import asyncio
import hmac
from datetime import timedelta

import jwt

from wagate.errors import AuthError
from wagate.gateway import Gateway
from wagate.infra.time import utc_now
from wagate.observability.logging import get_logger
from wagate.observability.redaction import uid_context

logger = get_logger(__name__)

_ALGORITHM = "HS256"


def issue_token(uid: str, *, secret: str, ttl_seconds: int = 0) -> str:
    """Sign a send token for uid.

    Raises:
        AuthError: If no signing secret is configured.
    """
    if not secret:
        raise AuthError("JWT_SECRET not configured")

    now = utc_now()
    claims: dict = {"sub": uid, "iat": now}
    if ttl_seconds > 0:
        claims["exp"] = now + timedelta(seconds=ttl_seconds)
    return jwt.encode(claims, secret, algorithm=_ALGORITHM)


def decode_token(token: str, *, secret: str) -> str:
    """Verify token and return its subject.

    Raises:
        AuthError: If the token is invalid or expired.
    """
    if not secret:
        raise AuthError("JWT_SECRET not configured")
    try:
        payload = jwt.decode(
            token, secret, algorithms=[_ALGORITHM], options={"require": ["sub"]}
        )
    except jwt.ExpiredSignatureError:
        raise AuthError("Token expired")
    except jwt.InvalidTokenError:
        raise AuthError("Invalid token")
    return payload["sub"]


async def verify_send_credentials(gateway: Gateway, *, uid: str, token: str) -> None:
    """Check that token was issued for uid and that uid may send.

    Raises:
        AuthError: On a token mismatch or when the quota denies the uid.
    """
    subject = decode_token(token, secret=gateway.settings.jwt_secret)
    if subject != uid:
        raise AuthError("Invalid token")

    record = await asyncio.to_thread(gateway.token_store.get, uid)
    if record is None or not hmac.compare_digest(record.token, token):
        logger.warning("send token mismatch", extra={"extra_fields": uid_context(uid)})
        raise AuthError("Invalid token")

    if not await asyncio.to_thread(gateway.quota.allows, uid):
        logger.info("send denied by quota", extra={"extra_fields": uid_context(uid)})
        raise AuthError("No active license for uid")
