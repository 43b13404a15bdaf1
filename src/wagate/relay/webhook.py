"""Webhook relay - inbound messages to the configured endpoint.

Delivery is fire-and-forget: failures are logged, never retried, and never
reach the session that produced the message.
"""

from __future__ import annotations

import asyncio
from typing import Any

import requests

from wagate.errors import MediaError
from wagate.infra.token_store import TokenStore
from wagate.observability.logging import get_logger
from wagate.observability.redaction import uid_context
from wagate.sessions.client import InboundMessage, MessagingClient

from .envelope import build_envelope, flatten_form, skips_media_pipeline
from .media import MediaPipeline, UploadedMedia

logger = get_logger(__name__)


def is_broadcast(message: InboundMessage) -> bool:
    return message.is_status or message.broadcast or message.from_id.endswith("@broadcast")


class WebhookRelay:
    def __init__(
        self,
        *,
        webhook_url: str,
        token_store: TokenStore,
        media: MediaPipeline,
        timeout: float = 10,
    ) -> None:
        self._url = webhook_url
        self._tokens = token_store
        self._media = media
        self._timeout = timeout

    async def relay(self, uid: str, client: MessagingClient, message: InboundMessage) -> None:
        """Relay one inbound message. Status/broadcast messages are dropped."""
        if is_broadcast(message):
            logger.debug("broadcast message skipped", extra={"extra_fields": uid_context(uid)})
            return

        record = await asyncio.to_thread(self._tokens.get, uid)
        token = record.token if record is not None else ""

        media: UploadedMedia | None = None
        if message.has_media and not skips_media_pipeline(message):
            try:
                media = await self._media.process(uid, client, message)
            except MediaError as exc:
                logger.warning(
                    "media relay aborted, webhook not sent",
                    extra={
                        "extra_fields": uid_context(
                            uid, message_type=message.type, error_type=type(exc).__name__
                        )
                    },
                )
                return

        envelope = build_envelope(message, media)
        await self.post(uid, envelope.to_payload(uid=uid, token=token))

    async def post(self, uid: str, payload: dict[str, Any]) -> bool:
        """POST payload form-encoded. Returns True on a 2xx answer."""
        if not self._url:
            logger.warning(
                "WEBHOOK_URL not configured, envelope dropped",
                extra={"extra_fields": uid_context(uid)},
            )
            return False

        kind = payload.get("message", {}).get("type")
        try:
            status = await asyncio.to_thread(self._post_sync, flatten_form(payload))
        except requests.RequestException as exc:
            logger.error(
                "webhook delivery failed",
                extra={"extra_fields": uid_context(uid, kind=kind, error_type=type(exc).__name__)},
            )
            return False

        logger.info(
            "webhook delivered", extra={"extra_fields": uid_context(uid, kind=kind, status=status)}
        )
        return True

    def _post_sync(self, form: list[tuple[str, str]]) -> int:
        resp = requests.post(self._url, data=form, timeout=self._timeout)
        resp.raise_for_status()
        return resp.status_code
