"""Outbound dispatcher - text and media sends on behalf of a uid.

Security: NEVER log the recipient or the text. Only log hashes and lengths.
"""

from __future__ import annotations

import asyncio
import shutil
import tempfile
from enum import Enum
from pathlib import Path

from wagate.errors import MediaDownloadError, ValidationError
from wagate.media_types import HEAVY_KINDS, OUTBOUND_KINDS, infer_media_type
from wagate.observability.logging import get_logger
from wagate.observability.redaction import hash_identifier, uid_context
from wagate.relay.storage import MediaAsset
from wagate.sessions.client import (
    ClientEvent,
    ClientEventKind,
    ClientOptions,
    MessagingClient,
    OutboundMedia,
    chat_id,
)
from wagate.sessions.credentials import has_credentials, session_dir, validate_uid
from wagate.sessions.lifecycle import SessionLifecycle

from .fetch import fetch_remote_media

logger = get_logger(__name__)

_DISPOSABLE_OUTCOMES = (
    ClientEventKind.READY,
    ClientEventKind.QR,
    ClientEventKind.AUTH_FAILURE,
    ClientEventKind.DISCONNECTED,
)


class SendStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"
    SESSION_NOT_FOUND = "session_not_found"


def resolve_media_type(url: str, media_type: str | None) -> str:
    """Explicit media type if given, else inferred from the URL extension.

    Raises:
        ValidationError: If media_type is not a known kind.
    """
    if not media_type:
        return infer_media_type(url)
    kind = media_type.strip().lower()
    if kind not in OUTBOUND_KINDS:
        raise ValidationError(f"unsupported media type: {media_type}")
    return kind


class OutboundDispatcher:
    def __init__(
        self,
        *,
        lifecycle: SessionLifecycle,
        tmp_root: Path | None = None,
        fetch_timeout: float = 60,
    ) -> None:
        self._lifecycle = lifecycle
        self._tmp_root = tmp_root
        self._fetch_timeout = fetch_timeout

    async def send_text(self, uid: str, to: str, text: str) -> SendStatus:
        """Send text through the uid's live session."""
        uid = validate_uid(uid)
        session = self._lifecycle.live_session(uid)
        if session is None:
            logger.info("send_text: no live session", extra={"extra_fields": uid_context(uid)})
            return SendStatus.SESSION_NOT_FOUND
        return await self._deliver(uid, session.client, chat_id(to), text)

    async def send_media(
        self, uid: str, to: str, url: str, media_type: str | None = None
    ) -> SendStatus:
        """Send the media at url.

        Without a live session, a disposable client is opened from the
        uid's persisted credentials for this send only.
        """
        uid = validate_uid(uid)
        kind = resolve_media_type(url, media_type)
        contact = chat_id(to)

        session = self._lifecycle.live_session(uid)
        if session is None and not has_credentials(self._lifecycle.sessions_dir, uid):
            logger.info("send_media: no session", extra={"extra_fields": uid_context(uid)})
            return SendStatus.SESSION_NOT_FOUND

        if self._tmp_root is not None:
            self._tmp_root.mkdir(parents=True, exist_ok=True)
        workdir = Path(tempfile.mkdtemp(prefix="wagate-out-", dir=self._tmp_root))
        try:
            try:
                asset = await fetch_remote_media(
                    url, workdir, kind=kind, timeout=self._fetch_timeout
                )
            except MediaDownloadError as exc:
                logger.warning(
                    "outbound media fetch failed",
                    extra={"extra_fields": uid_context(uid, kind=kind, error_type=type(exc).__name__)},
                )
                return SendStatus.FAILED

            media = _as_outbound(asset)
            if session is not None:
                return await self._deliver(uid, session.client, contact, media)
            return await self._send_with_disposable(uid, contact, media)
        finally:
            shutil.rmtree(workdir, ignore_errors=True)

    async def _send_with_disposable(self, uid: str, contact: str, media: OutboundMedia) -> SendStatus:
        async with self._lifecycle.locks.hold(uid):
            # A create may have completed while the media was being fetched.
            session = self._lifecycle.live_session(uid)
            if session is not None:
                return await self._deliver(uid, session.client, contact, media)
            if self._lifecycle.store.has(uid):
                # Pending session owns the credential directory.
                return SendStatus.SESSION_NOT_FOUND

            client = self._lifecycle.client_factory(
                ClientOptions(
                    uid=uid,
                    data_dir=session_dir(self._lifecycle.sessions_dir, uid),
                    heavy_renderer=media.kind in HEAVY_KINDS,
                )
            )
            outcome: asyncio.Future[ClientEventKind] = asyncio.get_running_loop().create_future()

            def _on_event(event: ClientEvent) -> None:
                if not outcome.done():
                    outcome.set_result(event.kind)

            for kind in _DISPOSABLE_OUTCOMES:
                client.subscribe(kind, _on_event)

            try:
                await client.start()
                result = await asyncio.wait_for(outcome, timeout=self._lifecycle.qr_timeout_s)
                if result == ClientEventKind.QR:
                    logger.info(
                        "disposable client not authenticated", extra={"extra_fields": uid_context(uid)}
                    )
                    return SendStatus.SESSION_NOT_FOUND
                if result != ClientEventKind.READY:
                    logger.warning(
                        "disposable client failed",
                        extra={"extra_fields": uid_context(uid, outcome=result.value)},
                    )
                    return SendStatus.FAILED
                return await self._deliver(uid, client, contact, media)
            except Exception as exc:
                logger.warning(
                    "disposable client failed",
                    extra={"extra_fields": uid_context(uid, error_type=type(exc).__name__)},
                )
                return SendStatus.FAILED
            finally:
                client.unsubscribe_all()
                try:
                    await client.stop()
                except Exception:
                    logger.exception(
                        "disposable client stop failed", extra={"extra_fields": uid_context(uid)}
                    )

    async def _deliver(
        self,
        uid: str,
        client: MessagingClient,
        contact: str,
        payload: str | OutboundMedia,
    ) -> SendStatus:
        log_ctx = uid_context(
            uid,
            to_hash=hash_identifier(contact),
            kind=payload.kind if isinstance(payload, OutboundMedia) else "chat",
            text_len=len(payload) if isinstance(payload, str) else None,
        )
        try:
            message_id = await client.send_message(contact, payload)
        except Exception as exc:
            logger.error(
                "outbound send failed",
                extra={"extra_fields": {**log_ctx, "error_type": type(exc).__name__}},
            )
            return SendStatus.FAILED

        if not message_id:
            logger.error("outbound send not accepted", extra={"extra_fields": log_ctx})
            return SendStatus.FAILED
        logger.info("outbound message sent", extra={"extra_fields": log_ctx})
        return SendStatus.SENT


def _as_outbound(asset: MediaAsset) -> OutboundMedia:
    return OutboundMedia(
        kind=asset.kind, path=asset.path, mimetype=asset.mimetype, filename=asset.filename
    )
