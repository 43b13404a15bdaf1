"""Wiring of the gateway components from Settings."""

from __future__ import annotations

from dataclasses import dataclass

from wagate.config import Settings, get_settings
from wagate.infra.token_store import (
    MemoryTokenStore,
    QuotaGate,
    TokenStore,
    create_quota_gate,
    create_token_store,
)
from wagate.observability.logging import get_logger
from wagate.outbound.dispatcher import OutboundDispatcher
from wagate.relay.media import MediaPipeline
from wagate.relay.storage import HttpUploader
from wagate.relay.transcode import FfmpegTranscoder
from wagate.relay.webhook import WebhookRelay
from wagate.sessions.client import ClientFactory, ClientOptions, MessagingClient, load_client_factory
from wagate.sessions.lifecycle import SessionLifecycle

logger = get_logger(__name__)

# Dot-prefixed so it is never mistaken for a uid credential directory.
TOKENS_SUBDIR = ".tokens"


@dataclass
class Gateway:
    """Everything the HTTP control plane talks to."""

    settings: Settings
    lifecycle: SessionLifecycle
    dispatcher: OutboundDispatcher
    relay: WebhookRelay
    token_store: TokenStore
    quota: QuotaGate


def _unconfigured_factory(options: ClientOptions) -> MessagingClient:
    raise RuntimeError("CLIENT_FACTORY is not configured")


def resolve_client_factory(settings: Settings) -> ClientFactory:
    if not settings.client_factory:
        logger.warning("CLIENT_FACTORY not set, session creation will fail")
        return _unconfigured_factory
    return load_client_factory(settings.client_factory)


def build_gateway(
    settings: Settings | None = None,
    *,
    client_factory: ClientFactory | None = None,
    token_store: TokenStore | None = None,
    quota: QuotaGate | None = None,
) -> Gateway:
    """Assemble a Gateway.

    Args:
        settings: Defaults to get_settings().
        client_factory: Overrides CLIENT_FACTORY.
        token_store: Overrides TOKEN_STORE_BACKEND.
        quota: Overrides QUOTA_BACKEND.
    """
    settings = settings or get_settings()
    tokens = token_store or create_token_store(
        settings.token_store_backend, directory=settings.sessions_dir / TOKENS_SUBDIR
    )
    if settings.restore_sessions and isinstance(tokens, MemoryTokenStore):
        logger.warning(
            "memory token store with session restore: restored sessions lose their tokens on restart"
        )

    media = MediaPipeline(
        uploader=HttpUploader(
            url=settings.upload_url,
            token=settings.upload_token,
            url_field=settings.upload_url_field,
            timeout=settings.upload_timeout,
        ),
        transcoder=FfmpegTranscoder(settings.ffmpeg_path),
        tmp_root=settings.media_tmp_dir,
    )
    relay = WebhookRelay(
        webhook_url=settings.webhook_url,
        token_store=tokens,
        media=media,
        timeout=settings.webhook_timeout,
    )
    lifecycle = SessionLifecycle(
        client_factory=client_factory or resolve_client_factory(settings),
        token_store=tokens,
        sessions_dir=settings.sessions_dir,
        relay=relay,
        qr_timeout_s=settings.qr_timeout_seconds,
        init_retries=settings.init_retries,
    )
    dispatcher = OutboundDispatcher(
        lifecycle=lifecycle,
        tmp_root=settings.media_tmp_dir,
        fetch_timeout=settings.upload_timeout,
    )
    return Gateway(
        settings=settings,
        lifecycle=lifecycle,
        dispatcher=dispatcher,
        relay=relay,
        token_store=tokens,
        quota=quota or create_quota_gate(settings.quota_backend),
    )
