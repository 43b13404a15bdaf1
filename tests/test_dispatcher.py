"""Tests for the outbound dispatcher and remote media fetch."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
import requests

from wagate.errors import MediaDownloadError, ValidationError
from wagate.outbound.dispatcher import OutboundDispatcher, SendStatus, resolve_media_type
from wagate.outbound.fetch import fetch_remote_media
from wagate.sessions.client import OutboundMedia, QrEvent, ReadyEvent
from wagate.sessions.lifecycle import SessionLifecycle

from helpers import QR_PAYLOAD, FakeClientFactory

UID = "15551234567"
MEDIA_URL = "https://cdn.example.com/media/clip.mp4"


def _response(body: bytes = b"\x00\x00\x00\x18ftypmp42", content_type: str = "video/mp4") -> MagicMock:
    resp = MagicMock()
    resp.__enter__.return_value = resp
    resp.__exit__.return_value = False
    resp.headers = {"Content-Type": content_type}
    resp.raise_for_status.return_value = None
    resp.iter_content.return_value = [body] if body else []
    return resp


def _dispatcher(factory, token_store, sessions_dir, tmp_path, qr_timeout_s=1):
    lifecycle = SessionLifecycle(
        client_factory=factory,
        token_store=token_store,
        sessions_dir=sessions_dir,
        qr_timeout_s=qr_timeout_s,
    )
    return lifecycle, OutboundDispatcher(lifecycle=lifecycle, tmp_root=tmp_path / "out", fetch_timeout=5)


class TestResolveMediaType:
    def test_inferred_from_url(self):
        assert resolve_media_type("https://x/a.jpeg", None) == "image"

    def test_explicit_type_wins(self):
        assert resolve_media_type("https://x/a.jpeg", "GIF") == "gif"

    def test_unknown_type_rejected(self):
        with pytest.raises(ValidationError):
            resolve_media_type("https://x/a.jpeg", "hologram")


class TestSendText:
    @pytest.mark.asyncio
    async def test_sends_through_live_session(self, token_store, sessions_dir, tmp_path):
        factory = FakeClientFactory(on_start=(ReadyEvent(),))
        lifecycle, dispatcher = _dispatcher(factory, token_store, sessions_dir, tmp_path)
        await lifecycle.create(UID)

        status = await dispatcher.send_text(UID, "+5511988887777", "hello")

        assert status == SendStatus.SENT
        assert factory.last.sent == [("5511988887777@c.us", "hello")]
        await lifecycle.close_all()

    @pytest.mark.asyncio
    async def test_no_session_returns_not_found_without_io(self, token_store, sessions_dir, tmp_path):
        factory = FakeClientFactory()
        _, dispatcher = _dispatcher(factory, token_store, sessions_dir, tmp_path)

        with patch("requests.get") as mock_get, patch("requests.post") as mock_post:
            status = await dispatcher.send_text(UID, "5511988887777", "hello")

        assert status == SendStatus.SESSION_NOT_FOUND
        assert factory.clients == []
        mock_get.assert_not_called()
        mock_post.assert_not_called()

    @pytest.mark.asyncio
    async def test_pending_session_is_not_live(self, token_store, sessions_dir, tmp_path):
        factory = FakeClientFactory(on_start=(QrEvent(QR_PAYLOAD),))
        lifecycle, dispatcher = _dispatcher(factory, token_store, sessions_dir, tmp_path)
        await lifecycle.create(UID)

        assert await dispatcher.send_text(UID, "5511988887777", "hi") == SendStatus.SESSION_NOT_FOUND
        await lifecycle.close_all()

    @pytest.mark.asyncio
    async def test_no_message_id_is_failure(self, token_store, sessions_dir, tmp_path):
        factory = FakeClientFactory(on_start=(ReadyEvent(),), message_id=None)
        lifecycle, dispatcher = _dispatcher(factory, token_store, sessions_dir, tmp_path)
        await lifecycle.create(UID)

        assert await dispatcher.send_text(UID, "5511988887777", "hi") == SendStatus.FAILED
        await lifecycle.close_all()

    @pytest.mark.asyncio
    async def test_client_error_is_failure(self, token_store, sessions_dir, tmp_path):
        factory = FakeClientFactory(on_start=(ReadyEvent(),), send_error=RuntimeError("page crashed"))
        lifecycle, dispatcher = _dispatcher(factory, token_store, sessions_dir, tmp_path)
        await lifecycle.create(UID)

        assert await dispatcher.send_text(UID, "5511988887777", "hi") == SendStatus.FAILED
        await lifecycle.close_all()


class TestSendMedia:
    @pytest.mark.asyncio
    async def test_live_session(self, token_store, sessions_dir, tmp_path):
        factory = FakeClientFactory(on_start=(ReadyEvent(),))
        lifecycle, dispatcher = _dispatcher(factory, token_store, sessions_dir, tmp_path)
        await lifecycle.create(UID)

        with patch("wagate.outbound.fetch.requests.get", return_value=_response()):
            status = await dispatcher.send_media(UID, "5511988887777", MEDIA_URL)

        assert status == SendStatus.SENT
        contact, media = factory.last.sent[0]
        assert contact == "5511988887777@c.us"
        assert isinstance(media, OutboundMedia)
        assert media.kind == "video"
        assert media.filename == "clip.mp4"
        assert media.mimetype == "video/mp4"
        assert list((tmp_path / "out").iterdir()) == []
        await lifecycle.close_all()

    @pytest.mark.asyncio
    async def test_no_session_and_no_credentials(self, token_store, sessions_dir, tmp_path):
        factory = FakeClientFactory()
        _, dispatcher = _dispatcher(factory, token_store, sessions_dir, tmp_path)

        with patch("wagate.outbound.fetch.requests.get") as mock_get:
            status = await dispatcher.send_media(UID, "5511988887777", MEDIA_URL)

        assert status == SendStatus.SESSION_NOT_FOUND
        mock_get.assert_not_called()
        assert factory.clients == []

    @pytest.mark.asyncio
    async def test_disposable_client_for_video(self, token_store, sessions_dir, tmp_path):
        (sessions_dir / UID).mkdir()
        factory = FakeClientFactory(on_start=(ReadyEvent(),))
        lifecycle, dispatcher = _dispatcher(factory, token_store, sessions_dir, tmp_path)

        with patch("wagate.outbound.fetch.requests.get", return_value=_response()):
            status = await dispatcher.send_media(UID, "5511988887777", MEDIA_URL)

        assert status == SendStatus.SENT
        client = factory.last
        assert client.options.heavy_renderer is True
        assert client.stopped
        assert not client.logged_out
        assert client.emitter.listener_count() == 0
        assert not lifecycle.store.has(UID)
        assert (sessions_dir / UID).is_dir()
        assert not lifecycle.locks.locked(UID)

    @pytest.mark.asyncio
    async def test_disposable_client_for_image_uses_light_renderer(
        self, token_store, sessions_dir, tmp_path
    ):
        (sessions_dir / UID).mkdir()
        factory = FakeClientFactory(on_start=(ReadyEvent(),))
        _, dispatcher = _dispatcher(factory, token_store, sessions_dir, tmp_path)

        with patch(
            "wagate.outbound.fetch.requests.get",
            return_value=_response(b"\x89PNG", "image/png"),
        ):
            status = await dispatcher.send_media(
                UID, "5511988887777", "https://cdn.example.com/p.png"
            )

        assert status == SendStatus.SENT
        assert factory.last.options.heavy_renderer is False

    @pytest.mark.asyncio
    async def test_disposable_client_asking_for_qr(self, token_store, sessions_dir, tmp_path):
        (sessions_dir / UID).mkdir()
        factory = FakeClientFactory(on_start=(QrEvent(QR_PAYLOAD),))
        _, dispatcher = _dispatcher(factory, token_store, sessions_dir, tmp_path)

        with patch("wagate.outbound.fetch.requests.get", return_value=_response()):
            status = await dispatcher.send_media(UID, "5511988887777", MEDIA_URL)

        assert status == SendStatus.SESSION_NOT_FOUND
        assert factory.last.sent == []
        assert factory.last.stopped

    @pytest.mark.asyncio
    async def test_disposable_client_never_ready(self, token_store, sessions_dir, tmp_path):
        (sessions_dir / UID).mkdir()
        factory = FakeClientFactory()
        _, dispatcher = _dispatcher(factory, token_store, sessions_dir, tmp_path, qr_timeout_s=0.05)

        with patch("wagate.outbound.fetch.requests.get", return_value=_response()):
            status = await dispatcher.send_media(UID, "5511988887777", MEDIA_URL)

        assert status == SendStatus.FAILED
        assert factory.last.stopped

    @pytest.mark.asyncio
    async def test_fetch_failure(self, token_store, sessions_dir, tmp_path):
        factory = FakeClientFactory(on_start=(ReadyEvent(),))
        lifecycle, dispatcher = _dispatcher(factory, token_store, sessions_dir, tmp_path)
        await lifecycle.create(UID)

        with patch(
            "wagate.outbound.fetch.requests.get", side_effect=requests.ConnectionError("refused")
        ):
            status = await dispatcher.send_media(UID, "5511988887777", MEDIA_URL)

        assert status == SendStatus.FAILED
        assert factory.last.sent == []
        assert list((tmp_path / "out").iterdir()) == []
        await lifecycle.close_all()


class TestFetchRemoteMedia:
    @pytest.mark.asyncio
    async def test_writes_file_with_url_name(self, tmp_path):
        with patch("wagate.outbound.fetch.requests.get", return_value=_response(b"abc", "image/png")):
            asset = await fetch_remote_media(
                "https://cdn.example.com/a%20b.png?x=1", tmp_path, kind="image", timeout=5
            )

        assert asset.filename == "ab.png"
        assert asset.path.read_bytes() == b"abc"
        assert asset.mimetype == "image/png"

    @pytest.mark.asyncio
    async def test_mimetype_guessed_when_header_generic(self, tmp_path):
        with patch(
            "wagate.outbound.fetch.requests.get",
            return_value=_response(b"%PDF", "application/octet-stream"),
        ):
            asset = await fetch_remote_media(
                "https://cdn.example.com/report.pdf", tmp_path, kind="document", timeout=5
            )

        assert asset.mimetype == "application/pdf"

    @pytest.mark.asyncio
    async def test_empty_body_rejected(self, tmp_path):
        with patch("wagate.outbound.fetch.requests.get", return_value=_response(b"")):
            with pytest.raises(MediaDownloadError):
                await fetch_remote_media(MEDIA_URL, tmp_path, kind="video", timeout=5)
