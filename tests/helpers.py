"""Shared test helpers for wagate tests.

These are NOT fixtures - plain classes and functions importable from test
modules and conftest.py.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Callable

from wagate.config import Settings
from wagate.sessions.client import (
    ClientEvent,
    ClientEventKind,
    ClientOptions,
    EventHandler,
    InboundMessage,
    MediaDownload,
    OutboundMedia,
)
from wagate.sessions.events import EventEmitter

QR_PAYLOAD = "2@fake-qr-payload,base64key==,serverref"


class FakeClient:
    """Scripted automation client.

    Args:
        options: Options the factory was called with.
        on_start: Events emitted (in order) once start() succeeds.
        start_error: Raised by start() instead of starting.
        creates_credentials: start() creates options.data_dir like a real client.
    """

    def __init__(
        self,
        options: ClientOptions,
        *,
        on_start: tuple[ClientEvent, ...] = (),
        start_error: BaseException | None = None,
        creates_credentials: bool = True,
        message_id: str | None = "true_5511999999999@c.us_3EB0",
        send_error: BaseException | None = None,
        media: MediaDownload | None = None,
        stop_error: BaseException | None = None,
        logout_error: BaseException | None = None,
    ) -> None:
        self.options = options
        self.emitter = EventEmitter()
        self.on_start = on_start
        self.start_error = start_error
        self.creates_credentials = creates_credentials
        self.message_id = message_id
        self.send_error = send_error
        self.media = media
        self.stop_error = stop_error
        self.logout_error = logout_error

        self.started = False
        self.stopped = False
        self.logged_out = False
        self.logged_in = False
        self.sent: list[tuple[str, str | OutboundMedia]] = []

    async def start(self) -> None:
        if self.start_error is not None:
            raise self.start_error
        self.started = True
        if self.creates_credentials:
            self.options.data_dir.mkdir(parents=True, exist_ok=True)
        for event in self.on_start:
            await self.emit(event)

    async def stop(self) -> None:
        self.stopped = True
        self.logged_in = False
        if self.stop_error is not None:
            raise self.stop_error

    async def logout(self) -> None:
        self.logged_out = True
        if self.logout_error is not None:
            raise self.logout_error

    async def send_message(self, contact: str, payload: str | OutboundMedia) -> str | None:
        self.sent.append((contact, payload))
        if self.send_error is not None:
            raise self.send_error
        return self.message_id

    async def download_media(self, message: InboundMessage) -> MediaDownload | None:
        return self.media

    def subscribe(self, kind: ClientEventKind, handler: EventHandler) -> None:
        self.emitter.subscribe(kind, handler)

    def unsubscribe_all(self) -> None:
        self.emitter.unsubscribe_all()

    def is_logged_in(self) -> bool:
        return self.logged_in

    async def emit(self, event: ClientEvent) -> None:
        if event.kind in (ClientEventKind.READY, ClientEventKind.AUTHENTICATED):
            self.logged_in = True
        await self.emitter.emit(event)


class FakeClientFactory:
    """Builds FakeClients and remembers them.

    `start_failures` makes that many first clients fail in start().
    """

    def __init__(self, start_failures: int = 0, **client_kwargs) -> None:
        self.start_failures = start_failures
        self.client_kwargs = client_kwargs
        self.clients: list[FakeClient] = []

    def __call__(self, options: ClientOptions) -> FakeClient:
        kwargs = dict(self.client_kwargs)
        if len(self.clients) < self.start_failures:
            kwargs["start_error"] = RuntimeError("browser failed to launch")
        client = FakeClient(options, **kwargs)
        self.clients.append(client)
        return client

    @property
    def last(self) -> FakeClient:
        return self.clients[-1]


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Yield to the loop until predicate() holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


def make_message(**overrides) -> InboundMessage:
    fields = {
        "id": "false_5511999999999@c.us_3EB0C767D26A",
        "from_id": "5511999999999@c.us",
        "type": "chat",
        "timestamp": 1718000000,
        "body": "hello",
        "contact_name": "Maria",
    }
    fields.update(overrides)
    return InboundMessage(**fields)


def make_settings(tmp_path: Path, **overrides) -> Settings:
    fields = {
        "webhook_url": "https://hooks.example.com/inbound",
        "upload_url": "https://files.example.com/upload",
        "upload_token": "upload-secret",
        "sessions_dir": tmp_path / "sessions",
        "media_tmp_dir": tmp_path / "tmp",
        "qr_timeout_seconds": 5,
        "jwt_secret": "test-secret",
        "restore_sessions": False,
    }
    fields.update(overrides)
    return Settings(**fields)
