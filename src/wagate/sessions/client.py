"""Capability interface of the external automation client.

The gateway never touches the browser automation itself. A client is
anything that can start, stop, log out, send a message and report events of
the kinds listed in `ClientEventKind`. Concrete clients are provided by a
factory named in CLIENT_FACTORY (`package.module:attribute`).
"""

from __future__ import annotations

import importlib
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Protocol, Union


class ClientEventKind(str, Enum):
    QR = "qr"
    READY = "ready"
    AUTHENTICATED = "authenticated"
    AUTH_FAILURE = "auth_failure"
    DISCONNECTED = "disconnected"
    MESSAGE = "message"


@dataclass(frozen=True)
class QrEvent:
    payload: str
    kind: ClientEventKind = ClientEventKind.QR


@dataclass(frozen=True)
class ReadyEvent:
    kind: ClientEventKind = ClientEventKind.READY


@dataclass(frozen=True)
class AuthenticatedEvent:
    kind: ClientEventKind = ClientEventKind.AUTHENTICATED


@dataclass(frozen=True)
class AuthFailureEvent:
    reason: str = ""
    kind: ClientEventKind = ClientEventKind.AUTH_FAILURE


@dataclass(frozen=True)
class DisconnectedEvent:
    reason: str = ""
    kind: ClientEventKind = ClientEventKind.DISCONNECTED


@dataclass(frozen=True)
class InboundMessage:
    """One incoming message as reported by the client.

    `type` is the network's own message type (chat, image, ptt, location,
    vcard, ...). `timestamp` is in seconds. `ack` is the delivery code.
    """

    id: str
    from_id: str
    type: str
    timestamp: float
    body: str = ""
    contact_name: str = ""
    has_media: bool = False
    caption: str = ""
    filename: str | None = None
    thumbnail: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    ack: int = 0
    is_status: bool = False
    broadcast: bool = False


@dataclass(frozen=True)
class MessageEvent:
    message: InboundMessage
    kind: ClientEventKind = ClientEventKind.MESSAGE


ClientEvent = Union[
    QrEvent, ReadyEvent, AuthenticatedEvent, AuthFailureEvent, DisconnectedEvent, MessageEvent
]
EventHandler = Callable[[ClientEvent], Union[Awaitable[None], None]]


@dataclass(frozen=True)
class MediaDownload:
    """Raw attachment bytes fetched from the network."""

    data: bytes
    mimetype: str
    filename: str | None = None


@dataclass(frozen=True)
class OutboundMedia:
    """Media attachment to send, backed by a local file."""

    kind: str
    path: Path
    mimetype: str
    filename: str
    caption: str = ""


@dataclass(frozen=True)
class ClientOptions:
    """How to open a client.

    Attributes:
        uid: Account the client acts for.
        data_dir: Directory holding the account's credential material.
        heavy_renderer: Use the full browser backend (needed for video/gif).
    """

    uid: str
    data_dir: Path
    heavy_renderer: bool = False


class MessagingClient(Protocol):
    """Capability set the gateway relies on."""

    async def start(self) -> None:
        """Launch the client. Events follow asynchronously."""
        ...

    async def stop(self) -> None:
        """Destroy the client handle."""
        ...

    async def logout(self) -> None:
        """Log the account out on the remote side."""
        ...

    async def send_message(self, contact: str, payload: str | OutboundMedia) -> str | None:
        """Send text or media. Returns the message id, None if not accepted."""
        ...

    async def download_media(self, message: InboundMessage) -> MediaDownload | None: ...

    def subscribe(self, kind: ClientEventKind, handler: EventHandler) -> None: ...

    def unsubscribe_all(self) -> None: ...

    def is_logged_in(self) -> bool: ...


ClientFactory = Callable[[ClientOptions], MessagingClient]


def load_client_factory(path: str) -> ClientFactory:
    """Resolve a `module:attribute` path to a client factory.

    Raises:
        ValueError: If path is empty or malformed.
        ImportError / AttributeError: If the target does not exist.
    """
    module_name, sep, attr = path.partition(":")
    if not path or not sep or not module_name or not attr:
        raise ValueError(f"CLIENT_FACTORY must look like 'package.module:factory', got {path!r}")
    module = importlib.import_module(module_name)
    factory = getattr(module, attr)
    if not callable(factory):
        raise ValueError(f"CLIENT_FACTORY target {path!r} is not callable")
    return factory


def chat_id(contact: str) -> str:
    """Turn a bare phone number into a chat id. Ids with '@' pass through."""
    contact = contact.strip()
    if "@" in contact:
        return contact
    return f"{contact.lstrip('+')}@c.us"


def contact_uid(from_id: str) -> str:
    """Extract the number part of a chat id (e.g. "5511999999999@c.us")."""
    return from_id.split("@")[0]
