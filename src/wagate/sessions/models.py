"""Session models."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from .client import ClientEvent, InboundMessage, MessagingClient


class SessionState(str, Enum):
    INITIALIZING = "initializing"
    AWAITING_QR = "awaiting_qr"
    AUTHENTICATED = "authenticated"
    DISCONNECTED = "disconnected"
    FAILED = "failed"


LIVE_STATES = frozenset(
    {SessionState.INITIALIZING, SessionState.AWAITING_QR, SessionState.AUTHENTICATED}
)


class StatusReport(str, Enum):
    """Answer of get_state()."""

    AUTHENTICATED = "authenticated"
    UNAUTHENTICATED = "unauthenticated"
    NOT_FOUND = "not_found"


@dataclass
class Session:
    """Lifecycle record and owned client handle for one uid.

    The client is exclusively owned by this record; it is never shared with
    another uid and is destroyed when the session is torn down.
    """

    uid: str
    client: MessagingClient
    state: SessionState = SessionState.INITIALIZING
    token: str | None = None
    qr_deadline: datetime | None = None
    qr_waiter: asyncio.Future[str | None] | None = None
    events: asyncio.Queue[ClientEvent] = field(default_factory=asyncio.Queue)
    inbox: asyncio.Queue[InboundMessage] = field(default_factory=asyncio.Queue)
    tasks: dict[str, asyncio.Task[Any]] = field(default_factory=dict)

    @property
    def is_live(self) -> bool:
        return self.state in LIVE_STATES

    def resolve_waiter(self, qr_image: str | None) -> bool:
        """Deliver the create() result. Returns False if already delivered."""
        if self.qr_waiter is None or self.qr_waiter.done():
            return False
        self.qr_waiter.set_result(qr_image)
        return True

    def fail_waiter(self, exc: BaseException) -> bool:
        """Deliver a create() error. Returns False if already delivered."""
        if self.qr_waiter is None or self.qr_waiter.done():
            return False
        self.qr_waiter.set_exception(exc)
        return True


@dataclass(frozen=True)
class DisconnectResult:
    success: bool
    message: str
