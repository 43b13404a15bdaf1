"""Session lifecycle - one authenticated client per uid.

Each session owns a typed event channel (an asyncio queue) fed by the
client's listeners and drained by one pump task. The pump looks up one
handler per (state, event kind) pair; unknown pairs are ignored. Inbound
messages go to a second queue drained by a relay task, so slow media never
holds up lifecycle transitions.

Every mutation of the SessionStore happens under the uid's PerKeyLock:
create, teardown (disconnect, QR expiry, auth failure, remote disconnect)
and shutdown. Reads (get_state) do not lock.
"""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import replace
from datetime import timedelta
from pathlib import Path
from typing import Any, Awaitable, Callable, Coroutine, Protocol

from wagate.errors import SessionInitError, TeardownError, TransientInitError
from wagate.infra.time import utc_now
from wagate.infra.token_store import TokenRecord, TokenStore
from wagate.observability.correlation import correlation_scope
from wagate.observability.crash import report_task_failure
from wagate.observability.logging import get_logger
from wagate.observability.redaction import hash_identifier, uid_context

from .client import (
    ClientEvent,
    ClientEventKind,
    ClientFactory,
    ClientOptions,
    InboundMessage,
    MessageEvent,
    MessagingClient,
    QrEvent,
)
from .credentials import (
    has_credentials,
    persisted_uids,
    remove_credentials,
    session_dir,
    validate_uid,
)
from .locks import PerKeyLock
from .models import DisconnectResult, Session, SessionState, StatusReport
from .qr import encode_qr
from .store import SessionStore

logger = get_logger(__name__)

DEFAULT_QR_TIMEOUT_S = 60
DEFAULT_INIT_RETRIES = 3

_LIFECYCLE_KINDS = (
    ClientEventKind.QR,
    ClientEventKind.READY,
    ClientEventKind.AUTHENTICATED,
    ClientEventKind.AUTH_FAILURE,
    ClientEventKind.DISCONNECTED,
)


class InboundRelay(Protocol):
    async def relay(self, uid: str, client: MessagingClient, message: InboundMessage) -> None: ...


Handler = Callable[[Session, ClientEvent], Awaitable[None]]


class SessionLifecycle:
    """Creates, tracks and tears down per-uid client sessions."""

    def __init__(
        self,
        *,
        client_factory: ClientFactory,
        token_store: TokenStore,
        sessions_dir: Path,
        relay: InboundRelay | None = None,
        store: SessionStore | None = None,
        locks: PerKeyLock | None = None,
        qr_timeout_s: float = DEFAULT_QR_TIMEOUT_S,
        init_retries: int = DEFAULT_INIT_RETRIES,
    ) -> None:
        self.client_factory = client_factory
        self.sessions_dir = sessions_dir
        self.store = store or SessionStore()
        self.locks = locks or PerKeyLock()
        self.qr_timeout_s = qr_timeout_s
        self._tokens = token_store
        self._relay = relay
        # One first attempt plus init_retries retries.
        self._max_init_attempts = max(0, init_retries) + 1
        self._handlers = self._build_handlers()

    def _build_handlers(self) -> dict[tuple[SessionState, ClientEventKind], Handler]:
        S, K = SessionState, ClientEventKind
        handlers: dict[tuple[SessionState, ClientEventKind], Handler] = {
            (S.INITIALIZING, K.QR): self._on_qr,
            (S.AWAITING_QR, K.QR): self._on_repeated_qr,
        }
        for state in (S.INITIALIZING, S.AWAITING_QR, S.AUTHENTICATED):
            handlers[(state, K.READY)] = self._on_authenticated
            handlers[(state, K.AUTHENTICATED)] = self._on_authenticated
            handlers[(state, K.AUTH_FAILURE)] = self._on_auth_failure
            handlers[(state, K.DISCONNECTED)] = self._on_disconnected
        return handlers

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def create(self, uid: str, token: str | None = None) -> str | None:
        """Open a session for uid and wait for its QR.

        An existing session for uid is torn down first.

        Args:
            uid: Tenant id.
            token: Credential to associate with uid once a QR is issued.

        Returns:
            QR image as a data URL, or None if the client authenticated from
            persisted credentials without asking for a QR.

        Raises:
            ValidationError: If uid is malformed.
            SessionInitError: If the client could not be started, the QR
                deadline passed, or authentication failed before a QR.
        """
        uid = validate_uid(uid)
        waiter: asyncio.Future[str | None] = asyncio.get_running_loop().create_future()

        async with self.locks.hold(uid):
            existing = self.store.get(uid)
            if existing is not None:
                logger.info(
                    "replacing existing session",
                    extra={"extra_fields": uid_context(uid, state=existing.state.value)},
                )
                await self._teardown_locked(
                    existing, force=True, final_state=SessionState.DISCONNECTED, reason="replaced"
                )
            await self._open(uid, token=token, waiter=waiter)

        return await waiter

    def get_state(self, uid: str) -> StatusReport:
        """Report whether uid is authenticated, only has credentials on disk, or is unknown."""
        uid = validate_uid(uid)
        session = self.store.get(uid)
        if (
            session is not None
            and session.state == SessionState.AUTHENTICATED
            and session.client.is_logged_in()
        ):
            return StatusReport.AUTHENTICATED
        if has_credentials(self.sessions_dir, uid):
            return StatusReport.UNAUTHENTICATED
        return StatusReport.NOT_FOUND

    def live_session(self, uid: str) -> Session | None:
        """Return the session for uid if it is authenticated."""
        session = self.store.get(uid)
        if session is None or session.state != SessionState.AUTHENTICATED:
            return None
        return session

    async def disconnect(self, uid: str, force: bool = False) -> DisconnectResult:
        """Tear down the session of uid.

        Idempotent: a uid without a session yields a "not found" result.

        Args:
            uid: Tenant id.
            force: Skip the remote logout and only destroy the handle.
        """
        uid = validate_uid(uid)
        async with self.locks.hold(uid):
            session = self.store.get(uid)
            if session is None:
                logger.info("disconnect: session not found", extra={"extra_fields": uid_context(uid)})
                return DisconnectResult(success=False, message="session not found")
            return await self._teardown_locked(
                session, force=force, final_state=SessionState.DISCONNECTED, reason="requested"
            )

    async def restore_sessions(self) -> list[str]:
        """Open a client for every uid with credential material on disk.

        Returns:
            uids whose client was started.
        """
        restored: list[str] = []
        for uid in persisted_uids(self.sessions_dir):
            async with self.locks.hold(uid):
                if self.store.has(uid):
                    continue
                try:
                    await self._open(uid, token=None, waiter=None)
                except SessionInitError:
                    logger.warning(
                        "session restore failed", extra={"extra_fields": uid_context(uid)}
                    )
                    continue
            restored.append(uid)

        logger.info("sessions restored", extra={"extra_fields": {"count": len(restored)}})
        return restored

    async def close_all(self) -> None:
        """Stop every client, keeping credential material for the next start."""
        for uid in self.store.uids():
            async with self.locks.hold(uid):
                session = self.store.get(uid)
                if session is None:
                    continue
                session.client.unsubscribe_all()
                await self._cancel_tasks(session)
                session.fail_waiter(SessionInitError("gateway shutting down"))
                try:
                    await session.client.stop()
                except Exception:
                    logger.exception(
                        "client stop failed on shutdown", extra={"extra_fields": uid_context(uid)}
                    )
                session.state = SessionState.DISCONNECTED
                self.store.remove(uid)

    # ------------------------------------------------------------------
    # Opening sessions
    # ------------------------------------------------------------------

    async def _open(
        self,
        uid: str,
        *,
        token: str | None,
        waiter: asyncio.Future[str | None] | None,
    ) -> Session:
        """Register a new session and start its client. Caller holds the uid lock."""
        last_error: TransientInitError | None = None

        for attempt in range(1, self._max_init_attempts + 1):
            session: Session | None = None
            try:
                client = self.client_factory(
                    ClientOptions(uid=uid, data_dir=session_dir(self.sessions_dir, uid))
                )
                session = Session(uid=uid, client=client, token=token, qr_waiter=waiter)
                self._attach(session)
                self.store.put(uid, session)
                self._arm_deadline(session)
                await client.start()
            except Exception as exc:
                last_error = TransientInitError(f"client start failed: {type(exc).__name__}")
                last_error.__cause__ = exc
                logger.warning(
                    "client start failed",
                    extra={
                        "extra_fields": uid_context(
                            uid, attempt=attempt, error_type=type(exc).__name__
                        )
                    },
                )
                if session is not None:
                    await self._discard(session)
                continue

            logger.info(
                "session initializing", extra={"extra_fields": uid_context(uid, attempt=attempt)}
            )
            return session

        raise SessionInitError(
            f"client failed to start after {self._max_init_attempts} attempts"
        ) from last_error

    def _attach(self, session: Session) -> None:
        for kind in _LIFECYCLE_KINDS:
            session.client.subscribe(kind, session.events.put_nowait)
        session.client.subscribe(ClientEventKind.MESSAGE, lambda event: _enqueue_message(session, event))
        session.tasks["pump"] = self._spawn(self._pump(session), name=f"session-pump-{id(session)}")
        session.tasks["relay"] = self._spawn(
            self._relay_loop(session), name=f"session-relay-{id(session)}"
        )

    async def _discard(self, session: Session) -> None:
        """Drop a session whose client never started."""
        session.client.unsubscribe_all()
        self._clear_deadline(session)
        await self._cancel_tasks(session)
        with contextlib.suppress(Exception):
            await session.client.stop()
        session.state = SessionState.FAILED
        if self.store.get(session.uid) is session:
            self.store.remove(session.uid)

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------

    async def _pump(self, session: Session) -> None:
        while session.is_live:
            event = await session.events.get()
            handler = self._handlers.get((session.state, event.kind))
            if handler is None:
                logger.debug(
                    "event ignored",
                    extra={
                        "extra_fields": uid_context(
                            session.uid, state=session.state.value, event=event.kind.value
                        )
                    },
                )
                continue
            await handler(session, event)

    async def _relay_loop(self, session: Session) -> None:
        while True:
            message = await session.inbox.get()
            if self._relay is None:
                continue
            try:
                with correlation_scope(f"msg-{hash_identifier(message.id)}"):
                    await self._relay.relay(session.uid, session.client, message)
            except Exception:
                logger.exception(
                    "inbound message processing failed",
                    extra={"extra_fields": uid_context(session.uid)},
                )

    async def _on_qr(self, session: Session, event: ClientEvent) -> None:
        assert isinstance(event, QrEvent)
        session.state = SessionState.AWAITING_QR
        # The deadline now runs from QR issuance.
        self._arm_deadline(session)

        try:
            image = encode_qr(event.payload)
        except Exception as exc:
            logger.exception("qr encoding failed", extra={"extra_fields": uid_context(session.uid)})
            session.fail_waiter(SessionInitError(f"qr encoding failed: {type(exc).__name__}"))
            await self._teardown_if_current(
                session, final_state=SessionState.FAILED, reason="qr_encoding"
            )
            return

        if session.token:
            await self._save_token(
                session.uid, TokenRecord(uid=session.uid, token=session.token, authenticated=False)
            )

        if not session.resolve_waiter(image):
            logger.warning(
                "qr requested with nobody waiting, session expires at deadline",
                extra={"extra_fields": uid_context(session.uid)},
            )
            return
        logger.info("qr issued", extra={"extra_fields": uid_context(session.uid)})

    async def _on_repeated_qr(self, session: Session, event: ClientEvent) -> None:
        logger.debug("repeated qr ignored", extra={"extra_fields": uid_context(session.uid)})

    async def _on_authenticated(self, session: Session, event: ClientEvent) -> None:
        first = session.state != SessionState.AUTHENTICATED
        session.state = SessionState.AUTHENTICATED
        self._clear_deadline(session)
        if first:
            logger.info("session authenticated", extra={"extra_fields": uid_context(session.uid)})
            await self._mark_token_authenticated(session)
        # Token is stored before create() returns to its caller.
        session.resolve_waiter(None)

    async def _mark_token_authenticated(self, session: Session) -> None:
        if session.token:
            record = TokenRecord(uid=session.uid, token=session.token, authenticated=True)
        else:
            existing = await self._load_token(session.uid)
            if existing is None:
                return
            record = replace(existing, authenticated=True, updated_at=utc_now())
        await self._save_token(session.uid, record)

    async def _on_auth_failure(self, session: Session, event: ClientEvent) -> None:
        logger.warning("authentication failed", extra={"extra_fields": uid_context(session.uid)})
        session.fail_waiter(SessionInitError("authentication failed"))
        await self._teardown_if_current(
            session, final_state=SessionState.FAILED, reason="auth_failure"
        )

    async def _on_disconnected(self, session: Session, event: ClientEvent) -> None:
        logger.info("client disconnected", extra={"extra_fields": uid_context(session.uid)})
        session.fail_waiter(SessionInitError("client disconnected before a QR was issued"))
        await self._teardown_if_current(
            session, final_state=SessionState.DISCONNECTED, reason="remote_disconnect"
        )

    # ------------------------------------------------------------------
    # QR deadline
    # ------------------------------------------------------------------

    def _arm_deadline(self, session: Session) -> None:
        self._clear_deadline(session)
        session.qr_deadline = utc_now() + timedelta(seconds=self.qr_timeout_s)
        session.tasks["deadline"] = self._spawn(
            self._expire(session), name=f"session-deadline-{id(session)}"
        )

    def _clear_deadline(self, session: Session) -> None:
        session.qr_deadline = None
        task = session.tasks.pop("deadline", None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _expire(self, session: Session) -> None:
        await asyncio.sleep(self.qr_timeout_s)
        logger.warning("qr deadline expired", extra={"extra_fields": uid_context(session.uid)})
        session.fail_waiter(SessionInitError("no QR issued before the deadline"))
        await self._teardown_if_current(
            session, final_state=SessionState.DISCONNECTED, reason="qr_timeout"
        )

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def _teardown_if_current(
        self, session: Session, *, final_state: SessionState, reason: str
    ) -> None:
        async with self.locks.hold(session.uid):
            if self.store.get(session.uid) is not session:
                return
            await self._teardown_locked(session, force=True, final_state=final_state, reason=reason)

    async def _teardown_locked(
        self,
        session: Session,
        *,
        force: bool,
        final_state: SessionState,
        reason: str,
    ) -> DisconnectResult:
        """Best-effort teardown. Caller holds the uid lock.

        Step failures are collected, never re-raised; the session always
        leaves the store.
        """
        uid = session.uid
        errors: list[TeardownError] = []

        session.client.unsubscribe_all()
        self._clear_deadline(session)
        session.fail_waiter(SessionInitError("session closed before a QR was issued"))
        try:
            await self._cancel_tasks(session)

            if not force:
                try:
                    await session.client.logout()
                except Exception as exc:
                    errors.append(TeardownError("logout", exc))
            try:
                await session.client.stop()
            except Exception as exc:
                errors.append(TeardownError("destroy", exc))
        finally:
            session.state = final_state
            if self.store.get(uid) is session:
                self.store.remove(uid)

        try:
            await remove_credentials(self.sessions_dir, uid)
        except OSError as exc:
            errors.append(TeardownError("credential cleanup", exc))
        try:
            await asyncio.to_thread(self._tokens.delete, uid)
        except Exception as exc:
            errors.append(TeardownError("deregistration", exc))

        if errors:
            logger.warning(
                "session torn down with errors",
                extra={
                    "extra_fields": uid_context(
                        uid, reason=reason, failed_steps=",".join(e.step for e in errors)
                    )
                },
            )
            message = "disconnected with errors: " + "; ".join(str(e) for e in errors)
        else:
            logger.info("session torn down", extra={"extra_fields": uid_context(uid, reason=reason)})
            message = "disconnected"
        return DisconnectResult(success=True, message=message)

    async def _cancel_tasks(self, session: Session) -> None:
        current = asyncio.current_task()
        tasks = [t for t in session.tasks.values() if t is not current]
        session.tasks.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, None], *, name: str) -> asyncio.Task[None]:
        task = asyncio.create_task(coro, name=name)
        task.add_done_callback(report_task_failure)
        return task

    async def _load_token(self, uid: str) -> TokenRecord | None:
        try:
            return await asyncio.to_thread(self._tokens.get, uid)
        except Exception:
            logger.exception("token lookup failed", extra={"extra_fields": uid_context(uid)})
            return None

    async def _save_token(self, uid: str, record: TokenRecord) -> None:
        try:
            await asyncio.to_thread(self._tokens.put, uid, record)
        except Exception:
            logger.exception("token store write failed", extra={"extra_fields": uid_context(uid)})


def _enqueue_message(session: Session, event: ClientEvent) -> None:
    if isinstance(event, MessageEvent):
        session.inbox.put_nowait(event.message)
