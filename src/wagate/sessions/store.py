"""In-memory session registry, indexed by uid."""

from __future__ import annotations

from typing import Iterator

from .models import Session


class SessionConflictError(Exception):
    """Raised when a second session is registered for a uid."""


class SessionStore:
    """uid -> Session mapping.

    Holds at most one entry per uid. Mutations are expected to happen while
    the caller holds that uid's PerKeyLock.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}

    def get(self, uid: str) -> Session | None:
        return self._sessions.get(uid)

    def has(self, uid: str) -> bool:
        return uid in self._sessions

    def put(self, uid: str, session: Session) -> None:
        """Register a session.

        Raises:
            SessionConflictError: If another session is already registered for uid.
        """
        current = self._sessions.get(uid)
        if current is not None and current is not session:
            raise SessionConflictError("a session is already registered for this uid")
        self._sessions[uid] = session

    def remove(self, uid: str) -> Session | None:
        """Remove and return the session for uid. Missing uid is a no-op."""
        return self._sessions.pop(uid, None)

    def uids(self) -> list[str]:
        return list(self._sessions)

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[Session]:
        return iter(list(self._sessions.values()))
