"""Token store - uid to credential association.

Backend selection via TOKEN_STORE_BACKEND:
- "file" (default): one JSON file per uid under SESSIONS_DIR/.tokens
- "memory": process-local dict, lost on restart (dev/tests)
- "postgres": gateway_sessions table

Quota selection via QUOTA_BACKEND:
- "allow_all" (default): every uid may send
- "postgres": uid needs an active row in the licenses table
"""

from __future__ import annotations

import json
import os
import re
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Protocol

from .db import txn
from .repositories.licenses_repository import has_active_license
from .repositories.sessions_repository import (
    delete_registration,
    get_registration,
    upsert_registration,
)
from .time import utc_now


@dataclass(frozen=True)
class TokenRecord:
    """Credential associated with a uid."""

    uid: str
    token: str
    authenticated: bool = False
    updated_at: datetime = field(default_factory=utc_now)


class TokenStore(Protocol):
    """Repository interface for token records."""

    def get(self, uid: str) -> TokenRecord | None: ...

    def put(self, uid: str, record: TokenRecord) -> None: ...

    def delete(self, uid: str) -> None: ...


class MemoryTokenStore:
    """In-process token store."""

    def __init__(self) -> None:
        self._records: dict[str, TokenRecord] = {}
        self._lock = threading.Lock()

    def get(self, uid: str) -> TokenRecord | None:
        with self._lock:
            return self._records.get(uid)

    def put(self, uid: str, record: TokenRecord) -> None:
        with self._lock:
            self._records[uid] = record

    def delete(self, uid: str) -> None:
        with self._lock:
            self._records.pop(uid, None)


_FILE_UID = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


class FileTokenStore:
    """Token store keeping one JSON file per uid.

    Lives next to the credential directories so a restored session finds
    its token again after a restart.
    """

    def __init__(self, directory: Path) -> None:
        self._dir = directory
        self._lock = threading.Lock()

    def _path(self, uid: str) -> Path | None:
        if not _FILE_UID.match(uid):
            return None
        return self._dir / f"{uid}.json"

    def get(self, uid: str) -> TokenRecord | None:
        path = self._path(uid)
        if path is None:
            return None
        with self._lock:
            try:
                raw = path.read_text(encoding="utf-8")
            except FileNotFoundError:
                return None
        data = json.loads(raw)
        return TokenRecord(
            uid=uid,
            token=data["token"],
            authenticated=bool(data["authenticated"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )

    def put(self, uid: str, record: TokenRecord) -> None:
        path = self._path(uid)
        if path is None:
            raise ValueError("uid is not usable as a file name")
        payload = json.dumps(
            {
                "token": record.token,
                "authenticated": record.authenticated,
                "updated_at": record.updated_at.isoformat(),
            }
        )
        with self._lock:
            self._dir.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".json.tmp")
            tmp.write_text(payload, encoding="utf-8")
            os.replace(tmp, path)

    def delete(self, uid: str) -> None:
        path = self._path(uid)
        if path is None:
            return
        with self._lock:
            path.unlink(missing_ok=True)


class PostgresTokenStore:
    """Token store backed by the gateway_sessions table."""

    def get(self, uid: str) -> TokenRecord | None:
        with txn() as cur:
            row = get_registration(cur, uid=uid)
        if row is None:
            return None
        return TokenRecord(
            uid=row["uid"],
            token=row["token"],
            authenticated=bool(row["authenticated"]),
            updated_at=row["updated_at"],
        )

    def put(self, uid: str, record: TokenRecord) -> None:
        with txn() as cur:
            upsert_registration(
                cur,
                uid=uid,
                token=record.token,
                authenticated=record.authenticated,
                updated_at=record.updated_at,
            )

    def delete(self, uid: str) -> None:
        with txn() as cur:
            delete_registration(cur, uid=uid)


class QuotaGate(Protocol):
    """External quota/licensing collaborator."""

    def allows(self, uid: str) -> bool: ...


class AllowAllQuota:
    def allows(self, uid: str) -> bool:
        return True


class PostgresQuota:
    def allows(self, uid: str) -> bool:
        with txn() as cur:
            return has_active_license(cur, uid=uid)


def create_token_store(backend: str, *, directory: Path | None = None) -> TokenStore:
    """Build the token store for a backend name.

    Args:
        backend: "file", "memory" or "postgres".
        directory: Where the "file" backend keeps its records.

    Raises:
        ValueError: If backend is unknown, or "file" is missing its directory.
    """
    if backend == "file":
        if directory is None:
            raise ValueError("file token store needs a directory")
        return FileTokenStore(directory)
    if backend == "memory":
        return MemoryTokenStore()
    if backend == "postgres":
        return PostgresTokenStore()
    raise ValueError(f"Unknown TOKEN_STORE_BACKEND: {backend}")


def create_quota_gate(backend: str) -> QuotaGate:
    """Build the quota gate for a backend name.

    Raises:
        ValueError: If backend is unknown.
    """
    if backend == "allow_all":
        return AllowAllQuota()
    if backend == "postgres":
        return PostgresQuota()
    raise ValueError(f"Unknown QUOTA_BACKEND: {backend}")
