"""On-disk credential material, one directory per uid under SESSIONS_DIR."""

from __future__ import annotations

import asyncio
import re
import shutil
from pathlib import Path

from wagate.errors import ValidationError

_UID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


def validate_uid(uid: str | None) -> str:
    """Return uid if it is usable as a tenant id (and directory name).

    Raises:
        ValidationError: If uid is missing or malformed.
    """
    if not uid or not isinstance(uid, str):
        raise ValidationError("uid is required")
    uid = uid.strip()
    if not _UID_PATTERN.match(uid):
        raise ValidationError("uid must be 1-64 characters of letters, digits, '_' or '-'")
    return uid


def session_dir(base: Path, uid: str) -> Path:
    return base / validate_uid(uid)


def has_credentials(base: Path, uid: str) -> bool:
    return session_dir(base, uid).is_dir()


def persisted_uids(base: Path) -> list[str]:
    """uids with credential material on disk, sorted for stable restore order."""
    if not base.is_dir():
        return []
    return sorted(
        entry.name
        for entry in base.iterdir()
        if entry.is_dir() and _UID_PATTERN.match(entry.name)
    )


async def remove_credentials(base: Path, uid: str) -> bool:
    """Delete the credential directory of uid.

    Returns:
        True if a directory was removed, False if there was none.

    Raises:
        OSError: If removal fails (e.g. files still held by the client).
    """
    path = session_dir(base, uid)
    if not path.exists():
        return False
    await asyncio.to_thread(shutil.rmtree, path)
    return True
