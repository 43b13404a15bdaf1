"""Redaction helpers for safe logging.

uids and contact ids are phone numbers in practice, so they are logged only
as short hashes (see `hash_identifier`). Free text goes through
`redact_string`, which masks session tokens, inline base64 payloads (QR
images, media), chat ids, e-mail addresses and phone numbers.
"""

import hashlib
import re
from enum import Enum
from typing import Any, Mapping

_REDACTED = "[REDACTED]"

# Order matters: a chat id also looks like an e-mail address.
_PATTERNS = (
    re.compile(r"\beyJ[\w-]+\.[\w-]+\.[\w-]*"),
    re.compile(r"data:[\w.+/-]+;base64,[A-Za-z0-9+/=]+"),
    re.compile(r"\b\d[\d-]{5,}@[a-z]+(?:\.[a-z]+)+\b"),
    re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}"),
    re.compile(r"\+?\d[\d\s\-()]{8,}\d"),
)


def hash_identifier(value: str) -> str:
    """Non-reversible short hash (first 12 hex chars of sha256)."""
    return hashlib.sha256(value.encode()).hexdigest()[:12]


def redact_string(value: str) -> str:
    for pattern in _PATTERNS:
        value = pattern.sub(_REDACTED, value)
    return value


def redact_value(value: Any) -> str:
    """String form of value that is safe to log.

    Scalars are kept, strings are pattern-redacted, containers are reduced
    to their shape and anything else to its type name.
    """
    if isinstance(value, Enum):
        value = value.value
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return redact_string(value)
    if isinstance(value, (bytes, bytearray)):
        return f"bytes(len={len(value)})"
    if isinstance(value, Mapping):
        return f"dict(keys={sorted(str(key) for key in value)})"
    if isinstance(value, (list, tuple, set, frozenset)):
        return f"list(len={len(value)})"
    return f"<{type(value).__name__}>"


def safe_log_context(**kwargs: Any) -> dict[str, str]:
    return {key: redact_value(value) for key, value in kwargs.items()}


def uid_context(uid: str, **kwargs: Any) -> dict[str, str]:
    """safe_log_context() with the tenant uid replaced by its hash."""
    return safe_log_context(uid_hash=hash_identifier(uid), **kwargs)
