"""Correlation ids tying log lines to the request or message that caused them."""

import re
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

CORRELATION_ID_HEADER = "X-Correlation-ID"

# Inherited by tasks created while bound: session pumps spawned by /register
# log under the id of the request that opened them.
_current: ContextVar[str] = ContextVar("wagate_correlation_id", default="")

_ACCEPTED = re.compile(r"^[A-Za-z0-9._:-]{1,64}$")


def get_correlation_id() -> str:
    return _current.get()


def accept_correlation_id(header_value: str | None) -> str:
    """Reuse a caller-supplied id if it is well formed, otherwise mint one."""
    candidate = (header_value or "").strip()
    if _ACCEPTED.match(candidate):
        return candidate
    return uuid.uuid4().hex


@contextmanager
def correlation_scope(cid: str) -> Iterator[str]:
    """Bind cid for the duration of the block."""
    token = _current.set(cid)
    try:
        yield cid
    finally:
        _current.reset(token)
