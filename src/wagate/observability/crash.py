"""Process crash policy for the event loop.

Cleanup of on-disk credential material races with the automation client
releasing its files, so resource-busy errors are expected and tolerated.
Any other error that reaches the loop is a programming error and stops the
process.
"""

from __future__ import annotations

import asyncio
import errno
import os
import signal
from typing import Any, Callable

from .logging import get_logger

logger = get_logger(__name__)

_BUSY_ERRNOS = frozenset(
    {errno.EBUSY, errno.EACCES, errno.EPERM, errno.ENOTEMPTY, errno.ETXTBSY}
)
_BUSY_MARKERS = ("ebusy", "resource busy", "locked")


def _terminate() -> None:
    os.kill(os.getpid(), signal.SIGTERM)


def is_cleanup_busy_error(exc: BaseException | None) -> bool:
    """Return True if exc is a resource-busy/locked condition."""
    if exc is None:
        return False
    if isinstance(exc, OSError) and exc.errno in _BUSY_ERRNOS:
        return True
    message = str(exc).lower()
    return any(marker in message for marker in _BUSY_MARKERS)


def install_crash_handler(
    loop: asyncio.AbstractEventLoop,
    *,
    terminate: Callable[[], None] = _terminate,
) -> None:
    """Install the crash policy as the loop's exception handler.

    Args:
        loop: Running event loop (usually the ASGI server's).
        terminate: Called for fatal errors. Defaults to SIGTERM to self so the
            server shuts down through its normal signal path.
    """

    def _handler(loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
        exc = context.get("exception")
        if is_cleanup_busy_error(exc):
            logger.warning(
                "resource busy during cleanup, ignored",
                extra={
                    "extra_fields": {
                        "error_type": type(exc).__name__,
                        "context_message": str(context.get("message", "")),
                    }
                },
            )
            return

        logger.critical(
            "uncaught error in event loop, terminating",
            exc_info=(type(exc), exc, exc.__traceback__) if exc is not None else None,
            extra={"extra_fields": {"context_message": str(context.get("message", ""))}},
        )
        terminate()

    loop.set_exception_handler(_handler)


def report_task_failure(task: asyncio.Task[Any]) -> None:
    """Done-callback forwarding an unexpected task exception to the loop handler."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is None:
        return
    task.get_loop().call_exception_handler(
        {"message": f"background task {task.get_name()} failed", "exception": exc, "task": task}
    )
