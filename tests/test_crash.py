"""Tests for the event-loop crash policy."""

from __future__ import annotations

import asyncio
import errno
from unittest.mock import MagicMock

import pytest

from wagate.observability.crash import (
    install_crash_handler,
    is_cleanup_busy_error,
    report_task_failure,
)


class TestIsCleanupBusyError:
    @pytest.mark.parametrize("code", [errno.EBUSY, errno.EACCES, errno.EPERM, errno.ENOTEMPTY])
    def test_busy_errnos(self, code):
        assert is_cleanup_busy_error(OSError(code, "cleanup"))

    def test_locked_message(self):
        assert is_cleanup_busy_error(RuntimeError("EBUSY: resource busy or locked, unlink 'Cookies'"))

    def test_other_errors(self):
        assert not is_cleanup_busy_error(KeyError("uid"))
        assert not is_cleanup_busy_error(OSError(errno.ENOENT, "missing"))
        assert not is_cleanup_busy_error(None)


class TestCrashHandler:
    @pytest.mark.asyncio
    async def test_busy_error_swallowed(self):
        loop = asyncio.get_running_loop()
        terminate = MagicMock()
        previous = loop.get_exception_handler()
        install_crash_handler(loop, terminate=terminate)
        try:
            loop.call_exception_handler(
                {"message": "cleanup", "exception": OSError(errno.EBUSY, "busy")}
            )
        finally:
            loop.set_exception_handler(previous)

        terminate.assert_not_called()

    @pytest.mark.asyncio
    async def test_other_error_terminates(self):
        loop = asyncio.get_running_loop()
        terminate = MagicMock()
        previous = loop.get_exception_handler()
        install_crash_handler(loop, terminate=terminate)
        try:
            loop.call_exception_handler({"message": "boom", "exception": ValueError("bug")})
        finally:
            loop.set_exception_handler(previous)

        terminate.assert_called_once()

    @pytest.mark.asyncio
    async def test_task_failure_forwarded(self):
        loop = asyncio.get_running_loop()
        seen: list[BaseException] = []
        previous = loop.get_exception_handler()
        loop.set_exception_handler(lambda _loop, ctx: seen.append(ctx["exception"]))

        async def fail():
            raise ValueError("pump bug")

        try:
            task = loop.create_task(fail())
            task.add_done_callback(report_task_failure)
            await asyncio.wait([task])
            await asyncio.sleep(0)
        finally:
            loop.set_exception_handler(previous)

        assert len(seen) == 1
        assert isinstance(seen[0], ValueError)

    @pytest.mark.asyncio
    async def test_cancelled_task_not_reported(self):
        loop = asyncio.get_running_loop()
        handler = MagicMock()
        previous = loop.get_exception_handler()
        loop.set_exception_handler(handler)

        try:
            task = loop.create_task(asyncio.sleep(10))
            task.add_done_callback(report_task_failure)
            task.cancel()
            await asyncio.wait([task])
            await asyncio.sleep(0)
        finally:
            loop.set_exception_handler(previous)

        handler.assert_not_called()
