"""Shared virtual-user helpers for pauses and graceful draining."""

from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING

from loadrace._internal.logging import get_logger

if TYPE_CHECKING:
    from loadrace.engine.user import VirtualUser

logger = get_logger("engine.user_utils")


async def pause(seconds: float, wake: asyncio.Event | None = None) -> None:
    """Sleep for *seconds*, returning early once *wake* is set.

    Args:
        seconds: Pause length. Non-positive values return immediately.
        wake: Optional event that cuts the pause short.
    """
    if seconds <= 0:
        return
    if wake is None:
        await asyncio.sleep(seconds)
        return
    with contextlib.suppress(TimeoutError):
        await asyncio.wait_for(wake.wait(), timeout=seconds)


async def drain_users(users: list[VirtualUser], timeout: float) -> None:
    """Retire every user and wait for them to finish.

    Users finish their in-flight request (bounded by the request timeout)
    before exiting, so *timeout* is only a backstop for a transport that
    ignores its own timeout. Tasks still running after it are cancelled
    and logged.

    Args:
        users: Users to drain. Cleared on return.
        timeout: Seconds to wait before cancelling stragglers.
    """
    for user in users:
        user.retire()

    tasks = [user.task for user in users if user.task is not None]
    if tasks:
        _done, pending = await asyncio.wait(tasks, timeout=timeout)

        for task in pending:
            logger.warning("Cancelling %s after %.1fs drain timeout", task.get_name(), timeout)
            task.cancel()

        if pending:
            await asyncio.wait(pending, timeout=2.0)

        for task in tasks:
            if task.done() and not task.cancelled() and task.exception() is not None:
                logger.error("%s crashed", task.get_name(), exc_info=task.exception())

    users.clear()
    logger.debug("All virtual users drained")
