"""Helpers for fire-and-forget tasks whose failures must still be logged."""

from __future__ import annotations

import asyncio
import contextlib
from typing import Any, Coroutine, Optional, Set

from .logging_utils import LoggerLike, ensure_structured_logger


def create_logged_task(
    coro: Coroutine[Any, Any, Any],
    *,
    logger: LoggerLike = None,
    context: Optional[str] = None,
    pending: Optional[Set["asyncio.Task[Any]"]] = None,
) -> "asyncio.Task[Any]":
    """Schedule ``coro`` and log its exception instead of losing it.

    When ``pending`` is given the task is tracked there until it finishes.
    """
    task_logger = ensure_structured_logger(logger, fallback_name="asyncio")
    task = asyncio.get_running_loop().create_task(coro)
    if context:
        task.set_name(context)

    def _done(done_task: "asyncio.Task[Any]") -> None:
        if pending is not None:
            pending.discard(done_task)
        if done_task.cancelled():
            return
        exc = done_task.exception()
        if exc is not None:
            task_logger.error(
                "Unhandled exception in %s: %s",
                context or done_task.get_name(),
                exc,
                exc_info=exc,
            )

    if pending is not None:
        pending.add(task)
    task.add_done_callback(_done)
    return task


async def drain_tasks(tasks: Set["asyncio.Task[Any]"], *, cancel: bool = False) -> None:
    """Wait for (or cancel) every task in ``tasks``."""
    current = list(tasks)
    if not current:
        return
    if cancel:
        for task in current:
            task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await asyncio.gather(*current, return_exceptions=True)


__all__ = ["create_logged_task", "drain_tasks"]
