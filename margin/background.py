"""Supervised fire-and-forget tasks.

Tasks are kept referenced until they finish and their exceptions are logged,
so a background sync that blows up shows in the logs instead of vanishing.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

logger = logging.getLogger(__name__)

_tasks: Dict[str, asyncio.Task[Any]] = {}


def _finished(name: str, t: asyncio.Task[Any]) -> None:
    if _tasks.get(name) is t:
        del _tasks[name]
    if t.cancelled():
        logger.debug("Background task %s cancelled", name)
        return
    exc = t.exception()
    if exc is not None:
        logger.error("Background task %s failed", name, exc_info=exc)


def is_running(name: str) -> bool:
    t = _tasks.get(name)
    return t is not None and not t.done()


def spawn(coro_factory: Callable[[], Awaitable[Any]], *, name: str) -> Optional[asyncio.Task[Any]]:
    """Start `coro_factory()` as a named task unless one with that name is still running."""
    if is_running(name):
        logger.debug("Background task %s already running", name)
        return None
    task = asyncio.create_task(coro_factory(), name=name)
    _tasks[name] = task
    task.add_done_callback(lambda t: _finished(name, t))
    return task


async def cancel_all() -> None:
    tasks = list(_tasks.values())
    for t in tasks:
        t.cancel()
    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)
    _tasks.clear()


__all__ = ["spawn", "is_running", "cancel_all"]
