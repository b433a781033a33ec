"""Cooperative cancellation for relays.

A relay's cancellation token is a plain ``asyncio.Event``. Every suspension
point is raced against it so cancelling works even while the upstream is
silent.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable
from typing import TypeVar

from app.errors import RelayCancelled

T = TypeVar("T")


async def race_cancel(aw: Awaitable[T], cancel: asyncio.Event) -> T:
    """Await *aw* unless *cancel* fires first.

    Raises ``RelayCancelled`` when the token wins; a tie goes to the token.
    The losing awaitable is cancelled and has stopped running by the time
    this returns, also when the caller itself is cancelled.
    """
    task = asyncio.ensure_future(aw)
    waiter = asyncio.ensure_future(cancel.wait())
    try:
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        waiter.cancel()
        await _stop(task)
        raise
    waiter.cancel()

    if waiter in done or cancel.is_set():
        if await _stop(task):
            raise asyncio.CancelledError()
        raise RelayCancelled()
    return task.result()


async def _stop(task: asyncio.Future) -> bool:
    """Cancel *task* and wait until it is done.

    Returns True if the caller was cancelled while waiting.
    """
    task.cancel()
    interrupted = False
    while not task.done():
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            interrupted = True
    if not task.cancelled():
        task.exception()  # mark retrieved
    return interrupted


async def next_or_none(iterator: AsyncIterator[T]) -> T | None:
    """``anext`` that signals exhaustion with None instead of an exception."""
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return None
