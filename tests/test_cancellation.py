"""Tests for racing awaitables against a cancellation token."""

import asyncio

import pytest

from app.errors import RelayCancelled
from app.utils.cancellation import next_or_none, race_cancel


async def _sleep_forever(cleaned: list):
    try:
        await asyncio.sleep(3600)
    finally:
        # Cleanup that needs a few loop turns, like closing a connection
        for _ in range(3):
            await asyncio.sleep(0)
        cleaned.append(True)


@pytest.mark.asyncio
async def test_returns_result():
    assert await race_cancel(asyncio.sleep(0, result="ok"), asyncio.Event()) == "ok"


@pytest.mark.asyncio
async def test_token_wins_and_stops_awaitable():
    token = asyncio.Event()
    cleaned: list = []
    asyncio.get_running_loop().call_later(0.01, token.set)

    with pytest.raises(RelayCancelled):
        await asyncio.wait_for(race_cancel(_sleep_forever(cleaned), token), timeout=5)
    assert cleaned == [True]


@pytest.mark.asyncio
async def test_token_already_set():
    token = asyncio.Event()
    token.set()
    with pytest.raises(RelayCancelled):
        await race_cancel(asyncio.sleep(0, result="late"), token)


@pytest.mark.asyncio
async def test_caller_cancelled_waits_for_awaitable_cleanup():
    cleaned: list = []
    task = asyncio.create_task(race_cancel(_sleep_forever(cleaned), asyncio.Event()))
    await asyncio.sleep(0.01)

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert cleaned == [True]


@pytest.mark.asyncio
async def test_generator_closes_after_caller_is_cancelled():
    async def stalled():
        yield 1
        await asyncio.sleep(3600)
        yield 2

    gen = stalled()
    token = asyncio.Event()

    async def consume():
        assert await race_cancel(next_or_none(gen), token) == 1
        await race_cancel(next_or_none(gen), token)

    task = asyncio.create_task(consume())
    await asyncio.sleep(0.01)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    # The pending __anext__ has finished, so the generator is not running
    await gen.aclose()


@pytest.mark.asyncio
async def test_next_or_none_on_exhausted_iterator():
    async def one():
        yield "only"

    gen = one()
    assert await next_or_none(gen) == "only"
    assert await next_or_none(gen) is None
