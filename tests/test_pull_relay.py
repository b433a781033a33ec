"""Tests for the pull relay, driving the fake CLI as a real child process."""

import asyncio
import logging
from unittest.mock import AsyncMock

import pytest

from app.adapters.ollama import OllamaAdapter
from app.errors import AlreadyInProgress, InvalidRequest, UpstreamUnavailable
from app.schemas.models import CompleteEvent, ErrorEvent, ProgressEvent, RelayOutcome
from app.services.pull_relay import COMPLETE_MESSAGE, FAILED_MESSAGE, PullRelay


async def collect(relay: PullRelay) -> list:
    return await asyncio.wait_for(_drain(relay), timeout=30)


async def _drain(relay: PullRelay) -> list:
    return [event async for event in relay.events()]


@pytest.mark.asyncio
async def test_successful_pull(adapter, registry):
    relay = await PullRelay("llava", registry, adapter).start()
    assert "llava" in registry

    events = await collect(relay)

    assert events[-1] == CompleteEvent(data=COMPLETE_MESSAGE)
    assert sum(isinstance(e, CompleteEvent) for e in events) == 1

    progress = [e for e in events if isinstance(e, ProgressEvent)]
    assert [e.data for e in progress] == [
        "Pulling manifest...",
        "pulling 6a0746a1ec1a... 412.3 MB / 4.1 GB",
        "pulling 4fa551d4f938...  47%",
        "Verifying download...",
        "writing manifest",
        "success",
    ]
    assert progress[0].percent is None
    assert progress[1].percent == pytest.approx(9.82, abs=0.01)
    assert progress[2].percent == 47.0
    assert [e.indeterminate for e in progress] == [True, False, False, True, False, False]

    # stderr is relayed as error events, whatever it says
    assert [e for e in events if isinstance(e, ErrorEvent)] == [ErrorEvent(data="warning: mirror is slow")]

    assert relay.outcome is RelayOutcome.COMPLETED
    assert relay.returncode == 0
    assert "llava" not in registry


@pytest.mark.asyncio
async def test_failed_pull_ends_with_error(adapter, registry):
    relay = await PullRelay("broken", registry, adapter).start()
    events = await collect(relay)

    assert events[-1] == ErrorEvent(data=FAILED_MESSAGE)
    assert not any(isinstance(e, CompleteEvent) for e in events)
    diagnostics = " ".join(e.data for e in events[:-1] if isinstance(e, ErrorEvent))
    assert "file does not exist" in diagnostics

    assert relay.outcome is RelayOutcome.FAILED
    assert relay.returncode == 1
    assert "broken" not in registry
    registry.try_register("broken")


@pytest.mark.asyncio
async def test_duplicate_pull_is_rejected_before_spawning(adapter, registry):
    registry.try_register("llava")
    adapter.start_pull = AsyncMock()

    with pytest.raises(AlreadyInProgress):
        await PullRelay("llava", registry, adapter).start()
    adapter.start_pull.assert_not_awaited()


@pytest.mark.asyncio
@pytest.mark.parametrize("model_id", ["", "   ", "-rf", "two words"])
async def test_invalid_model_id(adapter, registry, model_id):
    with pytest.raises(InvalidRequest):
        await PullRelay(model_id, registry, adapter).start()
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_missing_cli_releases_registration(registry):
    adapter = OllamaAdapter(cli=["/nonexistent/ollama"])
    try:
        with pytest.raises(UpstreamUnavailable):
            await PullRelay("llava", registry, adapter).start()
    finally:
        await adapter.aclose()
    assert "llava" not in registry


@pytest.mark.asyncio
async def test_cancel_stops_process_and_releases(adapter, registry):
    relay = await PullRelay("slow", registry, adapter, stop_timeout=2).start()

    events = []

    async def consume():
        async for event in relay.events():
            events.append(event)
            if len(events) == 1:
                assert registry.cancel("slow") is True

    await asyncio.wait_for(consume(), timeout=30)

    assert events[0] == ProgressEvent(data="Pulling manifest...")
    assert not any(isinstance(e, CompleteEvent) for e in events)
    assert relay.outcome is RelayOutcome.CANCELLED
    assert relay._process.returncode is not None
    assert "slow" not in registry

    # A fresh pull of the same model is accepted afterwards
    again = await PullRelay("slow", registry, adapter, stop_timeout=2).start()
    await again.aclose()
    assert "slow" not in registry


@pytest.mark.asyncio
async def test_close_without_reading(adapter, registry):
    relay = await PullRelay("slow", registry, adapter, stop_timeout=2).start()
    await asyncio.wait_for(relay.aclose(), timeout=10)

    assert relay._process.returncode is not None
    assert relay.outcome is RelayOutcome.CANCELLED
    assert "slow" not in registry

    # idempotent
    await relay.aclose()


@pytest.mark.asyncio
async def test_immediate_re_pull_after_completion(adapter, registry):
    first = await PullRelay("llava", registry, adapter).start()
    async for event in first.events():
        if isinstance(event, CompleteEvent):
            # released before the terminal event is delivered
            assert "llava" not in registry
            second = await PullRelay("llava", registry, adapter).start()
            await second.aclose()


@pytest.mark.asyncio
async def test_failed_output_reader_is_reported(adapter, registry, monkeypatch, caplog):
    async def broken_reader(self, stream, queue):
        queue.put_nowait(None)
        raise OSError("pipe read failed")

    monkeypatch.setattr(PullRelay, "_pump_diagnostics", broken_reader)
    relay = await PullRelay("llava", registry, adapter).start()
    with caplog.at_level(logging.WARNING, logger="app.services.pull_relay"):
        events = await collect(relay)

    assert events[-1] == CompleteEvent(data=COMPLETE_MESSAGE)
    assert "Output reader for llava pull failed: pipe read failed" in caplog.text
    assert "llava" not in registry
