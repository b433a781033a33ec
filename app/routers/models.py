"""Model management endpoints: list, inspect, pull (SSE), cancel and delete."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import aclosing

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from app.adapters.base import InferenceBackendAdapter
from app.dependencies import get_adapter, get_registry
from app.errors import AlreadyInProgress
from app.routers.chat import STREAM_HEADERS
from app.schemas.models import (
    ActiveDownload,
    CancelPullResponse,
    DeleteModelResponse,
    PullRequest,
    encode_sse,
)
from app.services.download_registry import DownloadRegistry
from app.services.pull_relay import PullRelay, validate_model_id

router = APIRouter()


@router.get("")
async def list_models(adapter: InferenceBackendAdapter = Depends(get_adapter)):
    """The daemon's model list, passed through unchanged."""
    return await adapter.list_models()


# ── Pull ─────────────────────────────────────────────────────────────


async def _event_stream(relay: PullRelay) -> AsyncIterator[str]:
    async with aclosing(relay.events()) as events:
        async for event in events:
            yield encode_sse(event)


@router.post("/pull")
async def pull_model(
    req: PullRequest,
    adapter: InferenceBackendAdapter = Depends(get_adapter),
    registry: DownloadRegistry = Depends(get_registry),
):
    """Start ``ollama pull`` and stream its progress as server-sent events.

    Each record is ``data: {"type": "progress"|"error"|"complete", "data": "..."}``.
    A second pull of the same model while one is running gets a 409.
    """
    relay = await PullRelay(req.model_name, registry, adapter).start()
    return StreamingResponse(
        _event_stream(relay),
        media_type="text/event-stream",
        headers=STREAM_HEADERS,
        background=BackgroundTask(relay.aclose),
    )


@router.get("/pull", response_model=list[ActiveDownload])
async def list_pulls(registry: DownloadRegistry = Depends(get_registry)):
    """Downloads currently in flight."""
    return registry.active()


@router.delete("/pull/{name:path}", response_model=CancelPullResponse)
async def cancel_pull(name: str, registry: DownloadRegistry = Depends(get_registry)):
    """Cancel a running download. Cancelling nothing is not an error."""
    return CancelPullResponse(model=name, cancelled=registry.cancel(name))


# ── Single model ─────────────────────────────────────────────────────


@router.get("/{name:path}")
async def get_model(name: str, adapter: InferenceBackendAdapter = Depends(get_adapter)):
    """The daemon's metadata for one model, passed through unchanged."""
    return await adapter.show_model(name)


@router.delete("/{name:path}", response_model=DeleteModelResponse)
async def delete_model(
    name: str,
    adapter: InferenceBackendAdapter = Depends(get_adapter),
    registry: DownloadRegistry = Depends(get_registry),
):
    name = validate_model_id(name)
    if name in registry:
        raise AlreadyInProgress(name)
    stdout, stderr = await adapter.delete_model(name)
    return DeleteModelResponse(stdout=stdout, stderr=stderr)
