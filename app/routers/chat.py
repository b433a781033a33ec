"""Chat endpoint: streams the assistant reply as plain text."""

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from app.adapters.base import InferenceBackendAdapter
from app.dependencies import get_adapter
from app.schemas.chat import ChatRequest
from app.services.chat_relay import ChatRelay

router = APIRouter()

STREAM_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive"}


@router.post("")
async def chat(req: ChatRequest, adapter: InferenceBackendAdapter = Depends(get_adapter)):
    """Relay one chat completion.

    Client sends: {"model": "...", "messages": [{"role", "content", "images"?}]}
    Server sends: the assistant text, chunk by chunk, as text/plain.

    Validation and upstream start-up errors are returned as JSON before any
    text is streamed. Closing the connection cancels the upstream call.
    """
    relay = await ChatRelay(req, adapter).open()
    return StreamingResponse(
        relay.fragments(),
        media_type="text/plain; charset=utf-8",
        headers=STREAM_HEADERS,
        background=BackgroundTask(relay.aclose),
    )
