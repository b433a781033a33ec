"""Chat relay: Ollama JSON-lines token stream in, plain text out."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx

from app.adapters.base import InferenceBackendAdapter
from app.config import settings
from app.errors import InvalidRequest, RelayCancelled, UpstreamStreamError
from app.schemas.chat import ChatOptions, ChatRequest
from app.schemas.models import RelayOutcome
from app.utils.cancellation import next_or_none, race_cancel
from app.utils.framing import EventFramer, FrameMode, frame_stream

logger = logging.getLogger(__name__)


def default_options() -> ChatOptions:
    return ChatOptions(
        temperature=settings.chat_temperature,
        top_k=settings.chat_top_k,
        top_p=settings.chat_top_p,
    )


def build_upstream_payload(request: ChatRequest, options: ChatOptions) -> dict[str, Any]:
    """Translate a client request into Ollama's /api/chat body."""
    messages = []
    for message in request.messages:
        item: dict[str, Any] = {"role": message.role, "content": message.content}
        if message.images:
            item["images"] = message.images
        messages.append(item)
    return {
        "model": request.model,
        "messages": messages,
        "stream": True,
        "options": options.model_dump(),
    }


def extract_content(record: dict[str, Any]) -> str:
    """Assistant text carried by one upstream record, or ""."""
    message = record.get("message")
    if not isinstance(message, dict):
        return ""
    content = message.get("content")
    return content if isinstance(content, str) else ""


class ChatRelay:
    """One chat completion relayed from the daemon to a client.

    ``open`` fails fast (``InvalidRequest``, ``UpstreamUnavailable``) before
    any output exists; ``fragments`` never raises for upstream trouble and
    records the terminal state in ``outcome`` / ``error`` instead.
    """

    def __init__(
        self,
        request: ChatRequest,
        adapter: InferenceBackendAdapter,
        *,
        cancel: asyncio.Event | None = None,
        options: ChatOptions | None = None,
    ):
        self.request = request
        self.adapter = adapter
        self.cancel = cancel or asyncio.Event()
        self.options = options or default_options()
        self.outcome: RelayOutcome | None = None
        self.error: UpstreamStreamError | None = None
        self.fragment_count = 0
        self._response: httpx.Response | None = None

    def validate(self) -> None:
        if not self.request.model or not self.request.model.strip():
            raise InvalidRequest("Model name is required")
        if not any(m.has_payload() for m in self.request.messages):
            raise InvalidRequest("At least one message needs text or an image")

    async def open(self) -> ChatRelay:
        self.validate()
        payload = build_upstream_payload(self.request, self.options)
        logger.info(
            "Chat relay opening for model %s (%d messages)",
            self.request.model, len(payload["messages"]),
        )
        self._response = await self.adapter.open_chat_stream(payload)
        return self

    async def fragments(self) -> AsyncIterator[str]:
        if self._response is None:
            raise RuntimeError("ChatRelay.open() must be awaited before streaming")

        records = frame_stream(self._response.aiter_bytes(), EventFramer(FrameMode.JSON_LINES))
        try:
            while True:
                record = await race_cancel(next_or_none(records), self.cancel)
                if record is None:
                    break
                text = extract_content(record)
                if not text:
                    continue
                if self.cancel.is_set():
                    raise RelayCancelled()
                self.fragment_count += 1
                yield text
            self.outcome = RelayOutcome.COMPLETED
        except RelayCancelled:
            self.outcome = RelayOutcome.CANCELLED
        except httpx.HTTPError as exc:
            self.outcome = RelayOutcome.FAILED
            self.error = UpstreamStreamError(f"Upstream stream broke: {exc}")
            logger.warning(
                "Chat stream for %s broke after %d fragments: %s",
                self.request.model, self.fragment_count, exc,
            )
        except asyncio.CancelledError:
            # Client went away; Starlette cancels the response task.
            self.outcome = RelayOutcome.CANCELLED
            raise
        finally:
            try:
                await self.aclose()
            finally:
                await records.aclose()
            logger.info(
                "Chat relay for %s finished: %s (%d fragments)",
                self.request.model, self.outcome, self.fragment_count,
            )

    async def aclose(self) -> None:
        if self._response is not None and not self._response.is_closed:
            await self._response.aclose()
