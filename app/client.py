"""Async client for the relay's HTTP API.

Does what the browser front-end does: streams chat text, follows pull
progress over server-sent events and manages models. Setting a ``cancel``
event stops a stream quietly (the connection is closed, which cancels the
work server-side); failures raise.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Any

import httpx
from pydantic import ValidationError

from app.config import settings
from app.errors import RelayCancelled
from app.schemas.models import ProgressEvent, PullEvent, pull_event_adapter
from app.utils.cancellation import next_or_none, race_cancel
from app.utils.framing import EventFramer, FrameMode
from app.utils.progress import parse_progress

logger = logging.getLogger(__name__)

IMAGE_PROMPT = "What is in this image?"


class RelayClient:
    def __init__(
        self,
        base_url: str = "http://localhost:3000",
        *,
        http: httpx.AsyncClient | None = None,
        default_model: str | None = None,
    ):
        self._http = http or httpx.AsyncClient(base_url=base_url, timeout=httpx.Timeout(None, connect=10.0))
        self.default_model = default_model or settings.default_model

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> RelayClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # ── Chat ─────────────────────────────────────────────────────────

    async def chat(
        self,
        prompt: str,
        *,
        model: str | None = None,
        images: list[str] | None = None,
        cancel: asyncio.Event | None = None,
    ) -> AsyncIterator[str]:
        message: dict[str, Any] = {"role": "user", "content": prompt or (IMAGE_PROMPT if images else "")}
        if images:
            message["images"] = images
        body = {"model": model or self.default_model, "messages": [message]}

        async for chunk in self._stream("POST", "/api/chat", body, cancel, text=True):
            yield chunk

    # ── Models ───────────────────────────────────────────────────────

    async def pull(self, model: str, *, cancel: asyncio.Event | None = None) -> AsyncIterator[PullEvent]:
        """Yield pull events, with progress details recovered from their text."""
        cancel = cancel or asyncio.Event()
        framer = EventFramer(FrameMode.SSE)
        async for chunk in self._stream("POST", "/api/models/pull", {"modelName": model}, cancel):
            for record in framer.feed(chunk):
                event = self._parse_event(record)
                if event is not None:
                    yield event
        if cancel.is_set():
            return
        for record in framer.flush():
            event = self._parse_event(record)
            if event is not None:
                yield event

    @staticmethod
    def _parse_event(record: dict[str, Any]) -> PullEvent | None:
        try:
            event = pull_event_adapter.validate_python(record)
        except ValidationError as exc:
            logger.warning("Ignoring unrecognised pull event %r: %s", record, exc)
            return None
        match event:
            case ProgressEvent(data=text):
                info = parse_progress(text)
                return event.model_copy(update={"percent": info.percent, "indeterminate": info.indeterminate})
            case _:
                return event

    async def cancel_pull(self, model: str) -> bool:
        resp = await self._http.delete(f"/api/models/pull/{model}")
        resp.raise_for_status()
        return resp.json()["cancelled"]

    async def active_pulls(self) -> list[str]:
        resp = await self._http.get("/api/models/pull")
        resp.raise_for_status()
        return [d["model"] for d in resp.json()]

    async def list_models(self) -> list[dict[str, Any]]:
        resp = await self._http.get("/api/models")
        resp.raise_for_status()
        return resp.json().get("models", [])

    async def show_model(self, name: str) -> dict[str, Any]:
        resp = await self._http.get(f"/api/models/{name}")
        resp.raise_for_status()
        return resp.json()

    async def delete_model(self, name: str) -> dict[str, Any]:
        resp = await self._http.delete(f"/api/models/{name}")
        resp.raise_for_status()
        return resp.json()

    # ── Streaming helper ─────────────────────────────────────────────

    async def _stream(
        self,
        method: str,
        path: str,
        body: dict[str, Any],
        cancel: asyncio.Event | None,
        *,
        text: bool = False,
    ) -> AsyncIterator[Any]:
        cancel = cancel or asyncio.Event()
        async with self._http.stream(method, path, json=body) as resp:
            if resp.is_error:
                await resp.aread()
                resp.raise_for_status()
            chunks = resp.aiter_text() if text else resp.aiter_bytes()
            async with aclosing(chunks):
                while True:
                    try:
                        chunk = await race_cancel(next_or_none(chunks), cancel)
                    except RelayCancelled:
                        logger.info("%s %s cancelled by caller", method, path)
                        return
                    if chunk is None:
                        return
                    yield chunk
