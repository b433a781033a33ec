"""At most one in-flight pull per model."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from app.errors import AlreadyInProgress
from app.schemas.models import ActiveDownload

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class DownloadHandle:
    """Cancellation token for one running pull."""

    model_id: str
    token: asyncio.Event = field(default_factory=asyncio.Event)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def cancel(self) -> None:
        self.token.set()

    @property
    def cancelled(self) -> bool:
        return self.token.is_set()


class DownloadRegistry:
    """Process-wide table of model id -> DownloadHandle.

    Only relays register and release entries. Everything here is synchronous,
    so each call is atomic with respect to other coroutines on the loop.
    """

    def __init__(self) -> None:
        self._handles: dict[str, DownloadHandle] = {}

    def try_register(self, model_id: str, token: asyncio.Event | None = None) -> DownloadHandle:
        if model_id in self._handles:
            raise AlreadyInProgress(model_id)
        handle = DownloadHandle(model_id, token) if token is not None else DownloadHandle(model_id)
        self._handles[model_id] = handle
        logger.debug("Registered download for %s", model_id)
        return handle

    def release(self, model_id: str, handle: DownloadHandle | None = None) -> None:
        """Drop the entry for *model_id*.

        With *handle*, only that exact handle is removed; a relay finishing
        after its entry was cancelled and replaced leaves the new one alone.
        """
        current = self._handles.get(model_id)
        if current is None:
            return
        if handle is not None and current is not handle:
            return
        del self._handles[model_id]
        logger.debug("Released download for %s", model_id)

    def cancel(self, model_id: str) -> bool:
        handle = self._handles.pop(model_id, None)
        if handle is None:
            return False
        handle.cancel()
        logger.info("Cancelled download for %s", model_id)
        return True

    def cancel_all(self) -> int:
        model_ids = list(self._handles)
        for model_id in model_ids:
            self.cancel(model_id)
        return len(model_ids)

    def active(self) -> list[ActiveDownload]:
        return [
            ActiveDownload(model=h.model_id, started_at=h.started_at)
            for h in self._handles.values()
        ]

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._handles

    def __len__(self) -> int:
        return len(self._handles)
