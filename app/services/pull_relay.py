"""Pull relay: ``ollama pull`` output in, typed progress events out.

The child process writes human-readable progress to stdout and diagnostics to
stderr. Both pipes are pumped concurrently into one queue so events keep their
arrival order; the exit code decides the single terminal event.
"""

from __future__ import annotations

import asyncio
import codecs
import contextlib
import logging
import re
from collections.abc import AsyncIterator

from app.adapters.base import InferenceBackendAdapter
from app.config import settings
from app.errors import InvalidRequest, RelayCancelled
from app.schemas.models import (
    CompleteEvent,
    ErrorEvent,
    ProgressEvent,
    PullEvent,
    RelayOutcome,
)
from app.services.download_registry import DownloadHandle, DownloadRegistry
from app.utils.cancellation import race_cancel
from app.utils.framing import EventFramer, FrameMode
from app.utils.progress import parse_progress, strip_control_sequences

logger = logging.getLogger(__name__)

COMPLETE_MESSAGE = "Model pulled successfully"
FAILED_MESSAGE = "Failed to pull model"

_READ_SIZE = 4096
# Passed to the CLI as a positional argument, so no leading dash or spaces.
_MODEL_ID = re.compile(r"^[A-Za-z0-9_.][\w.:/@+-]*$")

_STREAM_DONE = None


def validate_model_id(model_id: str) -> str:
    model_id = (model_id or "").strip()
    if not model_id:
        raise InvalidRequest("Model name is required")
    if not _MODEL_ID.match(model_id):
        raise InvalidRequest(f"Invalid model name: {model_id!r}")
    return model_id


class PullRelay:
    """One model download, from registry entry to registry release."""

    def __init__(
        self,
        model_id: str,
        registry: DownloadRegistry,
        adapter: InferenceBackendAdapter,
        *,
        cancel: asyncio.Event | None = None,
        stop_timeout: float | None = None,
    ):
        self.model_id = model_id
        self.registry = registry
        self.adapter = adapter
        self.stop_timeout = stop_timeout if stop_timeout is not None else settings.pull_stop_timeout_s
        self.outcome: RelayOutcome | None = None
        self.returncode: int | None = None
        self._cancel = cancel
        self._handle: DownloadHandle | None = None
        self._process: asyncio.subprocess.Process | None = None
        self._closed = False

    @property
    def token(self) -> asyncio.Event:
        if self._handle is None:
            raise RuntimeError("PullRelay.start() must be awaited first")
        return self._handle.token

    async def start(self) -> PullRelay:
        """Register the download, then launch the child process.

        ``AlreadyInProgress`` is raised before anything is spawned.
        """
        self.model_id = validate_model_id(self.model_id)
        self._handle = self.registry.try_register(self.model_id, self._cancel)
        try:
            self._process = await self.adapter.start_pull(self.model_id)
        except BaseException:
            self._release()
            raise
        logger.info("Pull started for %s (pid=%s)", self.model_id, self._process.pid)
        return self

    async def events(self) -> AsyncIterator[PullEvent]:
        if self._process is None:
            raise RuntimeError("PullRelay.start() must be awaited before streaming")

        proc = self._process
        queue: asyncio.Queue[PullEvent | None] = asyncio.Queue()
        pumps = [
            asyncio.create_task(self._pump_progress(proc.stdout, queue)),
            asyncio.create_task(self._pump_diagnostics(proc.stderr, queue)),
        ]
        open_streams = len(pumps)
        try:
            while open_streams:
                event = await race_cancel(queue.get(), self.token)
                if event is _STREAM_DONE:
                    open_streams -= 1
                    continue
                yield event

            self.returncode = await race_cancel(proc.wait(), self.token)
            if self.returncode == 0:
                self.outcome = RelayOutcome.COMPLETED
                terminal: PullEvent = CompleteEvent(data=COMPLETE_MESSAGE)
            else:
                self.outcome = RelayOutcome.FAILED
                logger.warning("Pull of %s exited with code %s", self.model_id, self.returncode)
                terminal = ErrorEvent(data=FAILED_MESSAGE)
            # The entry is gone by the time the client sees the terminal
            # event, so an immediate re-pull is accepted.
            await self.aclose()
            yield terminal
        except RelayCancelled:
            self.outcome = RelayOutcome.CANCELLED
        except asyncio.CancelledError:
            self.outcome = RelayOutcome.CANCELLED
            raise
        finally:
            for pump in pumps:
                pump.cancel()
            try:
                await self.aclose()
            finally:
                for result in await asyncio.gather(*pumps, return_exceptions=True):
                    if isinstance(result, Exception):
                        logger.warning("Output reader for %s pull failed: %s", self.model_id, result)

    async def _pump_progress(self, stream: asyncio.StreamReader | None, queue: asyncio.Queue) -> None:
        framer = EventFramer(FrameMode.TEXT)
        try:
            while stream is not None:
                chunk = await stream.read(_READ_SIZE)
                if not chunk:
                    break
                for line in framer.feed(chunk):
                    self._queue_progress(line, queue)
            for line in framer.flush():
                self._queue_progress(line, queue)
        finally:
            queue.put_nowait(_STREAM_DONE)

    @staticmethod
    def _queue_progress(line: str, queue: asyncio.Queue) -> None:
        info = parse_progress(line)
        if info.text:
            queue.put_nowait(
                ProgressEvent(data=info.text, percent=info.percent, indeterminate=info.indeterminate)
            )

    async def _pump_diagnostics(self, stream: asyncio.StreamReader | None, queue: asyncio.Queue) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            while stream is not None:
                chunk = await stream.read(_READ_SIZE)
                if not chunk:
                    break
                # Always tagged as error, even for warnings the CLI survives.
                text = strip_control_sequences(decoder.decode(chunk))
                if text:
                    queue.put_nowait(ErrorEvent(data=text))
            text = strip_control_sequences(decoder.decode(b"", final=True))
            if text:
                queue.put_nowait(ErrorEvent(data=text))
        finally:
            queue.put_nowait(_STREAM_DONE)

    async def aclose(self) -> None:
        """Stop the child process if still running, then release the handle.

        Idempotent. The handle is released even if stopping the process is
        interrupted; a later call then finishes stopping it.
        """
        if self._closed:
            return
        try:
            await self._stop_process()
            self._closed = True
        finally:
            self._release()
            if self.outcome is None:
                self.outcome = RelayOutcome.CANCELLED
        logger.info("Pull relay for %s finished: %s", self.model_id, self.outcome)

    async def _stop_process(self) -> None:
        proc = self._process
        if proc is None or proc.returncode is not None:
            return
        logger.info("Terminating pull of %s (pid=%s)", self.model_id, proc.pid)
        with contextlib.suppress(ProcessLookupError):
            proc.terminate()
        try:
            await asyncio.wait_for(proc.wait(), timeout=self.stop_timeout)
        except TimeoutError:
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()

    def _release(self) -> None:
        if self._handle is not None:
            self.registry.release(self.model_id, self._handle)
