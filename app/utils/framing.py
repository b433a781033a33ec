"""Event framing: turn raw byte chunks into discrete records.

Upstream streams arrive in chunks with arbitrary boundaries: a JSON line, a
``data:`` record or even a multi-byte character can be split across two
chunks. ``EventFramer`` keeps the undecoded tail and the unterminated line
between calls and only ever emits whole lines.
"""

from __future__ import annotations

import codecs
import json
import logging
import re
from collections.abc import AsyncIterable, AsyncIterator
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)

SSE_DATA_PREFIX = "data: "

_TEXT_LINE_BREAK = re.compile(r"\r\n|\r|\n")


class FrameMode(StrEnum):
    JSON_LINES = "json_lines"  # one JSON object per line (Ollama chat)
    SSE = "sse"  # "data: {json}" records, other lines ignored
    TEXT = "text"  # raw text lines; \r also ends a line (CLI progress output)


class EventFramer:
    """Stateful chunk-to-record splitter.

    ``feed`` and ``flush`` are synchronous; the async side lives in
    :func:`frame_stream`.
    """

    def __init__(
        self,
        mode: FrameMode = FrameMode.JSON_LINES,
        *,
        prefix: str = SSE_DATA_PREFIX,
        encoding: str = "utf-8",
    ):
        self.mode = mode
        self.prefix = prefix
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._pending = ""

    def feed(self, chunk: bytes) -> list[Any]:
        """Consume one chunk and return every record it completes."""
        self._pending += self._decoder.decode(chunk)
        if self.mode is FrameMode.TEXT:
            *lines, self._pending = _TEXT_LINE_BREAK.split(self._pending)
        else:
            *lines, self._pending = self._pending.split("\n")
        return self._records(lines)

    def flush(self) -> list[Any]:
        """End of stream: emit whatever is left, terminated or not."""
        self._pending += self._decoder.decode(b"", final=True)
        tail, self._pending = self._pending, ""
        return self._records([tail])

    def _records(self, lines: list[str]) -> list[Any]:
        records = []
        for line in lines:
            record = self._decode_line(line)
            if record is not None:
                records.append(record)
        return records

    def _decode_line(self, line: str) -> Any | None:
        line = line.rstrip("\r")
        if not line.strip():
            return None

        if self.mode is FrameMode.TEXT:
            return line

        if self.mode is FrameMode.SSE:
            if not line.startswith(self.prefix):
                return None
            line = line[len(self.prefix):]

        return decode_json_record(line)


def decode_json_record(raw: str) -> dict[str, Any] | None:
    """Parse one JSON object; log and return None on anything else."""
    try:
        record = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.warning("Skipping malformed JSON record (%s): %r", exc, raw[:200])
        return None
    if not isinstance(record, dict):
        logger.warning("Skipping non-object JSON record: %r", raw[:200])
        return None
    return record


async def frame_stream(
    chunks: AsyncIterable[bytes], framer: EventFramer
) -> AsyncIterator[Any]:
    """Yield records from an async byte stream, flushing at the end."""
    async for chunk in chunks:
        for record in framer.feed(chunk):
            yield record
    for record in framer.flush():
        yield record
