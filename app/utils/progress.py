"""Progress parsing for ``ollama pull`` output lines."""

from __future__ import annotations

import re
from dataclasses import dataclass

# Cursor movement / terminal mode noise the CLI writes around its progress
# bars: ESC[?2026h, ESC[?25l, ESC[A, ESC[1G, ESC[K ... Some consumers have
# already dropped the ESC byte; without it only runs of two or more count,
# so a literal "[A" in ordinary text survives.
_SEQUENCE = r"\[(?:\?\d+[hl]|\d*[A-DGJK])"
_CONTROL_SEQUENCE = re.compile(rf"\x1b{_SEQUENCE}|(?:{_SEQUENCE}){{2,}}")

# "412.3 MB / 4.1 GB"
_SIZE_RATIO = re.compile(r"(\d+(?:\.\d+)?)\s*MB\s*/\s*(\d+(?:\.\d+)?)\s*GB")
# "47%"
_PERCENT = re.compile(r"(\d+)%")

_DESCRIPTIONS = (
    ("pulling manifest", "Pulling manifest..."),
    ("verifying", "Verifying download..."),
)


@dataclass(frozen=True)
class ProgressInfo:
    text: str
    percent: float | None = None
    indeterminate: bool = False


def strip_control_sequences(text: str) -> str:
    return _CONTROL_SEQUENCE.sub("", text).strip()


def parse_percent(text: str) -> float | None:
    """Derive a completion percentage from a progress line, if it has one.

    The size ratio wins over a literal percentage. GB is treated as 1024 MB,
    which is what the CLI output implies.
    """
    ratio = _SIZE_RATIO.search(text)
    if ratio:
        downloaded, total = float(ratio.group(1)), float(ratio.group(2))
        if total > 0:
            return downloaded / (total * 1024) * 100
    percent = _PERCENT.search(text)
    if percent:
        return float(int(percent.group(1)))
    return None


def parse_progress(text: str) -> ProgressInfo:
    clean = strip_control_sequences(text)
    percent = parse_percent(clean)
    for needle, description in _DESCRIPTIONS:
        if needle in clean.lower():
            return ProgressInfo(text=description, percent=percent, indeterminate=True)
    return ProgressInfo(text=clean, percent=percent)
