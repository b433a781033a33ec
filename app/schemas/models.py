"""Pydantic schemas for model management and pull progress events."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class RelayOutcome(StrEnum):
    """How a relay finished. Cancellation is not a failure."""

    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


# ── Pull events ─────────────────────────────────────────────────────


class ProgressEvent(BaseModel):
    type: Literal["progress"] = "progress"
    data: str
    # Derived from ``data``; the client recovers both from the text.
    percent: float | None = Field(default=None, exclude=True)
    indeterminate: bool = Field(default=False, exclude=True)


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    data: str


class CompleteEvent(BaseModel):
    type: Literal["complete"] = "complete"
    data: str


PullEvent = Annotated[
    Union[ProgressEvent, ErrorEvent, CompleteEvent],
    Field(discriminator="type"),
]

pull_event_adapter: TypeAdapter[PullEvent] = TypeAdapter(PullEvent)


def encode_sse(event: ProgressEvent | ErrorEvent | CompleteEvent) -> str:
    """``data: {"type": ..., "data": ...}`` followed by a blank line."""
    return f"data: {event.model_dump_json()}\n\n"


# ── Requests / responses ────────────────────────────────────────────


class PullRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    model_name: str = Field("", alias="modelName")


class ActiveDownload(BaseModel):
    model: str
    started_at: datetime


class CancelPullResponse(BaseModel):
    model: str
    cancelled: bool


class DeleteModelResponse(BaseModel):
    message: str = "Model deleted successfully"
    stdout: str = ""
    stderr: str = ""
