"""Abstract base class for inference daemon adapters.

Swap Ollama for another local daemon by implementing this interface.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any

import httpx


class InferenceBackendAdapter(ABC):
    """Contract the relays and routers rely on."""

    @abstractmethod
    async def open_chat_stream(self, payload: dict[str, Any]) -> httpx.Response:
        """Start a streaming chat call; the response body is not read yet."""

    @abstractmethod
    async def list_models(self) -> dict[str, Any]:
        """Return the daemon's model list unchanged."""

    @abstractmethod
    async def show_model(self, name: str) -> dict[str, Any]:
        """Return the daemon's metadata for one model unchanged."""

    @abstractmethod
    async def delete_model(self, name: str) -> tuple[str, str]:
        """Remove a model; returns (stdout, stderr) of the operation."""

    @abstractmethod
    async def start_pull(self, name: str) -> asyncio.subprocess.Process:
        """Launch the long-running pull with piped stdout and stderr."""

    @abstractmethod
    async def get_version(self) -> str | None:
        """Daemon version, or None when it cannot be reached."""

    @abstractmethod
    async def aclose(self) -> None:
        """Release connections."""
