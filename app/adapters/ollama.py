"""Ollama adapter.

Talks to the daemon two ways:
  - the HTTP API (``/api/chat``, ``/api/tags``, ``/api/show``, ``/api/version``)
  - the ``ollama`` CLI for ``pull`` and ``rm``, whose progress and exit code
    are what the model manager relays
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from app.adapters.base import InferenceBackendAdapter
from app.config import settings
from app.errors import ModelNotFound, UpstreamCommandError, UpstreamUnavailable

logger = logging.getLogger(__name__)


async def _run(cmd: list[str], *, timeout: float) -> tuple[int, str, str]:
    """Run a short CLI command and return (returncode, stdout, stderr)."""
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout_bytes, stderr_bytes = await asyncio.wait_for(
            proc.communicate(), timeout=timeout,
        )
        return (
            proc.returncode or 0,
            stdout_bytes.decode(errors="replace").strip(),
            stderr_bytes.decode(errors="replace").strip(),
        )
    except FileNotFoundError:
        return (127, "", f"Command not found: {cmd[0]}")
    except TimeoutError:
        proc.kill()  # type: ignore[possibly-undefined]
        await proc.wait()
        return (1, "", f"Command timed out after {timeout}s")


class OllamaAdapter(InferenceBackendAdapter):
    def __init__(
        self,
        http: httpx.AsyncClient | None = None,
        *,
        cli: list[str] | None = None,
        cli_timeout: float | None = None,
    ):
        # No read timeout: a chat or pull may legitimately stall for minutes.
        self._http = http or httpx.AsyncClient(
            base_url=settings.ollama_api_url,
            timeout=httpx.Timeout(None, connect=settings.ollama_connect_timeout_s),
        )
        self.cli = cli or settings.ollama_cli
        self.cli_timeout = cli_timeout or settings.cli_timeout_s

    async def aclose(self) -> None:
        await self._http.aclose()

    # ── HTTP API ─────────────────────────────────────────────────────

    async def open_chat_stream(self, payload: dict[str, Any]) -> httpx.Response:
        request = self._http.build_request("POST", "/api/chat", json=payload)
        try:
            response = await self._http.send(request, stream=True)
        except httpx.HTTPError as exc:
            logger.error("Ollama chat call failed to start: %s", exc)
            raise UpstreamUnavailable(f"Ollama API unreachable: {exc}") from exc

        if response.is_error:
            body = (await response.aread()).decode(errors="replace")
            await response.aclose()
            logger.error("Ollama chat refused (%s): %s", response.status_code, body[:200])
            raise UpstreamUnavailable(f"Ollama API error: {response.reason_phrase}. {body}".strip())
        return response

    async def list_models(self) -> dict[str, Any]:
        return await self._get_json("GET", "/api/tags")

    async def show_model(self, name: str) -> dict[str, Any]:
        return await self._get_json("POST", "/api/show", json={"name": name}, model=name)

    async def get_version(self) -> str | None:
        try:
            data = await self._get_json("GET", "/api/version")
        except UpstreamUnavailable as exc:
            logger.warning("Ollama health check failed: %s", exc)
            return None
        return data.get("version")

    async def _get_json(
        self,
        method: str,
        path: str,
        *,
        json: dict | None = None,
        model: str | None = None,
    ) -> dict[str, Any]:
        try:
            resp = await self._http.request(method, path, json=json)
        except httpx.HTTPError as exc:
            raise UpstreamUnavailable(f"Ollama API unreachable: {exc}") from exc

        if resp.status_code == 404 and model is not None:
            raise ModelNotFound(model)
        if resp.is_error:
            raise UpstreamUnavailable(f"Ollama API error: {resp.reason_phrase}. {resp.text}".strip())
        try:
            return resp.json()
        except ValueError as exc:
            raise UpstreamUnavailable(f"Ollama returned invalid JSON for {path}") from exc

    # ── CLI ──────────────────────────────────────────────────────────

    async def delete_model(self, name: str) -> tuple[str, str]:
        rc, out, err = await _run([*self.cli, "rm", name], timeout=self.cli_timeout)
        if rc == 127:
            raise UpstreamUnavailable(err)
        if rc != 0:
            logger.warning("ollama rm %s failed (exit %d): %s", name, rc, err or out)
            raise UpstreamCommandError(err or out or f"Delete failed (exit {rc}).")
        logger.info("Deleted model %s", name)
        return out, err

    async def start_pull(self, name: str) -> asyncio.subprocess.Process:
        cmd = [*self.cli, "pull", name]
        logger.info("Starting model pull: %s", " ".join(cmd))
        try:
            return await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise UpstreamUnavailable(f"Cannot run {cmd[0]}: {exc}") from exc
