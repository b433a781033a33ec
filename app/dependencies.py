"""FastAPI dependencies for the objects built in the app lifespan."""

from fastapi import Request

from app.adapters.base import InferenceBackendAdapter
from app.services.download_registry import DownloadRegistry


def get_adapter(request: Request) -> InferenceBackendAdapter:
    return request.app.state.ollama


def get_registry(request: Request) -> DownloadRegistry:
    return request.app.state.downloads
