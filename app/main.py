"""FastAPI application entrypoint."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from app.adapters.ollama import OllamaAdapter
from app.config import settings
from app.errors import PayloadTooLarge, RelayError
from app.routers import chat, models
from app.services.download_registry import DownloadRegistry

# ── Logging setup ────────────────────────────────────────────────────
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
    datefmt="%H:%M:%S",
)
# httpx logs every request at INFO; the relays already log what matters
logging.getLogger("httpx").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    app.state.ollama = OllamaAdapter()
    app.state.downloads = DownloadRegistry()

    version = await app.state.ollama.get_version()
    if version:
        logger.info("Ollama %s reachable at %s", version, settings.ollama_api_url)
    else:
        logger.warning("Ollama not reachable at %s; chat and model calls will fail until it is.",
                       settings.ollama_api_url)

    yield

    # Shutdown: stop running pulls, then drop the HTTP pool
    cancelled = app.state.downloads.cancel_all()
    if cancelled:
        logger.info("Cancelled %d running download(s) on shutdown", cancelled)
    await app.state.ollama.aclose()


app = FastAPI(
    title="Ollama Relay",
    description="Streaming chat and model management relay for a local Ollama daemon",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class BodySizeLimitMiddleware:
    """Reject oversized bodies from their Content-Length, before reading them.

    Plain ASGI so streaming responses and disconnects pass through untouched.
    """

    def __init__(self, app, max_bytes: int):
        self.app = app
        self.max_bytes = max_bytes

    async def __call__(self, scope, receive, send):
        if scope["type"] == "http":
            length = dict(scope["headers"]).get(b"content-length", b"")
            if length.isdigit() and int(length) > self.max_bytes:
                err = PayloadTooLarge(self.max_bytes)
                response = JSONResponse(status_code=err.status_code, content=err.to_payload())
                await response(scope, receive, send)
                return
        await self.app(scope, receive, send)


app.add_middleware(BodySizeLimitMiddleware, max_bytes=settings.max_request_bytes)


@app.exception_handler(RelayError)
async def relay_error_handler(request: Request, exc: RelayError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


# Mount routers
app.include_router(chat.router, prefix="/api/chat", tags=["chat"])
app.include_router(models.router, prefix="/api/models", tags=["models"])


@app.get("/health")
async def health(request: Request):
    version = await request.app.state.ollama.get_version()
    return {
        "status": "ok",
        "service": "ollama-relay",
        "ollama": {
            "url": settings.ollama_api_url,
            "reachable": version is not None,
            "version": version,
        },
        "active_downloads": [d.model for d in request.app.state.downloads.active()],
    }


# Browser front-end, when present. Mounted last so the API routes win.
if settings.static_dir.is_dir():
    app.mount("/", StaticFiles(directory=settings.static_dir, html=True), name="static")
