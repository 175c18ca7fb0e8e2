"""Encrypted chat relay application.

This is the main entry point for the relay service. Clients encrypt their
messages before sending them; the relay only authenticates sockets, keeps a
bounded history and fans out opaque ciphertext to authorized peers.

Modules:
    - chat: WebSocket relay (access gate, history, broadcasting, reactions)
    - store: Optional durable mirror of the history (MongoDB or DuckDB)
    - files: Image uploads with pixelated thumbnails
    - auth: Logout cookie clearing
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from relay.auth.router import router as auth_router
from relay.chat.manager import ConnectionManager, RelayContext
from relay.chat.router import router as chat_router
from relay.config import AppConfig, get_config
from relay.files.router import router as files_router
from relay.files.service import MediaStorageService
from relay.store import HistoryStore, build_store

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence verbose third-party loggers.
for _noisy in (
    "pymongo",
    "motor",
    "PIL",
    "multipart",
    "python_multipart",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


def _apply_log_level(config: AppConfig) -> None:
    # `logging.level: "debug"` in relay.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if isinstance(configured_level, int):
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())


def create_app(
    config: Optional[AppConfig] = None,
    store: Optional[HistoryStore] = None,
) -> FastAPI:
    """Build the FastAPI application and its relay context.

    Args:
        config: Configuration to use; defaults to the process-wide config.
        store: Durable store to mirror history into; defaults to the
            backend selected by ``store.backend``.
    """
    config = config or get_config()
    _apply_log_level(config)
    if store is None:
        store = build_store(config)

    context = RelayContext.from_config(config, store)
    manager = ConnectionManager(context)
    media = MediaStorageService(
        upload_dir=config.uploads.upload_dir,
        url_prefix=config.uploads.url_prefix,
        max_bytes=config.uploads.max_bytes,
        thumb_width=config.uploads.thumb_width,
        pixel_size=config.uploads.pixel_size,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager for startup/shutdown events."""
        logger.info(
            f"Relay ready: access_mode={config.chat.access_mode.value}, "
            f"max_history={config.chat.max_history}, store={config.store.backend}"
        )

        yield  # Application runs here

        # Shutdown
        if context.mirror is not None:
            await context.mirror.close()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="Chat Relay API",
        description="Relay for client-side encrypted chat messages",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.context = context
    app.state.manager = manager
    app.state.media = media

    # Register all routers
    app.include_router(chat_router)
    app.include_router(files_router)
    app.include_router(auth_router)

    app.mount(
        config.uploads.url_prefix,
        StaticFiles(directory=config.uploads.upload_dir),
        name="uploads",
    )

    @app.get("/health")
    async def health() -> dict:
        """Health check endpoint.

        Returns:
            dict: Status object indicating the server is running.
        """
        return {"status": "ok"}

    return app
