"""feedsync Backend Application.

This is the main entry point for the feedsync service. It serves the
document store that chat feed clients synchronize against: a live newest-K
window over WebSocket and cursor-paginated history over HTTP.

Modules:
    - feed: Feed synchronization engine (merger, live tail, pager) and router
    - store: In-memory and remote document stores
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from feedsync.config import get_config
from feedsync.feed.router import router as feed_router
from feedsync.store.memory import feed_store

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence verbose third-party loggers.
# httpx/httpcore log every TCP connection; websockets logs every frame at debug.
for _noisy in (
    "httpx",
    "httpcore",
    "httpcore.http11",
    "httpcore.connection",
    "websockets",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    # Apply configured log level to root logger so that
    # `logging.level: "debug"` in feedsync.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    feed_store.max_page_size = config.feed.max_page_size

    logger.info(
        f"feedsync running on http://{config.server.host}:{config.server.port} "
        f"(live window={config.feed.live_window_size}, page={config.feed.history_page_size})"
    )

    yield  # Application runs here

    # Shutdown
    logger.info("Application shutdown complete")


# Create FastAPI application with metadata
app = FastAPI(
    title="feedsync API",
    description="Live tail and paginated history for chat feeds",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config().server.allowed_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(feed_router)


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object indicating the server is running.
    """
    return {"status": "ok"}
