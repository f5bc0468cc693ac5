"""roomcast Backend Application.

This is the main entry point for the roomcast backend service: real-time
multi-room group and private messaging over WebSockets.

Modules:
    - chat: sessions, rooms, presence, message mutations and broadcasting
    - config: YAML-backed settings
"""
import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from roomcast.chat.hub import ChatHub, get_hub
from roomcast.chat.introspection_router import router as introspection_router
from roomcast.chat.router import router as chat_router
from roomcast.config import get_config

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Per-request access lines drown the chat event logs.
for _noisy in ("uvicorn.access", "httpx", "httpcore"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

# Seconds between typing-expiry sweeps (only when a timeout is configured)
TYPING_SWEEP_INTERVAL = 1.0


async def _typing_expiry_loop(hub: ChatHub, interval: float) -> None:
    """Periodically clear stale typing flags."""
    while True:
        await asyncio.sleep(interval)
        try:
            await hub.expire_typing()
        except Exception as exc:
            logger.warning("Typing expiry sweep failed: %s", exc)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    # Apply configured log level to root logger so that
    # `logging.level: "debug"` in roomcast.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    hub = get_hub()
    logger.info(
        "Chat hub ready: default_room=%s typing_scope=%s reaction_policy=%s",
        hub.settings.default_room,
        hub.settings.typing_scope,
        hub.settings.reaction_policy,
    )

    sweeper = None
    if hub.settings.typing_timeout_seconds > 0:
        interval = min(TYPING_SWEEP_INTERVAL, hub.settings.typing_timeout_seconds)
        sweeper = asyncio.create_task(_typing_expiry_loop(hub, interval))
        logger.info(
            "Typing expiry enabled: timeout=%ss", hub.settings.typing_timeout_seconds
        )

    yield  # Application runs here

    # Shutdown
    if sweeper is not None:
        sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper
    logger.info("Application shutdown complete")


# Create FastAPI application with metadata
app = FastAPI(
    title="roomcast API",
    description="Real-time multi-room chat backend",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config().server.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

# Register all routers
app.include_router(chat_router)
app.include_router(introspection_router)


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object indicating the server is running.
    """
    return {"status": "ok"}
