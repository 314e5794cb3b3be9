"""Chat Backend Application.

This is the main entry point for the real-time chat backend: user accounts,
conversations, messages and presence over a WebSocket channel, backed by an
embedded DuckDB document store.

Modules:
    - chat: live channel, connection registry, message pipeline, presence
    - storage: DuckDB-backed store for users, conversations and messages
    - users / conversations / messages: read-side HTTP endpoints
    - admin: presence overview and account management (admin only)
    - auth: verified caller identity forwarded by the upstream auth layer
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.admin.router import router as admin_router
from app.chat.errors import ChatError
from app.chat.hub import get_hub
from app.chat.router import router as chat_router
from app.config import get_config
from app.conversations.router import router as conversations_router
from app.messages.router import router as messages_router
from app.users.router import router as users_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence verbose third-party loggers.
for _noisy in (
    "uvicorn.access",
    "httpx",
    "httpcore",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    # Apply configured log level to root logger so that
    # `logging.level: "debug"` in chat.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    hub = get_hub()
    await hub.start()
    logger.info(
        f"Chat backend ready on http://{config.server.host}:{config.server.port} "
        f"(presence sweep every {config.presence.sweep_interval_seconds}s, "
        f"enabled={config.presence.sweep_enabled})"
    )

    yield  # Application runs here

    # Shutdown
    await hub.stop()
    logger.info("Application shutdown complete")


# Create FastAPI application with metadata
app = FastAPI(
    title="Chat API",
    description="Real-time chat backend with presence and live delivery",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config().server.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ChatError)
async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    """Map chat core errors onto their HTTP status codes."""
    return JSONResponse({"error": exc.message}, status_code=exc.status_code)


# Register all routers
app.include_router(chat_router)
app.include_router(users_router)
app.include_router(conversations_router)
app.include_router(messages_router)
app.include_router(admin_router)


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object with the number of users online in this process.
    """
    return {"status": "ok", "online": get_hub().registry.online_count()}
