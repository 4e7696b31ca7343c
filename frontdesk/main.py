from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.routing import Mount

from frontdesk.config import get_settings
from frontdesk.dependencies.services import get_backend_client_cached, get_dashboard_cached

# Import routers directly from submodules
from frontdesk.tools.appointments import router as appointments_router
from frontdesk.tools.channel import router as channel_router
from frontdesk.tools.slots import router as slots_router
from frontdesk.tools.views import router as views_router
from frontdesk.mcp_server import mcp
from frontdesk.health import router as health_router


def configure_logging() -> None:
    """Ensure application logs use the INFO level by default."""
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )
    else:
        root_logger.setLevel(logging.INFO)

# Configure logging as soon as the module is loaded
configure_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Starts the reception dashboard and its event feed, and shuts them down.
    """
    # --- Startup Logic ---
    settings = get_settings()

    settings_snapshot = settings.model_dump(exclude={"backend_token"})
    logger.info("Application settings on startup: %s", settings_snapshot)

    has_mcp = any(isinstance(r, Mount) and r.path == "/mcp" for r in app.routes)
    logger.debug("MCP mount present: %s", has_mcp)

    client = get_backend_client_cached()
    dashboard = get_dashboard_cached()
    await dashboard.start()
    logger.info("Application startup complete.")

    try:
        yield  # The application is now running
    finally:
        # --- Shutdown Logic ---
        await dashboard.stop()
        logger.info("Closing salon backend connection.")
        await client.close()
        logger.info("Application shutdown complete.")


# --- Application Setup ---

settings = get_settings()
app = FastAPI(
    title=settings.app_name,
    lifespan=lifespan,
    redirect_slashes=False
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[str(origin).rstrip("/") for origin in settings.cors_origins],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Include Routers and Mounts ---

app.include_router(slots_router, prefix="/tools/slots")
app.include_router(views_router, prefix="/tools/views")
app.include_router(appointments_router, prefix="/tools/appointments")
app.include_router(channel_router, prefix="/tools/channel")
app.include_router(health_router)

# Mount the MCP Streamable HTTP server at /mcp
app.mount("/mcp", mcp.streamable_http_app())
