"""Runpad - Main Application

Live Python scratchpad engine.

Features:
- Run scripts in a sandboxed context with console output streamed live,
  each event tagged with the script line that produced it
- Top-level await and setTimeout/setInterval style timers
- Dependency store: install/uninstall PyPI distributions that scripts can import
- HTTP API, WebSocket output stream and MCP tools over one shared session
"""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from runpad import __version__
from runpad.auth import verify_api_key
from runpad.config import settings
from runpad.mcp_server import mcp
from runpad.routes import execute, health, packages, stream

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format='%(asctime)s | %(name)s | %(levelname)s | %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle management"""
    # --- STARTUP ---
    logger.info("=" * 60)
    logger.info(f"Runpad v{__version__} starting...")
    logger.info("=" * 60)

    settings.ensure_directories()

    logger.info("Runpad ready!")
    logger.info(f"  Dependency store: {settings.STORE_DIR}")
    logger.info(f"  Max execution time: {settings.MAX_EXECUTION_TIME}s")
    logger.info(f"  Install timeout: {settings.INSTALL_TIMEOUT}s")
    logger.info(f"  Supersede runs: {settings.SUPERSEDE_RUNS}")
    logger.info(f"  API key: {'configured' if settings.API_KEY else 'NOT SET (dev mode)'}")
    logger.info("  Output stream: WS /ws/output")
    logger.info("  MCP SSE transport: GET /mcp/sse")

    yield

    # --- SHUTDOWN ---
    logger.info("Runpad shutting down...")


app = FastAPI(
    title="Runpad",
    description=(
        "Live Python scratchpad engine. Run scripts in a sandbox, stream their "
        "console output with source lines, and manage importable packages."
    ),
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# ROUTE MOUNTING
# =============================================================================

# --- PUBLIC ROUTES (no auth) ---
app.include_router(health.router, tags=["Health"])

# --- OUTPUT STREAM (checks the API key itself) ---
app.include_router(stream.router, tags=["Stream"])

# --- PROTECTED ROUTES (API key required) ---
app.include_router(
    execute.router,
    prefix="/api",
    tags=["Execute"],
    dependencies=[Depends(verify_api_key)],
)
app.include_router(
    packages.router,
    prefix="/api",
    tags=["Packages"],
    dependencies=[Depends(verify_api_key)],
)

# --- MCP SSE TRANSPORT ---
app.mount("/mcp", mcp.sse_app())
