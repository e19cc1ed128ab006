"""FastAPI application for InvoiceAgent.

Provides the main application instance with routers, middleware, and the
domain exception handler configured.
"""

import logging
import os
import sys
import time as _time
from contextlib import asynccontextmanager
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as _pkg_version

from fastapi import Depends, FastAPI, Request

# Configure logging to stdout for uvicorn to capture
logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s:%(name)s:%(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logging.getLogger("src").setLevel(logging.INFO)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.api.middleware.auth import maybe_require_api_key
from src.api.routes import ai, auth, conversations, email, quickbooks
from src.config import get_settings
from src.db.connection import close_db, init_db
from src.errors import DomainError
from src.services.quickbooks_auth import TokenManager
from src.services.service_provider import get_token_manager, shutdown_services

logger = logging.getLogger(__name__)

_startup_time: float = 0.0


def _parse_allowed_origins() -> list[str]:
    """Parse comma-separated CORS allowlist from ALLOWED_ORIGINS env var."""
    raw = os.environ.get("ALLOWED_ORIGINS", "").strip()
    if not raw:
        return []
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Async lifespan: create tables on startup, close clients on shutdown."""
    global _startup_time

    _startup_time = _time.time()
    init_db()

    settings = get_settings()
    if not settings.oauth_configured:
        logger.warning(
            "QuickBooks OAuth is not configured; /auth/quickbooks will fail until "
            "QUICKBOOKS_CLIENT_ID, QUICKBOOKS_CLIENT_SECRET and QUICKBOOKS_REDIRECT_URI are set."
        )
    logger.info(
        "InvoiceAgent started (QuickBooks %s, model %s)",
        settings.quickbooks_environment,
        settings.agent_model,
    )

    yield

    await shutdown_services()
    close_db()


app = FastAPI(
    title="InvoiceAgent API",
    description="Natural language invoice management for QuickBooks Online",
    version="0.1.0",
    lifespan=lifespan,
)

# Optional API auth for /api/* when INVOICEAGENT_API_KEY is configured.
app.middleware("http")(maybe_require_api_key)

# CORS allowlist is env-driven. If unset, CORS is disabled (same-origin only).
allowed_origins = _parse_allowed_origins()
if allowed_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-API-Key", "Cache-Control"],
    )


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    """Render every DomainError as ``{"error", "details"?}`` with its status."""
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


app.include_router(auth.router)
app.include_router(quickbooks.router, prefix="/api")
app.include_router(ai.router, prefix="/api")
app.include_router(conversations.router, prefix="/api")
app.include_router(email.router, prefix="/api")


@app.get("/health")
def health_check(tokens: TokenManager = Depends(get_token_manager)) -> dict:
    """Health check endpoint with connection status."""
    uptime = int(_time.time() - _startup_time) if _startup_time else 0
    try:
        version = _pkg_version("invoiceagent")
    except PackageNotFoundError:
        version = "unknown"
    return {
        "status": "healthy",
        "version": version,
        "uptime_seconds": uptime,
        "quickbooks_connected": tokens.is_connected(),
    }
