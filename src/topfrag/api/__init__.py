"""
TopFrag Web API

FastAPI application serving match statistics to the web client and
receiving event batches and job callbacks from the demo parser service.

This package exposes:
- app: The FastAPI application (used by uvicorn and ``topfrag serve``)
"""

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.responses import Response

from topfrag.api.shared import SHOULD_ENABLE_RATE_LIMITING, __version__, limiter
from topfrag.auth.errors import AuthRejected
from topfrag.core.config import configure_logging

configure_logging()
logger = logging.getLogger(__name__)

# =============================================================================
# FastAPI App Creation
# =============================================================================

app = FastAPI(
    title="TopFrag API",
    description=(
        "Counter-Strike demo statistics - player complexion, aim and utility "
        "analysis, clans, leaderboards and parser ingestion"
    ),
    version=__version__,
)

# =============================================================================
# CORS Configuration
# =============================================================================

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# =============================================================================
# GZip Middleware
# =============================================================================

app.add_middleware(GZipMiddleware, minimum_size=1000)

# =============================================================================
# Security Middleware
# =============================================================================


@app.middleware("http")
async def security_headers_middleware(request: Request, call_next) -> Response:
    """Add security headers to all responses."""
    response = await call_next(request)

    response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    if "/api/" in request.url.path:
        response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate"
        response.headers["Pragma"] = "no-cache"

    return response


# =============================================================================
# Rate Limiting Setup
# =============================================================================

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
if SHOULD_ENABLE_RATE_LIMITING:
    logger.info("Rate limiting enabled with X-Forwarded-For support")
else:
    logger.info("Rate limiting disabled (development mode)")

# =============================================================================
# Exception Handlers
# =============================================================================


@app.exception_handler(AuthRejected)
async def auth_rejected_handler(request: Request, exc: AuthRejected) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.body)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler to prevent information disclosure."""
    logger.exception(f"Unhandled exception for {request.method} {request.url.path}")

    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": "An unexpected error occurred. Please try again later.",
        },
    )


# =============================================================================
# Include Route Modules
# =============================================================================

from topfrag.api.routes_auth import router as auth_router  # noqa: E402
from topfrag.api.routes_clans import router as clans_router  # noqa: E402
from topfrag.api.routes_dashboard import router as dashboard_router  # noqa: E402
from topfrag.api.routes_discord import router as discord_router  # noqa: E402
from topfrag.api.routes_discord_auth import router as discord_auth_router  # noqa: E402
from topfrag.api.routes_favourites import router as favourites_router  # noqa: E402
from topfrag.api.routes_health import router as health_router  # noqa: E402
from topfrag.api.routes_matches import router as matches_router  # noqa: E402
from topfrag.api.routes_parser import router as parser_router  # noqa: E402
from topfrag.api.routes_sharecode import router as sharecode_router  # noqa: E402
from topfrag.api.routes_steam import router as steam_router  # noqa: E402
from topfrag.api.routes_upload import router as upload_router  # noqa: E402

app.include_router(auth_router)
app.include_router(clans_router)
app.include_router(dashboard_router)
app.include_router(discord_router)
app.include_router(discord_auth_router)
app.include_router(favourites_router)
app.include_router(health_router)
app.include_router(matches_router)
app.include_router(parser_router)
app.include_router(sharecode_router)
app.include_router(steam_router)
app.include_router(upload_router)
