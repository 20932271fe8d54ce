"""
FastAPI application for the PreSocial service.

This module initializes and configures the FastAPI application that serves
the social API endpoints, and owns the cache, storage and upstream clients
for the lifetime of the process.
"""

import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from presocial.config.settings import settings
from presocial.api.endpoints import social
from presocial.api.rate_limit import RateLimiter, RateLimitMiddleware, search_rate_limiter
from presocial.core.cache import CacheStore, CacheTTL
from presocial.core.ledger import DirtyLedger
from presocial.integrations.identity import IdentityVerifier
from presocial.integrations.lemmy import LemmyClient
from presocial.utils.logging_utils import setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager for startup and shutdown events.

    Creates the cache, the vote/bookmark ledger and the upstream clients on
    startup and stores them on ``app.state``; flushes and closes them on shutdown.
    """
    setup_logging(settings.LOGGING_CONFIG_PATH)
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    app.state.started_at = time.monotonic()
    app.state.cache = CacheStore.from_settings(settings)
    app.state.cache_ttl = CacheTTL.from_settings(settings)

    app.state.ledger = DirtyLedger.from_settings(settings)
    await app.state.ledger.start()
    app.state.ledger.install_signal_handlers()
    storage_stats = app.state.ledger.stats()
    logger.info(
        f"Storage initialized ({storage_stats['users']} users, {storage_stats['total_votes']} votes, "
        f"{storage_stats['total_bookmarks']} bookmarks)"
    )

    app.state.lemmy = LemmyClient.from_settings(settings)
    app.state.verifier = IdentityVerifier.from_settings(settings)
    logger.info(
        "JWT verification: "
        + ("local (JWT_SECRET configured)" if app.state.verifier.local_enabled else "remote (PreSuite API)")
    )

    instance = await app.state.lemmy.get_instance_info()
    if instance:
        logger.info(f"Lemmy connected: {instance['name']} (v{instance['version']})")
    else:
        logger.warning("Lemmy connection failed. Server will start but some features may be unavailable")

    yield

    # Shutdown
    logger.info("Shutting down application")
    try:
        await app.state.ledger.stop()
    except Exception as e:
        logger.error(f"Error stopping storage: {e}", exc_info=True)
    await app.state.cache.close()
    await app.state.lemmy.close()
    await app.state.verifier.close()


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        FastAPI: Configured FastAPI application instance.
    """
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description=settings.APP_DESCRIPTION,
        debug=settings.DEBUG,
        lifespan=lifespan,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
        openapi_tags=[
            {"name": "social", "description": "Community search, votes, bookmarks and comments"},
            {"name": "health", "description": "Health check and monitoring"},
        ],
    )

    if settings.RATE_LIMIT_ENABLED:
        app.add_middleware(
            RateLimitMiddleware,
            limiter=RateLimiter.from_settings(settings),
            path_prefix="/api",
            route_limiters={"/api/social/search": search_rate_limiter()},
        )

    # Added last so CORS headers are present on rate-limited responses too
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS if not settings.DEBUG else ["*"],
        allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
        allow_methods=settings.CORS_ALLOW_METHODS,
        allow_headers=settings.CORS_ALLOW_HEADERS,
        expose_headers=settings.CORS_EXPOSE_HEADERS,
        max_age=settings.CORS_MAX_AGE,
    )

    app.include_router(social.router, prefix="/api/social", tags=["social"])

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404 and exc.detail == "Not Found":
            content = {"error": "Not Found", "message": f"Route {request.method} {request.url.path} not found"}
        else:
            content = {"error": exc.detail}
        return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal Server Error",
                "message": str(exc) if settings.DEBUG else "An unexpected error occurred",
            },
        )

    @app.get("/", tags=["health"])
    async def root():
        return {
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "description": settings.APP_DESCRIPTION,
            "endpoints": {
                "search": "GET /api/social/search?q=<query>",
                "post": "GET /api/social/post/:id",
                "communities": "GET /api/social/communities",
                "trending": "GET /api/social/trending",
                "health": "GET /api/social/health",
            },
        }

    @app.get("/health", tags=["health"], summary="Health Check")
    async def health_check(request: Request):
        """
        Service health including cache backend and storage statistics.
        """
        return {
            "status": "healthy",
            "service": "presocial",
            "version": settings.APP_VERSION,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime": round(time.monotonic() - request.app.state.started_at, 3),
            "cache": await request.app.state.cache.stats(),
            "storage": request.app.state.ledger.stats(),
        }

    return app


# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("presocial.api.main:app", host=settings.API_HOST, port=settings.API_PORT)
