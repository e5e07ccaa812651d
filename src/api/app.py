"""
FastAPI application for the ad catalog.

Wraps the synchronous AdCatalog with an async HTTP API. Catalog calls do
blocking I/O and CPU-bound work (Sheets, Redis, FAISS, the embedding
model), so handlers use run_in_executor to keep the event loop free.

The lifespan restores the vector index from disk and starts the refresh
scheduler, which also performs the initial fetch.

Usage:
    from src.api.app import create_app
    app = create_app()

    # Or run directly:
    # uvicorn src.api.app:app --reload
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .middleware import RateLimitMiddleware, RequestLoggingMiddleware
from .models import (
    AdsResponse,
    ErrorResponse,
    HealthResponse,
    MessageResponse,
    RefreshResponse,
    SearchRequest,
    SearchResponse,
)
from ..adsearch import AdCatalog, RefreshScheduler, Settings, ValidationError, build_catalog

logger = logging.getLogger(__name__)

# Global catalog instance (set during lifespan)
_catalog: Optional[AdCatalog] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the catalog and start scheduled refresh on startup."""
    global _catalog

    settings: Settings = app.state.settings
    logger.info("Starting ad catalog (index_dir=%s)...", settings.index_dir)

    loop = asyncio.get_running_loop()
    catalog = await loop.run_in_executor(None, build_catalog, settings)
    loaded = await loop.run_in_executor(None, catalog.load)
    if loaded:
        logger.info("Vector index loaded successfully")
    else:
        logger.warning("Search running in degraded mode (keyword-only) until first refresh")

    _catalog = catalog

    scheduler = None
    if app.state.schedule_refresh:
        logger.info("Performing initial data fetch, then every %ss", settings.refresh_interval)
        scheduler = RefreshScheduler(
            catalog.refresh,
            interval=settings.refresh_interval,
            timeout=settings.refresh_timeout,
        )
        scheduler.start()

    yield

    logger.info("Shutting down ad catalog")
    if scheduler is not None:
        await scheduler.stop()
    catalog.store.backend.close()
    _catalog = None


def get_catalog() -> AdCatalog:
    """FastAPI dependency: the running catalog, or 503 before startup finishes."""
    if _catalog is None:
        raise HTTPException(status_code=503, detail="Catalog not initialized")
    return _catalog


def create_app(
    settings: Optional[Settings] = None,
    schedule_refresh: bool = True,
) -> FastAPI:
    """
    Application factory.

    Args:
        settings: Runtime configuration; defaults to ``Settings.from_env()``
        schedule_refresh: Start the timer-driven refresh (and the initial
            fetch) with the app
    """
    if settings is None:
        settings = Settings.from_env()

    app = FastAPI(
        title="Ad Catalog Search API",
        description="Campaign ad catalog with semantic search and keyword fallback",
        version="1.0.0",
        lifespan=lifespan,
        responses={
            400: {"model": ErrorResponse},
            429: {"model": ErrorResponse},
            500: {"model": ErrorResponse},
            503: {"model": ErrorResponse},
        },
    )

    app.state.settings = settings
    app.state.schedule_refresh = schedule_refresh

    # Middleware execution order (outermost first):
    #   Logging → CORS → RateLimit → App
    # add_middleware prepends, so we add in reverse order.
    if settings.rate_limit_rpm > 0:
        app.add_middleware(RateLimitMiddleware, requests_per_minute=settings.rate_limit_rpm)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_middleware(RequestLoggingMiddleware)

    _register_routes(app)
    _register_exception_handlers(app)

    return app


# =========================================================================
# Route registration
# =========================================================================


def _register_routes(app: FastAPI) -> None:
    """Attach all route handlers to the app."""

    @app.get("/api/ads", response_model=AdsResponse)
    async def get_ads(catalog: AdCatalog = Depends(get_catalog)) -> AdsResponse:
        """Full catalog, from cache or a fresh fetch on a miss."""
        loop = asyncio.get_running_loop()
        try:
            ads = await loop.run_in_executor(None, catalog.get_ads)
        except Exception:
            logger.exception("Error in /api/ads")
            raise HTTPException(status_code=500, detail="Failed to fetch ads data")
        return AdsResponse(data=[ad.to_public() for ad in ads])

    @app.post("/api/search", response_model=SearchResponse)
    async def search(
        request: SearchRequest,
        catalog: AdCatalog = Depends(get_catalog),
    ) -> SearchResponse:
        """
        Hybrid search.

        Vector search over the index, keyword scoring over the cached
        catalog when vector search fails or finds nothing.
        """
        loop = asyncio.get_running_loop()
        try:
            resp = await loop.run_in_executor(None, catalog.search, request.query, request.limit)
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except Exception:
            logger.exception("Error in /api/search")
            raise HTTPException(status_code=500, detail="Failed to perform search")
        return SearchResponse.from_internal(resp)

    @app.post("/api/refresh", response_model=RefreshResponse)
    async def refresh(catalog: AdCatalog = Depends(get_catalog)) -> RefreshResponse:
        """Force a refresh from the source."""
        loop = asyncio.get_running_loop()
        try:
            ads = await loop.run_in_executor(None, catalog.refresh)
        except Exception:
            logger.exception("Error in /api/refresh")
            raise HTTPException(status_code=500, detail="Failed to refresh ads data")
        return RefreshResponse(count=len(ads))

    @app.post("/api/clear-cache", response_model=MessageResponse)
    async def clear_cache(catalog: AdCatalog = Depends(get_catalog)) -> MessageResponse:
        """Drop the cached snapshot."""
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, catalog.clear_cache)
        except Exception:
            logger.exception("Error in /api/clear-cache")
            raise HTTPException(status_code=500, detail="Failed to clear cache")
        return MessageResponse(message="Cache cleared successfully")

    @app.get("/api/stats")
    async def get_stats(catalog: AdCatalog = Depends(get_catalog)) -> dict:
        """Index and refresh statistics."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, catalog.get_stats)

    @app.get("/health", response_model=HealthResponse)
    async def health_check() -> HealthResponse:
        """Health check endpoint."""
        if _catalog is None:
            return HealthResponse(status="degraded", index_loaded=False, degraded=True)

        degraded = _catalog.degraded
        return HealthResponse(
            status="healthy" if not degraded else "degraded",
            index_loaded=not degraded,
            degraded=degraded,
            index_generation=_catalog.index_manager.generation,
        )


# =========================================================================
# Exception handlers
# =========================================================================

_STATUS_CODES = {
    400: "VALIDATION_ERROR",
    404: "NOT_FOUND",
    422: "VALIDATION_ERROR",
    429: "RATE_LIMITED",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
}


def _register_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": {
                    "code": _STATUS_CODES.get(exc.status_code, "UNKNOWN_ERROR"),
                    "message": exc.detail,
                }
            },
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception")
        return JSONResponse(
            status_code=500,
            content={
                "error": {
                    "code": "INTERNAL_ERROR",
                    "message": "An unexpected error occurred",
                }
            },
        )


# =========================================================================
# Default app instance (for `uvicorn src.api.app:app`)
# =========================================================================

app = create_app()
