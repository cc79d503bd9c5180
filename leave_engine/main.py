"""Leave Engine — FastAPI Application Factory."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from leave_engine.common.cache import BalanceCache, build_balance_cache
from leave_engine.common.exceptions import register_exception_handlers
from leave_engine.common.rate_limit import limiter
from leave_engine.config import settings
from leave_engine.leave.calculation import LeaveCalculationService
from leave_engine.leave.catalog import LeaveCatalog, load_catalog
from leave_engine.leave.router import router as leave_router

logger = logging.getLogger(__name__)


def _install_calculator(
    app: FastAPI,
    cache: Optional[BalanceCache],
    catalog: Optional[LeaveCatalog],
) -> None:
    if cache is None:
        cache = build_balance_cache(
            settings.CACHE_BACKEND,
            redis_url=settings.REDIS_URL,
            ttl_seconds=settings.BALANCE_CACHE_TTL_SECONDS,
        )
    if catalog is None:
        catalog = load_catalog(settings.LEAVE_CATALOG_PATH or None)
    app.state.balance_cache = cache
    app.state.leave_calculator = LeaveCalculationService(
        cache, catalog, cache_ttl_seconds=settings.BALANCE_CACHE_TTL_SECONDS,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    # Startup
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    if getattr(app.state, "leave_calculator", None) is None:
        _install_calculator(app, None, None)
    logger.info(
        "Leave engine started (cache=%s, environment=%s)",
        type(app.state.balance_cache).__name__, settings.ENVIRONMENT,
    )
    yield
    # Shutdown
    await app.state.balance_cache.close()
    logger.info("Leave engine stopped")


def create_app(
    *,
    cache: Optional[BalanceCache] = None,
    catalog: Optional[LeaveCatalog] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    A *cache* or *catalog* passed in is installed immediately; otherwise the
    configured ones are built at startup.
    """
    app = FastAPI(
        title="Leave Engine",
        description="Leave request lifecycle, approval workflow and balance ledger",
        version="1.0.0",
        docs_url="/api/docs" if settings.ENVIRONMENT != "production" else None,
        redoc_url="/api/redoc" if settings.ENVIRONMENT != "production" else None,
        lifespan=lifespan,
    )
    app.state.leave_calculator = None
    if cache is not None or catalog is not None:
        _install_calculator(app, cache, catalog)

    # Exception handlers (RFC 7807)
    register_exception_handlers(app)

    # Rate limiting (slowapi)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Health check (no auth)
    @app.get("/api/v1/health", tags=["system"])
    async def health_check():
        return {
            "status": "healthy",
            "version": "1.0.0",
            "environment": settings.ENVIRONMENT,
        }

    # Register routers
    app.include_router(leave_router, prefix="/api/v1/leave", tags=["leave"])

    return app


app = create_app()
