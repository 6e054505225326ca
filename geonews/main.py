"""
GeoNews API — Application entry point.

Bootstraps FastAPI, wires up middleware, registers route groups, and
manages the lifecycle of MongoDB, the cache and the background trending
aggregator.

Startup order: MongoDB → cache → aggregator (first rebuild runs right
away). Shutdown runs in reverse. A missing database does not stop the
app; the aggregator logs each failed rebuild and tries again on its next
tick.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from geonews.core.cache import close_cache, connect_cache
from geonews.core.config import settings
from geonews.core.database import close_mongo_connection, connect_to_mongo, require_db
from geonews.core.rate_limit import limiter
from geonews.repositories.news import NewsRepository
from geonews.routes.health import router as health_router
from geonews.routes.news import router as news_router
from geonews.services.popularity import PopularityAggregator, snapshot_store

# ─── Logging ───────────────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


def build_aggregator() -> PopularityAggregator:
    return PopularityAggregator(
        lambda: NewsRepository(require_db()),
        snapshot_store,
        window_hours=settings.trending_window_hours,
        decay_seconds=settings.trending_decay_seconds,
        refresh_seconds=settings.trending_refresh_seconds,
    )


# ─── Lifespan ──────────────────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting GeoNews API (env: %s)", settings.environment)
    await connect_to_mongo()
    await connect_cache()
    aggregator = build_aggregator()
    aggregator.start()
    app.state.aggregator = aggregator
    yield
    logger.info("Shutting down GeoNews API")
    await aggregator.stop()
    await close_cache()
    await close_mongo_connection()


# ─── App ───────────────────────────────────────────────────────────────────────
app = FastAPI(
    title="GeoNews API",
    description=(
        "Location-aware news: trending articles blended with distance, "
        "natural-language search with AI summaries, and browse endpoints."
    ),
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.environment != "production" else None,
    redoc_url="/redoc" if settings.environment != "production" else None,
)


# ─── Rate limiting ─────────────────────────────────────────────────────────────
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# ─── Middleware ─────────────────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ─── Routes ────────────────────────────────────────────────────────────────────
app.include_router(health_router, prefix="/health", tags=["health"])
app.include_router(news_router)


@app.get("/", tags=["root"])
async def root():
    """API root — basic metadata."""
    return {
        "name": "GeoNews API",
        "version": "0.1.0",
        "status": "running",
        "environment": settings.environment,
        "docs": "/docs",
    }
