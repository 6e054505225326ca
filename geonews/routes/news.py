"""
news.py — News routes: trending, natural-language query, events, browse.

Routes (all under /api/v1/news):
  GET  /trending   — top-N trending articles blended with the caller's location
  POST /query      — natural-language query → ≤ 5 summarised articles
  POST /events     — record a view / click (feeds trending)
  GET  /category   — paginated, newest first
  GET  /score      — paginated, relevance_score ≥ min_score
  GET  /search     — paginated full-text search
  GET  /source     — paginated, case-insensitive source name
  GET  /nearby     — paginated, within radius (km), nearest first

Services raise typed errors from geonews.core.errors; this module is the
only place they become HTTP status codes:
  InvalidInputError → 422, UnknownArticleError → 404,
  OracleError → 502, DatabaseUnavailableError → 503.
An empty result is a 404 with a descriptive message, never a 500.
"""

import logging
import math
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from geonews.ai.gemini_client import gemini_client
from geonews.ai.query_pipeline import QueryPipeline, default_strategies
from geonews.core.cache import Cache, get_cache
from geonews.core.config import settings
from geonews.core.database import get_db
from geonews.core.errors import (
    DatabaseUnavailableError,
    GeoNewsError,
    InvalidInputError,
    OracleError,
    UnknownArticleError,
)
from geonews.core.rate_limit import limiter
from geonews.models.news import (
    Article,
    ArticlesResponse,
    EnrichedArticlesResponse,
    EventRequest,
    EventResponse,
    QueryRequest,
    ResponseMetadata,
)
from geonews.repositories.news import NewsRepository
from geonews.services.browse import BrowseService
from geonews.services.events import EventRecorder
from geonews.services.popularity import snapshot_store
from geonews.services.ranking import RankingResolver, TrendingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/news", tags=["news"])

_NOT_FOUND = "No data found for current input, try again with different input parameters"


# ── Dependencies ──────────────────────────────────────────────────────────────

def get_repository(db=Depends(get_db)) -> NewsRepository:
    if db is None:
        raise HTTPException(status_code=503, detail="Database unavailable")
    return NewsRepository(db)


def get_oracle():
    """Language oracle for the query pipeline; overridden in tests."""
    return gemini_client


def get_trending_service(cache: Cache = Depends(get_cache)) -> TrendingService:
    resolver = RankingResolver(snapshot_store, settings.trending_distance_scale_m)
    return TrendingService(
        resolver,
        cache,
        ttl=settings.trending_cache_ttl,
        precision=settings.geo_bucket_precision,
    )


def get_query_pipeline(
    repository: NewsRepository = Depends(get_repository),
    cache: Cache = Depends(get_cache),
    oracle=Depends(get_oracle),
) -> QueryPipeline:
    return QueryPipeline(
        oracle,
        cache,
        default_strategies(repository),
        timeout=settings.oracle_timeout_seconds,
        query_ttl=settings.query_cache_ttl,
        summary_ttl=settings.summary_cache_ttl,
    )


# ── Helpers ───────────────────────────────────────────────────────────────────

def _to_http(exc: GeoNewsError) -> HTTPException:
    if isinstance(exc, UnknownArticleError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, InvalidInputError):
        return HTTPException(status_code=422, detail=str(exc))
    if isinstance(exc, OracleError):
        return HTTPException(status_code=502, detail=f"AI query analysis failed: {exc}")
    if isinstance(exc, DatabaseUnavailableError):
        return HTTPException(status_code=503, detail="Database unavailable")
    return HTTPException(status_code=500, detail=str(exc))


def _paged(articles: list[Article], total: int, query: dict, page: int, limit: int) -> ArticlesResponse:
    if not articles:
        raise HTTPException(status_code=404, detail=_NOT_FOUND)
    return ArticlesResponse(
        metadata=ResponseMetadata(
            query=query,
            total=total,
            page=page,
            limit=limit,
            total_pages=math.ceil(total / limit),
        ),
        articles=articles,
    )


# ── Trending ──────────────────────────────────────────────────────────────────

@router.get("/trending", response_model=ArticlesResponse)
async def get_trending(
    lat: float = Query(..., ge=-90, le=90),
    lon: float = Query(..., ge=-180, le=180),
    limit: int = Query(default=5, ge=1, le=50),
    service: TrendingService = Depends(get_trending_service),
):
    """
    Trending articles personalised to (lat, lon).

    Served from the geo-bucketed cache when warm; otherwise ranked from the
    latest popularity snapshot (refreshed every few minutes in the
    background, never on the request path).
    """
    try:
        rows = await service.get_trending(lat, lon, limit)
    except GeoNewsError as exc:
        raise _to_http(exc)

    if not rows:
        raise HTTPException(
            status_code=404,
            detail="No trending articles found for the current location, "
                   "try again with different coordinates or by recording a few user events",
        )
    return ArticlesResponse(
        metadata=ResponseMetadata(
            query={"lat": lat, "lon": lon, "limit": limit},
            total=len(rows),
            page=1,
            limit=len(rows),
            total_pages=1,
        ),
        articles=[Article.model_validate(r) for r in rows],
    )


# ── Natural-language query ────────────────────────────────────────────────────

@router.post("/query", response_model=EnrichedArticlesResponse)
@limiter.limit("20/minute")
async def query_news(
    request: Request,
    payload: QueryRequest,
    pipeline: QueryPipeline = Depends(get_query_pipeline),
):
    """Resolve a free-text query into at most five summarised articles."""
    try:
        rows = await pipeline.resolve(payload.query, payload.lat, payload.lon)
    except GeoNewsError as exc:
        logger.warning("Query %r rejected: %s", payload.query, exc)
        raise _to_http(exc)

    if not rows:
        raise HTTPException(status_code=404, detail=_NOT_FOUND)
    return EnrichedArticlesResponse(articles=rows)


# ── Events ────────────────────────────────────────────────────────────────────

@router.post("/events", response_model=EventResponse, status_code=201)
@limiter.limit("120/minute")
async def create_event(
    request: Request,
    payload: EventRequest,
    repository: NewsRepository = Depends(get_repository),
):
    """Record a view / click. Unknown article ids are rejected with 404."""
    try:
        event = await EventRecorder(repository).record(
            payload.event_type, payload.article_id, payload.user_id, payload.lat, payload.lon
        )
    except GeoNewsError as exc:
        raise _to_http(exc)
    return EventResponse(message="Event logged", id=event.id)


# ── Browse ────────────────────────────────────────────────────────────────────

@router.get("/category", response_model=ArticlesResponse)
async def by_category(
    category: str = Query(..., min_length=1),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=5, ge=1, le=100),
    repository: NewsRepository = Depends(get_repository),
):
    try:
        articles, total = await BrowseService(repository).by_category(category, page, limit)
    except GeoNewsError as exc:
        raise _to_http(exc)
    return _paged(articles, total, {"category": category}, page, limit)


@router.get("/score", response_model=ArticlesResponse)
async def by_score(
    min_score: float = Query(..., ge=0, le=1),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=5, ge=1, le=100),
    repository: NewsRepository = Depends(get_repository),
):
    try:
        articles, total = await BrowseService(repository).by_score(min_score, page, limit)
    except GeoNewsError as exc:
        raise _to_http(exc)
    return _paged(articles, total, {"min_score": min_score}, page, limit)


@router.get("/search", response_model=ArticlesResponse)
async def search(
    q: str = Query(..., min_length=1),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=5, ge=1, le=100),
    repository: NewsRepository = Depends(get_repository),
):
    try:
        articles, total = await BrowseService(repository).search(q, page, limit)
    except GeoNewsError as exc:
        raise _to_http(exc)
    return _paged(articles, total, {"q": q}, page, limit)


@router.get("/source", response_model=ArticlesResponse)
async def by_source(
    source: str = Query(..., min_length=1),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=5, ge=1, le=100),
    repository: NewsRepository = Depends(get_repository),
):
    try:
        articles, total = await BrowseService(repository).by_source(source, page, limit)
    except GeoNewsError as exc:
        raise _to_http(exc)
    return _paged(articles, total, {"source": source}, page, limit)


@router.get("/nearby", response_model=ArticlesResponse)
async def nearby(
    lat: float = Query(..., ge=-90, le=90),
    lon: float = Query(..., ge=-180, le=180),
    radius: float = Query(default=10, gt=0, le=20000, description="Radius in km"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=5, ge=1, le=100),
    repository: NewsRepository = Depends(get_repository),
):
    try:
        articles, total = await BrowseService(repository).nearby(lat, lon, radius, page, limit)
    except GeoNewsError as exc:
        raise _to_http(exc)
    query: dict[str, Optional[float]] = {"lat": lat, "lon": lon, "radius": radius}
    return _paged(articles, total, query, page, limit)
