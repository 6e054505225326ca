"""
Health check endpoint.

Used by:
  - Docker HEALTHCHECK / load balancers
  - Front-end to check API connectivity

The API answers 200 even when MongoDB or Redis are down so callers can
tell "API down" apart from "API up, dependency degraded". The trending
block reports which popularity snapshot requests are currently ranked
against.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter
from pydantic import BaseModel

from geonews.core import database as db_module
from geonews.core.cache import cache_client
from geonews.core.config import settings
from geonews.services.popularity import snapshot_store

logger = logging.getLogger(__name__)
router = APIRouter()


class TrendingStatus(BaseModel):
    snapshot_version: Optional[int] = None
    built_at: Optional[datetime] = None
    articles: int = 0


class HealthResponse(BaseModel):
    status: str  # Always "ok" if the API process is alive
    version: str
    database: str  # "connected" | "disconnected"
    cache: str  # "redis" | "memory"
    environment: str
    trending: TrendingStatus


@router.get("", response_model=HealthResponse, summary="API health check")
async def health_check() -> HealthResponse:
    db_status = "disconnected"
    try:
        # Access via module reference so tests can patch db_module.db_client
        if db_module.db_client.client is not None:
            await db_module.db_client.client.admin.command("ping")
            db_status = "connected"
    except Exception as exc:
        logger.warning("DB ping failed: %s", exc)

    snapshot = snapshot_store.current
    trending = TrendingStatus()
    if snapshot is not None:
        trending = TrendingStatus(
            snapshot_version=snapshot.version,
            built_at=snapshot.built_at,
            articles=len(snapshot),
        )

    return HealthResponse(
        status="ok",
        version="0.1.0",
        database=db_status,
        cache=cache_client.backend_name,
        environment=settings.environment,
        trending=trending,
    )
