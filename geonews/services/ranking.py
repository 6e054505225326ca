"""
ranking.py — Location-personalised trending order.

    blended_score = trending_score · exp(-distance_m / 50 000)

The exponential term is a smooth, strictly decreasing attenuation: a far
article only outranks a near one when its popularity gap is large, and a
near article with little popularity still surfaces because exp(0) = 1 is
the ceiling of the attenuation, not a floor.

RankingResolver reads the current popularity snapshot only; it never
triggers a recompute. TrendingService adds the geo-bucketed cache in front.
"""

import heapq
import logging
import math
from dataclasses import dataclass

from geonews.core.cache import Cache
from geonews.models.news import Article
from geonews.services.geo import geo_bucket, haversine_m, validate_coordinates
from geonews.services.popularity import SnapshotStore

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 5
DEFAULT_DISTANCE_SCALE_M = 50000.0


def blended_score(trending_score: float, distance_m: float,
                  distance_scale_m: float = DEFAULT_DISTANCE_SCALE_M) -> float:
    return trending_score * math.exp(-distance_m / distance_scale_m)


@dataclass(frozen=True)
class RankedArticle:
    article: Article
    trending_score: float
    distance_m: float
    blended_score: float


class RankingResolver:
    def __init__(self, store: SnapshotStore,
                 distance_scale_m: float = DEFAULT_DISTANCE_SCALE_M) -> None:
        self.store = store
        self.distance_scale_m = distance_scale_m

    def rank(self, lat: float, lon: float, limit: int = DEFAULT_LIMIT) -> list[RankedArticle]:
        """
        Top `limit` articles of the current snapshot by blended score.

        Ties keep snapshot order (heapq.nlargest is stable, like sorted()).
        Returns [] until the first snapshot has been published.
        """
        validate_coordinates(lat, lon)
        if limit < 1:
            raise ValueError("limit must be >= 1")

        snapshot = self.store.current
        if snapshot is None:
            logger.warning("Trending requested before the first snapshot was published")
            return []

        ranked = []
        for entry in snapshot.entries:
            a = entry.article
            distance = haversine_m(lat, lon, a.latitude, a.longitude)
            ranked.append(RankedArticle(
                article=a,
                trending_score=entry.trending_score,
                distance_m=distance,
                blended_score=blended_score(entry.trending_score, distance, self.distance_scale_m),
            ))
        return heapq.nlargest(limit, ranked, key=lambda r: r.blended_score)


class TrendingService:
    """Cache-fronted entry point for GET /trending."""

    def __init__(self, resolver: RankingResolver, cache: Cache, *,
                 ttl: int = 300, precision: int = 2) -> None:
        self.resolver = resolver
        self.cache = cache
        self.ttl = ttl
        self.precision = precision

    def cache_key(self, lat: float, lon: float, limit: int) -> str:
        return f"trending:{geo_bucket(lat, lon, self.precision)}:{limit}"

    async def get_trending(self, lat: float, lon: float,
                           limit: int = DEFAULT_LIMIT) -> list[dict]:
        """JSON-ready articles; a cached empty list is served as-is."""
        validate_coordinates(lat, lon)
        key = self.cache_key(lat, lon, limit)

        cached = await self.cache.get(key)
        if cached is not None:
            logger.info("Serving trending from cache (%s)", key)
            return cached

        logger.info("Cache miss for trending (%s) — ranking snapshot", key)
        rows = [r.article.model_dump(mode="json") for r in self.resolver.rank(lat, lon, limit)]
        # No snapshot yet: don't pin an empty answer for a whole TTL.
        if self.resolver.store.current is not None:
            await self.cache.set(key, rows, self.ttl)
        return rows
