"""
news.py — MongoDB access for articles and user events.

All queries the core needs from the persistent store live here so the
services can be exercised against an in-memory stand-in:

  keyword match      — case-insensitive substring on title OR description
  full-text search   — $text against the article_search_text index; every
                       term must match (each is sent as a quoted phrase)
  nearby             — $geoNear on the location 2dsphere index
  browse             — category / min score / source, paginated
  trending inputs    — every article + events newer than a cutoff
  events             — existence check + append

Articles are keyed by their opaque string id in `_id`. A lost connection
(ConnectionFailure, incl. server selection timeouts) is re-raised as
DatabaseUnavailableError so routes can answer 503.
"""

import functools
import logging
import re
from datetime import datetime
from typing import Any

from pymongo.errors import ConnectionFailure

from geonews.core.database import ARTICLES, USER_EVENTS
from geonews.core.errors import DatabaseUnavailableError
from geonews.models.news import Article, article_from_doc
from geonews.services.geo import EARTH_RADIUS_M, to_geojson_point

logger = logging.getLogger(__name__)

_ARTICLE_FIELDS = {
    "title": 1, "description": 1, "url": 1, "publication_date": 1,
    "source_name": 1, "category": 1, "relevance_score": 1,
    "latitude": 1, "longitude": 1,
}


def _db_call(func):
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except ConnectionFailure as exc:
            logger.error("MongoDB unreachable in %s: %s", func.__name__, exc)
            raise DatabaseUnavailableError(f"MongoDB unreachable: {exc}") from exc

    return wrapper


def text_search_terms(query: str) -> str:
    """
    $search string requiring every term.

    >>> text_search_terms('paris flood')
    '"paris" "flood"'
    """
    terms = (t.replace('"', "") for t in query.split())
    return " ".join(f'"{t}"' for t in terms if t)


class NewsRepository:
    """Thin async wrapper over the Motor database handle."""

    def __init__(self, db) -> None:
        self.db = db

    @property
    def articles(self):
        return self.db[ARTICLES]

    @property
    def events(self):
        return self.db[USER_EVENTS]

    # ── Query pipeline ────────────────────────────────────────────────────────

    @_db_call
    async def find_by_keywords(self, keywords: list[str], limit: int = 5) -> list[Article]:
        """Union of substring matches for every keyword, best relevance first."""
        if not keywords:
            return []
        conditions: list[dict[str, Any]] = []
        for kw in keywords:
            pattern = {"$regex": re.escape(kw), "$options": "i"}
            conditions.append({"title": pattern})
            conditions.append({"description": pattern})
        cursor = (
            self.articles.find({"$or": conditions}, _ARTICLE_FIELDS)
            .sort("relevance_score", -1)
            .limit(limit)
        )
        return [article_from_doc(d) for d in await cursor.to_list(length=limit)]

    @_db_call
    async def search_text(self, query: str, page: int = 1, limit: int = 5) -> tuple[list[Article], int]:
        """Full-text relevance search over title + description."""
        criteria = {"$text": {"$search": text_search_terms(query)}}
        projection = {**_ARTICLE_FIELDS, "text_score": {"$meta": "textScore"}}
        cursor = (
            self.articles.find(criteria, projection)
            .sort([("text_score", {"$meta": "textScore"}), ("relevance_score", -1)])
            .skip((page - 1) * limit)
            .limit(limit)
        )
        docs = await cursor.to_list(length=limit)
        total = await self.articles.count_documents(criteria)
        return [article_from_doc(d) for d in docs], total

    # ── Browse ────────────────────────────────────────────────────────────────

    async def _paginate(self, criteria: dict, sort: list, page: int, limit: int) -> tuple[list[Article], int]:
        cursor = (
            self.articles.find(criteria, _ARTICLE_FIELDS)
            .sort(sort)
            .skip((page - 1) * limit)
            .limit(limit)
        )
        docs = await cursor.to_list(length=limit)
        total = await self.articles.count_documents(criteria)
        return [article_from_doc(d) for d in docs], total

    @_db_call
    async def find_by_category(self, category: str, page: int, limit: int) -> tuple[list[Article], int]:
        return await self._paginate(
            {"category": category}, [("publication_date", -1)], page, limit
        )

    @_db_call
    async def find_by_min_score(self, min_score: float, page: int, limit: int) -> tuple[list[Article], int]:
        return await self._paginate(
            {"relevance_score": {"$gte": min_score}}, [("relevance_score", -1)], page, limit
        )

    @_db_call
    async def find_by_source(self, source: str, page: int, limit: int) -> tuple[list[Article], int]:
        criteria = {"source_name": {"$regex": f"^{re.escape(source)}$", "$options": "i"}}
        return await self._paginate(criteria, [("publication_date", -1)], page, limit)

    @_db_call
    async def find_nearby(
        self, lat: float, lon: float, radius_m: float, page: int, limit: int
    ) -> tuple[list[Article], int]:
        """Articles within radius_m of the point, nearest first."""
        pipeline = [
            {
                "$geoNear": {
                    "near": to_geojson_point(lat, lon),
                    "distanceField": "distance",
                    "maxDistance": radius_m,
                    "spherical": True,
                }
            },
            {"$skip": (page - 1) * limit},
            {"$limit": limit},
        ]
        docs = await self.articles.aggregate(pipeline).to_list(length=limit)
        total = await self.articles.count_documents({
            "location": {
                "$geoWithin": {"$centerSphere": [[lon, lat], radius_m / EARTH_RADIUS_M]}
            }
        })
        return [article_from_doc(d) for d in docs], total

    # ── Trending inputs ───────────────────────────────────────────────────────

    @_db_call
    async def list_articles(self) -> list[Article]:
        cursor = self.articles.find({}, _ARTICLE_FIELDS).sort("_id", 1)
        return [article_from_doc(d) for d in await cursor.to_list(length=None)]

    @_db_call
    async def events_since(self, cutoff: datetime) -> list[dict]:
        """Raw {article_id, event_type, created_at} docs newer than cutoff."""
        cursor = self.events.find(
            {"created_at": {"$gt": cutoff}},
            {"_id": 0, "article_id": 1, "event_type": 1, "created_at": 1},
        )
        return await cursor.to_list(length=None)

    # ── Events ────────────────────────────────────────────────────────────────

    @_db_call
    async def article_exists(self, article_id: str) -> bool:
        return await self.articles.find_one({"_id": article_id}, {"_id": 1}) is not None

    @_db_call
    async def insert_event(self, doc: dict) -> None:
        await self.events.insert_one(doc)
