"""
MongoDB connection management using Motor (async driver).

Architecture decision: single DatabaseClient instance shared across all
requests via a module-level singleton. FastAPI's dependency injection
(get_db) gives routes clean access without importing the singleton directly.

Collections:
  articles     — news corpus; 2dsphere index on `location`, text index
                 on title + description (the full-text search index)
  user_events  — append-only view / click events feeding trending

The connection is opened in FastAPI's lifespan (startup) and closed
on shutdown.
"""

import logging
import re

import certifi
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, GEOSPHERE, TEXT

from geonews.core.config import settings
from geonews.core.errors import DatabaseUnavailableError

logger = logging.getLogger(__name__)

ARTICLES = "articles"
USER_EVENTS = "user_events"


class DatabaseClient:
    """
    Holds the Motor client and selected database.

    A class rather than bare globals so tests can replace .client and
    .db on the shared instance.
    """

    client: AsyncIOMotorClient | None = None
    db: AsyncIOMotorDatabase | None = None


# Module-level singleton: all app code references this object
db_client = DatabaseClient()


async def connect_to_mongo() -> None:
    """
    Create the MongoDB connection and validate it with a ping.

    Fails gracefully if MongoDB is unavailable — the API still answers
    health checks and the trending aggregator keeps retrying on its own
    schedule.
    """
    logger.info("Connecting to MongoDB at %s", _redact_uri(settings.mongo_uri))
    try:
        # tz_aware: event ages are computed against an aware UTC "now"
        options = {"serverSelectionTimeoutMS": 5000, "tz_aware": True}
        # Atlas (mongodb+srv) needs certifi's CA bundle on macOS/Linux.
        if settings.mongo_uri.startswith("mongodb+srv://"):
            options["tlsCAFile"] = certifi.where()
        db_client.client = AsyncIOMotorClient(settings.mongo_uri, **options)
        db_client.db = db_client.client[settings.mongo_db_name]
        await db_client.client.admin.command("ping")
        logger.info("MongoDB connection established (db: %s)", settings.mongo_db_name)
        await ensure_indexes(db_client.db)
    except Exception as exc:
        logger.warning(
            "MongoDB unavailable at startup: %s. "
            "API running in degraded mode — DB endpoints will fail.",
            exc,
        )
        db_client.client = None
        db_client.db = None


async def close_mongo_connection() -> None:
    """Close the MongoDB connection gracefully on app shutdown."""
    if db_client.client is not None:
        db_client.client.close()
        logger.info("MongoDB connection closed")


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    """Create the geo, text and lookup indexes. Idempotent."""
    articles = db[ARTICLES]
    await articles.create_index([("location", GEOSPHERE)], name="location_2dsphere")
    await articles.create_index(
        [("title", TEXT), ("description", TEXT)],
        name="article_search_text",
        default_language="english",
    )
    await articles.create_index([("category", ASCENDING)], name="category_idx")
    await articles.create_index([("relevance_score", DESCENDING)], name="relevance_idx")
    await articles.create_index([("publication_date", DESCENDING)], name="publication_idx")

    events = db[USER_EVENTS]
    await events.create_index([("created_at", DESCENDING)], name="created_at_idx")
    await events.create_index([("article_id", ASCENDING)], name="article_id_idx")
    logger.info("MongoDB indexes ensured")


def get_db() -> AsyncIOMotorDatabase | None:
    """
    FastAPI dependency — inject the database into route handlers.

    Returns None when MongoDB is unavailable so routes can answer 503
    instead of crashing.
    """
    return db_client.db


def _redact_uri(uri: str) -> str:
    """Strip credentials from URI before logging."""
    return re.sub(r"://[^:]+:[^@]+@", "://<redacted>@", uri)


def require_db() -> AsyncIOMotorDatabase:
    """Like get_db() but raises DatabaseUnavailableError when disconnected."""
    if db_client.db is None:
        raise DatabaseUnavailableError("MongoDB is not connected")
    return db_client.db
