"""
pytest configuration and shared fixtures for the GeoNews API tests.

Key concern: tests must not require a live MongoDB, Redis or Gemini API key.
We achieve this by:
  1. Patching connect_to_mongo / close_mongo_connection to no-ops so
     FastAPI's lifespan doesn't try to reach a real database.
  2. Setting db_client.client = None (disconnected) so health check
     correctly reports "disconnected" — a valid test-mode state.
  3. Ensuring AI_MOCK_MODE=true so GeminiClient returns canned responses.
  4. Giving every test a fresh in-memory cache, an empty snapshot store and
     a reset rate limiter.

Route tests that need data use the `fake_db` fixture: an in-memory stand-in
for the Motor database that understands the handful of query operators the
repository issues.
"""

import os
import re
import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from httpx import ASGITransport, AsyncClient

# Set env vars BEFORE importing the app so Settings picks them up correctly
os.environ.setdefault("AI_MOCK_MODE", "true")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("REDIS_URL", "")

from geonews.services.geo import EARTH_RADIUS_M, haversine_m, to_geojson_point  # noqa: E402


# ── Sample corpus ─────────────────────────────────────────────────────────────

def _article(id_, title, description, source, categories, score, lat, lon, day):
    return {
        "_id": id_,
        "title": title,
        "description": description,
        "url": f"https://news.example.com/{id_}",
        "publication_date": datetime(2024, 3, day, 9, 0, tzinfo=timezone.utc),
        "source_name": source,
        "category": categories,
        "relevance_score": score,
        "latitude": lat,
        "longitude": lon,
        "location": to_geojson_point(lat, lon),
    }


SAMPLE_ARTICLES = [
    _article("art-001", "Thames flood barrier upgrade approved",
             "The Environment Agency approved a major upgrade to the Thames Barrier. "
             "Work starts next spring.",
             "BBC News", ["world", "environment"], 0.9, 51.5074, -0.1278, 5),
    _article("art-002", "London tech startups raise record funding",
             "Startups in Shoreditch raised a record amount of venture funding this quarter.",
             "Reuters", ["business", "technology"], 0.75, 51.5155, -0.0922, 4),
    _article("art-003", "Paris metro line 14 extension opens",
             "The extended metro line now connects Orly airport to the city centre.",
             "Le Monde", ["world"], 0.6, 48.8566, 2.3522, 3),
    _article("art-004", "Wall Street rallies on tech earnings",
             "Stocks climbed after strong earnings from large technology companies.",
             "Reuters", ["business"], 0.85, 40.7128, -74.0060, 2),
    _article("art-005", "Oxford researchers unveil new battery chemistry",
             "A sodium-based battery could cut costs for grid storage, researchers said.",
             "The Guardian", ["technology", "science"], 0.5, 51.7520, -1.2577, 1),
    _article("art-006", "Cherry blossom forecast released",
             "Forecasters expect the blossom to peak in Tokyo in late March.",
             "NHK", ["world"], 0.3, 35.6895, 139.6917, 1),
]


# ── FakeDB ────────────────────────────────────────────────────────────────────

def _match_value(value, cond) -> bool:
    if isinstance(cond, dict) and any(k.startswith("$") for k in cond):
        for op, arg in cond.items():
            if op == "$options":
                continue
            if op == "$regex":
                flags = re.IGNORECASE if "i" in cond.get("$options", "") else 0
                if not isinstance(value, str) or not re.search(arg, value, flags):
                    return False
            elif op == "$gte":
                if value is None or not value >= arg:
                    return False
            elif op == "$gt":
                if value is None or not value > arg:
                    return False
            elif op == "$geoWithin":
                (lon, lat), radians = arg["$centerSphere"]
                if value is None:
                    return False
                v_lon, v_lat = value["coordinates"]
                if haversine_m(lat, lon, v_lat, v_lon) > radians * EARTH_RADIUS_M:
                    return False
            else:
                raise NotImplementedError(f"FakeDB does not support {op}")
        return True
    if isinstance(value, list):
        return cond in value
    return value == cond


def matches(doc: dict, query: dict) -> bool:
    for key, cond in query.items():
        if key == "$or":
            if not any(matches(doc, sub) for sub in cond):
                return False
        elif key == "$text":
            # Quoted phrases are ANDed, bare words ORed, as in MongoDB.
            phrases = re.findall(r'"([^"]+)"', cond["$search"].lower())
            words = re.sub(r'"[^"]*"', " ", cond["$search"].lower()).split()
            text = f"{doc.get('title', '')} {doc.get('description', '')}".lower()
            tokens = set(re.findall(r"\w+", text))
            if phrases and not all(p in text for p in phrases):
                return False
            if words and not any(w in tokens for w in words):
                return False
        elif not _match_value(doc.get(key), cond):
            return False
    return True


class FakeCursor:
    def __init__(self, docs):
        self._docs = list(docs)
        self._skip_n = 0
        self._limit_n = None

    def sort(self, key, direction=None):
        keys = [(key, 1 if direction is None else direction)] if isinstance(key, str) else list(key)
        # Apply from least to most significant; list.sort is stable.
        for field, order in reversed(keys):
            if isinstance(order, dict):  # {"$meta": "textScore"}
                continue
            self._docs.sort(key=lambda d: d.get(field), reverse=order == -1)
        return self

    def skip(self, n):
        self._skip_n = n
        return self

    def limit(self, n):
        self._limit_n = n
        return self

    async def to_list(self, length=None):
        docs = self._docs[self._skip_n:]
        if self._limit_n:
            docs = docs[: self._limit_n]
        if length is not None:
            docs = docs[:length]
        return [dict(d) for d in docs]


class FakeCollection:
    def __init__(self):
        self._docs = {}

    def find(self, query=None, projection=None):
        return FakeCursor(d for d in self._docs.values() if matches(d, query or {}))

    async def find_one(self, query, projection=None):
        for doc in self._docs.values():
            if matches(doc, query):
                return dict(doc)
        return None

    async def count_documents(self, query):
        return sum(1 for d in self._docs.values() if matches(d, query))

    async def insert_one(self, doc):
        doc = dict(doc)
        doc.setdefault("_id", str(uuid.uuid4()))
        self._docs[doc["_id"]] = doc
        result = MagicMock()
        result.inserted_id = doc["_id"]
        return result

    def aggregate(self, pipeline):
        docs = list(self._docs.values())
        for stage in pipeline:
            if "$geoNear" in stage:
                geo_near = stage["$geoNear"]
                lon, lat = geo_near["near"]["coordinates"]
                near = []
                for d in docs:
                    dist = haversine_m(lat, lon, d["latitude"], d["longitude"])
                    if dist <= geo_near.get("maxDistance", float("inf")):
                        near.append({**d, geo_near["distanceField"]: dist})
                docs = sorted(near, key=lambda d: d[geo_near["distanceField"]])
            elif "$skip" in stage:
                docs = docs[stage["$skip"]:]
            elif "$limit" in stage:
                docs = docs[: stage["$limit"]]
            else:
                raise NotImplementedError(f"FakeDB does not support stage {stage}")
        return FakeCursor(docs)

    @property
    def docs(self):
        return list(self._docs.values())


class FakeDB:
    def __init__(self):
        self._cols = {}

    def __getitem__(self, name):
        if name not in self._cols:
            self._cols[name] = FakeCollection()
        return self._cols[name]


# ── Fixtures ──────────────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
async def mock_db():
    """
    Patch the MongoDB lifecycle for every test.

    - connect_to_mongo / close_mongo_connection → no-op AsyncMocks
    - db_client.client / db_client.db → None (health reports "disconnected")
    """
    with (
        patch("geonews.main.connect_to_mongo", new_callable=AsyncMock),
        patch("geonews.main.close_mongo_connection", new_callable=AsyncMock),
    ):
        import geonews.core.database as db_module

        original_client = db_module.db_client.client
        original_db = db_module.db_client.db

        db_module.db_client.client = None
        db_module.db_client.db = None

        yield

        db_module.db_client.client = original_client
        db_module.db_client.db = original_db


@pytest.fixture(autouse=True)
def fresh_state(monkeypatch):
    """Fresh in-memory cache, empty snapshot store and limiter per test."""
    from geonews.core.cache import Cache, MemoryCache, cache_client
    from geonews.core.rate_limit import limiter
    from geonews.services.popularity import snapshot_store

    monkeypatch.setattr(cache_client, "cache", Cache(MemoryCache()))
    monkeypatch.setattr(snapshot_store, "_current", None)
    monkeypatch.setattr(snapshot_store, "_previous", None)
    limiter.reset()
    yield


@pytest.fixture()
def fake_db():
    db = FakeDB()
    for doc in SAMPLE_ARTICLES:
        db["articles"]._docs[doc["_id"]] = dict(doc)
    return db


@pytest.fixture()
def repository(fake_db):
    from geonews.repositories.news import NewsRepository

    return NewsRepository(fake_db)


@pytest.fixture()
async def client(mock_db):  # noqa: ARG001 (mock_db must run first)
    """HTTPX async test client wired to the FastAPI app (database disconnected)."""
    from geonews.main import app

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture()
async def news_client(fake_db):
    """HTTPX client whose get_db dependency returns the populated FakeDB."""
    from geonews.core.database import get_db
    from geonews.main import app

    app.dependency_overrides[get_db] = lambda: fake_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
