"""
news.py — Pydantic schemas for articles, events and query resolution.

Article            — one corpus entry as returned by the API
EnrichedArticle    — Article + one-sentence llm_summary (query endpoint)
ArticlesResponse   — paginated envelope {metadata, articles}
QueryRequest       — natural-language query body
QueryAnalysis      — structured output of the language oracle
EventRequest       — view / click ingestion body
UserEvent          — stored event document
"""

from datetime import datetime, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator

EventType = Literal["view", "click"]
Intent = Literal["nearby", "category", "source", "search"]


# ── Articles ──────────────────────────────────────────────────────────────────

class Article(BaseModel):
    """A geo-tagged news article. Immutable once seeded."""
    id: str
    title: str
    description: str
    url: str
    publication_date: datetime
    source_name: str
    category: list[str] = Field(default_factory=list)
    relevance_score: float = Field(ge=0.0, le=1.0)
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class EnrichedArticle(Article):
    llm_summary: str


def article_from_doc(doc: dict) -> Article:
    """Convert a raw MongoDB document (keyed by _id) to an Article."""
    return Article(
        id=str(doc["_id"]),
        title=doc["title"],
        description=doc["description"],
        url=doc["url"],
        publication_date=doc["publication_date"],
        source_name=doc["source_name"],
        category=list(doc.get("category") or []),
        relevance_score=doc["relevance_score"],
        latitude=doc["latitude"],
        longitude=doc["longitude"],
    )


# ── Response envelopes ────────────────────────────────────────────────────────

class ResponseMetadata(BaseModel):
    query: dict[str, Any]
    total: int
    page: int
    limit: int
    total_pages: int


class ArticlesResponse(BaseModel):
    """Response body for the browse and trending endpoints."""
    metadata: ResponseMetadata
    articles: list[Article]


class EnrichedArticlesResponse(BaseModel):
    """Response body for POST /api/v1/news/query."""
    articles: list[EnrichedArticle]


# ── Natural-language query ────────────────────────────────────────────────────

class QueryRequest(BaseModel):
    query: str = Field(..., min_length=1, max_length=500)
    lat: Optional[float] = Field(default=None, ge=-90, le=90)
    lon: Optional[float] = Field(default=None, ge=-180, le=180)

    @field_validator("query")
    @classmethod
    def _strip(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("query must not be blank")
        return v


class QueryAnalysis(BaseModel):
    """What the oracle extracted from a query. Unknown intents are dropped."""
    intent: list[Intent] = Field(default_factory=list)
    entities: dict[str, Any] = Field(default_factory=dict)
    keywords: list[str] = Field(default_factory=list)

    @field_validator("intent", mode="before")
    @classmethod
    def _intent_list(cls, v: Any) -> list:
        if v is None:
            return []
        values = [v] if isinstance(v, str) else list(v)
        allowed = {"nearby", "category", "source", "search"}
        return [i.lower() for i in values if isinstance(i, str) and i.lower() in allowed]

    @field_validator("entities", mode="before")
    @classmethod
    def _entities_dict(cls, v: Any) -> dict:
        return v if isinstance(v, dict) else {}

    @field_validator("keywords", mode="before")
    @classmethod
    def _clean_keywords(cls, v: Any) -> list[str]:
        if v is None:
            return []
        values = [v] if isinstance(v, str) else list(v)
        cleaned: list[str] = []
        for kw in values:
            if isinstance(kw, str) and kw.strip() and kw.strip() not in cleaned:
                cleaned.append(kw.strip())
        return cleaned


# ── Events ────────────────────────────────────────────────────────────────────

class EventRequest(BaseModel):
    """Payload for POST /api/v1/news/events."""
    event_type: EventType
    article_id: str = Field(..., min_length=1, max_length=128)
    user_id: str = Field(..., min_length=1, max_length=128)
    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)


class EventResponse(BaseModel):
    message: str
    id: Optional[str] = None


class UserEvent(BaseModel):
    """Stored interaction. Append-only; never updated."""
    id: str
    event_type: EventType
    article_id: str
    user_id: str
    latitude: float
    longitude: float
    created_at: datetime = Field(default_factory=lambda: datetime.now(tz=timezone.utc))
