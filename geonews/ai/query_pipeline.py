"""
query_pipeline.py — Natural-language query resolution.

Steps (strictly ordered, early exit):

  0. Cache      — fingerprint of (query, lat, lon); a hit is returned as-is,
                  including a cached empty result
  1. Analyze    — oracle.analyze_query() → intent / entities / keywords.
                  Failure or timeout is fatal for the request (OracleError).
  2. Search     — ordered strategies, first non-empty answer wins:
                    KeywordSearch   substring match on title/description,
                                    best relevance first
                    FullTextSearch  $text relevance search on the raw query
                  Nothing found is a valid, empty answer.
  3. Summarize  — per surviving article (≤ 5), cached 24 h under
                  summary:{article_id}; oracle failure → placeholder
  4. Cache      — enriched result stored for 1 h

The oracle is any object with async analyze_query(str) and summarize(str)
(GeminiClient in production, stubs in tests).
"""

import asyncio
import hashlib
import json
import logging
from typing import Optional, Protocol

from geonews.core.cache import Cache
from geonews.core.errors import InvalidInputError, OracleError
from geonews.models.news import Article, EnrichedArticle, QueryAnalysis
from geonews.services.geo import validate_coordinates

logger = logging.getLogger(__name__)

MAX_RESULTS = 5
SUMMARY_PLACEHOLDER = "Summary not available."


class LanguageOracle(Protocol):
    async def analyze_query(self, query: str) -> QueryAnalysis: ...

    async def summarize(self, text: str) -> str: ...


class SearchStrategy(Protocol):
    name: str

    async def search(self, query: str, analysis: QueryAnalysis, limit: int) -> list[Article]: ...


# ── Strategies ────────────────────────────────────────────────────────────────

class KeywordSearch:
    """Union of keyword substring matches; empty when no keywords were extracted."""

    name = "keywords"

    def __init__(self, repository) -> None:
        self.repository = repository

    async def search(self, query: str, analysis: QueryAnalysis, limit: int) -> list[Article]:
        if not analysis.keywords:
            return []
        return await self.repository.find_by_keywords(analysis.keywords, limit)


class FullTextSearch:
    """Relevance search of the raw query against the text index."""

    name = "full_text"

    def __init__(self, repository) -> None:
        self.repository = repository

    async def search(self, query: str, analysis: QueryAnalysis, limit: int) -> list[Article]:
        articles, _total = await self.repository.search_text(query, page=1, limit=limit)
        return articles


def default_strategies(repository) -> list[SearchStrategy]:
    return [KeywordSearch(repository), FullTextSearch(repository)]


def query_fingerprint(query: str, lat: Optional[float], lon: Optional[float]) -> str:
    """Stable cache key for a query request."""
    raw = json.dumps([query, lat, lon], separators=(",", ":"))
    return "query:" + hashlib.sha256(raw.encode("utf-8")).hexdigest()


# ── Pipeline ──────────────────────────────────────────────────────────────────

class QueryPipeline:
    def __init__(
        self,
        oracle: LanguageOracle,
        cache: Cache,
        strategies: list[SearchStrategy],
        *,
        timeout: float = 10.0,
        query_ttl: int = 3600,
        summary_ttl: int = 86400,
        max_results: int = MAX_RESULTS,
    ) -> None:
        self.oracle = oracle
        self.cache = cache
        self.strategies = strategies
        self.timeout = timeout
        self.query_ttl = query_ttl
        self.summary_ttl = summary_ttl
        self.max_results = max_results

    async def resolve(self, query: str, lat: Optional[float] = None,
                      lon: Optional[float] = None) -> list[dict]:
        """
        Resolve `query` into at most five summarised articles (JSON-ready).

        Raises:
            InvalidInputError: blank query, or only one of lat/lon given.
            OracleError:       analysis failed or timed out.
        """
        query = query.strip()
        if not query:
            raise InvalidInputError("query must not be blank")
        if (lat is None) != (lon is None):
            raise InvalidInputError("lat and lon must be given together")
        if lat is not None:
            validate_coordinates(lat, lon)

        key = query_fingerprint(query, lat, lon)
        cached = await self.cache.get(key)
        if cached is not None:
            logger.info("Serving AI query from cache (%s)", key)
            return cached

        logger.info("Processing new AI query: %r", query)
        analysis = await self._analyze(query)
        logger.info("Query analysis: intent=%s keywords=%s", analysis.intent, analysis.keywords)

        articles = await self._search(query, analysis)
        enriched = await self._enrich(articles)

        await self.cache.set(key, enriched, self.query_ttl)
        logger.info("AI query resolved (%d results) and cached", len(enriched))
        return enriched

    async def _analyze(self, query: str) -> QueryAnalysis:
        try:
            return await asyncio.wait_for(self.oracle.analyze_query(query), self.timeout)
        except asyncio.TimeoutError:
            raise OracleError(f"query analysis timed out after {self.timeout:.1f}s") from None
        except Exception as exc:
            raise OracleError(f"query analysis failed: {exc}") from exc

    async def _search(self, query: str, analysis: QueryAnalysis) -> list[Article]:
        for strategy in self.strategies:
            found = await strategy.search(query, analysis, self.max_results)
            if found:
                logger.info("Strategy %r matched %d articles", strategy.name, len(found))
                return found[: self.max_results]
            logger.info("Strategy %r found nothing — trying next", strategy.name)
        logger.warning("No articles found after all strategies for %r", query)
        return []

    async def _summary(self, article: Article) -> str:
        key = f"summary:{article.id}"
        cached = await self.cache.get(key)
        if isinstance(cached, str):
            return cached
        try:
            summary = await asyncio.wait_for(
                self.oracle.summarize(article.description), self.timeout
            )
        except Exception as exc:
            logger.warning("Summary for %s unavailable (%s: %s)",
                           article.id, type(exc).__name__, exc)
            return SUMMARY_PLACEHOLDER
        await self.cache.set(key, summary, self.summary_ttl)
        return summary

    async def _enrich(self, articles: list[Article]) -> list[dict]:
        summaries = await asyncio.gather(*(self._summary(a) for a in articles))
        return [
            EnrichedArticle(**a.model_dump(), llm_summary=s).model_dump(mode="json")
            for a, s in zip(articles, summaries)
        ]
