"""
test_query_pipeline.py — Natural-language query resolution.

The oracle and the search strategies are stubbed so each step (cache,
analysis, strategy fallback, summaries) can be checked in isolation; the
last class runs the real strategies against the in-memory FakeDB.
"""

import asyncio
from datetime import datetime, timezone

import pytest

from geonews.ai.gemini_client import GeminiClient
from geonews.ai.query_pipeline import (
    SUMMARY_PLACEHOLDER,
    FullTextSearch,
    KeywordSearch,
    QueryPipeline,
    default_strategies,
    query_fingerprint,
)
from geonews.core.cache import Cache, MemoryCache
from geonews.core.errors import InvalidInputError, OracleError
from geonews.models.news import Article, QueryAnalysis


def make_article(id_: str) -> Article:
    return Article(
        id=id_,
        title=f"Title {id_}",
        description=f"Description of {id_}. Second sentence.",
        url=f"https://news.example.com/{id_}",
        publication_date=datetime(2024, 3, 1, tzinfo=timezone.utc),
        source_name="Reuters",
        category=["world"],
        relevance_score=0.5,
        latitude=51.5,
        longitude=-0.12,
    )


class StubOracle:
    def __init__(self, keywords=("flood",), analyze_error=None, summary_error=None, delay=0.0,
                 summary_delay=0.0):
        self.keywords = list(keywords)
        self.analyze_error = analyze_error
        self.summary_error = summary_error
        self.delay = delay
        self.summary_delay = summary_delay
        self.analyze_calls = 0
        self.summary_calls = 0

    async def analyze_query(self, query):
        self.analyze_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.analyze_error:
            raise self.analyze_error
        return QueryAnalysis(intent=["search"], keywords=self.keywords)

    async def summarize(self, text):
        self.summary_calls += 1
        if self.summary_delay:
            await asyncio.sleep(self.summary_delay)
        if self.summary_error:
            raise self.summary_error
        return f"summary: {text[:20]}"


class StubStrategy:
    def __init__(self, name, results):
        self.name = name
        self.results = results
        self.calls = 0

    async def search(self, query, analysis, limit):
        self.calls += 1
        return list(self.results)


def pipeline(oracle, strategies, cache=None, **kwargs):
    return QueryPipeline(oracle, cache or Cache(MemoryCache()), strategies, **kwargs)


class TestStrategies:
    async def test_first_non_empty_strategy_wins(self):
        first = StubStrategy("keywords", [make_article("a")])
        second = StubStrategy("full_text", [make_article("b")])
        rows = await pipeline(StubOracle(), [first, second]).resolve("flood news")

        assert [r["id"] for r in rows] == ["a"]
        assert second.calls == 0

    async def test_falls_back_when_first_empty(self):
        first = StubStrategy("keywords", [])
        second = StubStrategy("full_text", [make_article("b")])
        rows = await pipeline(StubOracle(), [first, second]).resolve("flood news")

        assert [r["id"] for r in rows] == ["b"]
        assert first.calls == 1
        assert second.calls == 1

    async def test_nothing_found_is_empty_not_error(self):
        rows = await pipeline(StubOracle(), [StubStrategy("k", []), StubStrategy("t", [])]).resolve("zzz")
        assert rows == []

    async def test_never_more_than_five(self):
        many = StubStrategy("keywords", [make_article(str(i)) for i in range(8)])
        rows = await pipeline(StubOracle(), [many]).resolve("flood")
        assert len(rows) == 5


class TestCaching:
    async def test_second_call_served_from_cache(self):
        oracle = StubOracle()
        strategy = StubStrategy("keywords", [make_article("a")])
        p = pipeline(oracle, [strategy])

        first = await p.resolve("flood", 51.5, -0.12)
        second = await p.resolve("flood", 51.5, -0.12)

        assert first == second
        assert oracle.analyze_calls == 1
        assert strategy.calls == 1

    async def test_empty_result_cached(self):
        oracle = StubOracle()
        p = pipeline(oracle, [StubStrategy("keywords", [])])
        assert await p.resolve("zzz") == []
        assert await p.resolve("zzz") == []
        assert oracle.analyze_calls == 1

    async def test_summary_cached_per_article(self):
        oracle = StubOracle()
        cache = Cache(MemoryCache())
        p = pipeline(oracle, [StubStrategy("keywords", [make_article("a")])], cache=cache)

        await p.resolve("first query")
        await p.resolve("second query")

        assert oracle.summary_calls == 1
        assert await cache.get("summary:a") == "summary: Description of a. Se"

    async def test_enriched_result_stored_under_fingerprint(self):
        cache = Cache(MemoryCache())
        p = pipeline(StubOracle(), [StubStrategy("keywords", [make_article("a")])], cache=cache)
        rows = await p.resolve("flood")
        assert await cache.get(query_fingerprint("flood", None, None)) == rows


class TestOracleFailures:
    async def test_analysis_error_is_oracle_error(self):
        p = pipeline(StubOracle(analyze_error=RuntimeError("quota")), [StubStrategy("k", [])])
        with pytest.raises(OracleError):
            await p.resolve("flood")

    async def test_analysis_timeout_is_oracle_error(self):
        p = pipeline(StubOracle(delay=1.0), [StubStrategy("k", [])], timeout=0.01)
        with pytest.raises(OracleError):
            await p.resolve("flood")

    async def test_failed_query_not_cached(self):
        cache = Cache(MemoryCache())
        p = pipeline(StubOracle(analyze_error=RuntimeError("quota")), [StubStrategy("k", [])], cache=cache)
        with pytest.raises(OracleError):
            await p.resolve("flood")
        assert await cache.get(query_fingerprint("flood", None, None)) is None

    async def test_summary_failure_uses_placeholder(self):
        oracle = StubOracle(summary_error=RuntimeError("boom"))
        cache = Cache(MemoryCache())
        p = pipeline(oracle, [StubStrategy("keywords", [make_article("a"), make_article("b")])], cache=cache)

        rows = await p.resolve("flood")

        assert [r["llm_summary"] for r in rows] == [SUMMARY_PLACEHOLDER, SUMMARY_PLACEHOLDER]
        assert await cache.get("summary:a") is None

    async def test_summary_timeout_uses_placeholder(self):
        oracle = StubOracle(summary_delay=1.0)
        cache = Cache(MemoryCache())
        p = pipeline(oracle, [StubStrategy("keywords", [make_article("a")])], cache=cache, timeout=0.01)

        rows = await p.resolve("flood")

        assert [r["id"] for r in rows] == ["a"]
        assert rows[0]["llm_summary"] == SUMMARY_PLACEHOLDER
        assert oracle.analyze_calls == 1
        assert await cache.get("summary:a") is None


class TestInputValidation:
    async def test_blank_query(self):
        with pytest.raises(InvalidInputError):
            await pipeline(StubOracle(), []).resolve("   ")

    async def test_lat_without_lon(self):
        with pytest.raises(InvalidInputError):
            await pipeline(StubOracle(), []).resolve("flood", lat=51.5)

    async def test_out_of_range_coordinates(self):
        with pytest.raises(InvalidInputError):
            await pipeline(StubOracle(), []).resolve("flood", lat=120.0, lon=0.0)


class TestFingerprint:
    def test_stable(self):
        assert query_fingerprint("flood", 51.5, -0.1) == query_fingerprint("flood", 51.5, -0.1)

    def test_location_changes_key(self):
        assert query_fingerprint("flood", None, None) != query_fingerprint("flood", 51.5, -0.1)

    def test_prefix(self):
        assert query_fingerprint("flood", None, None).startswith("query:")


class TestAgainstRepository:
    async def test_keyword_search_matches_title_or_description(self, repository):
        analysis = QueryAnalysis(keywords=["thames", "Shoreditch"])
        found = await KeywordSearch(repository).search("", analysis, 5)
        # highest relevance first
        assert [a.id for a in found] == ["art-001", "art-002"]

    async def test_keyword_search_escapes_regex(self, repository):
        analysis = QueryAnalysis(keywords=["c++ (beta)"])
        assert await KeywordSearch(repository).search("", analysis, 5) == []

    async def test_keyword_search_without_keywords(self, repository):
        assert await KeywordSearch(repository).search("x", QueryAnalysis(), 5) == []

    async def test_full_text_search(self, repository):
        found = await FullTextSearch(repository).search("metro airport", QueryAnalysis(), 5)
        assert [a.id for a in found] == ["art-003"]

    async def test_full_text_search_requires_every_term(self, repository):
        # "paris" and "flood" each match a different article, neither has both
        assert await FullTextSearch(repository).search("paris flood", QueryAnalysis(), 5) == []

    async def test_end_to_end_with_mock_gemini(self, repository):
        p = pipeline(GeminiClient(), default_strategies(repository))
        rows = await p.resolve("latest news about the Thames barrier")

        assert [r["id"] for r in rows] == ["art-001"]
        assert rows[0]["llm_summary"].startswith("[MOCK] The Environment Agency approved")
