"""
popularity.py — Trending score aggregation with snapshot swap.

Every `trending_refresh_seconds` the aggregator recomputes a trending
score for EVERY article from the events of the trailing window:

    trending_score(a) = Σ weight(e) · exp(-age_seconds(e) / decay_seconds)
                        over events e of article a with age < window

    weight: click = 1.5, view = 1.0
    window: 24 h, decay_seconds: 43 200 (12 h)

Articles without recent events score 0.0 and are still present, so every
article appears exactly once in a snapshot.

Snapshots are immutable. A rebuild assembles a brand-new snapshot off to
the side and publishes it with a single reference assignment into the
two-slot SnapshotStore (current, previous). Readers grab `store.current`
once per request and therefore see either the old or the new snapshot in
full, never a mix, and never wait on a rebuild. Scoring runs in a worker
thread so a large event window never stalls request handling. A failed
rebuild leaves the current snapshot in place.

Worked example (5 clicks aged 5 m, 10 m, 30 m, 1 h, 2 h):
    1.5 · (e^(-300/43200) + e^(-600/43200) + e^(-1800/43200)
           + e^(-3600/43200) + e^(-7200/43200))  ≈ 7.06
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Optional

from geonews.models.news import Article

logger = logging.getLogger(__name__)

EVENT_WEIGHTS = {"click": 1.5, "view": 1.0}
DEFAULT_WINDOW = timedelta(hours=24)
DEFAULT_DECAY_SECONDS = 43200.0


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # Mongo returns naive datetimes unless the client is tz_aware; both mean UTC.
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def event_contribution(event_type: str, age_seconds: float,
                       decay_seconds: float = DEFAULT_DECAY_SECONDS) -> float:
    """Weighted, time-decayed contribution of a single event."""
    weight = EVENT_WEIGHTS.get(event_type, EVENT_WEIGHTS["view"])
    return weight * math.exp(-age_seconds / decay_seconds)


# ── Snapshot types ────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class TrendingEntry:
    article: Article
    trending_score: float


@dataclass(frozen=True)
class TrendingSnapshot:
    version: int
    built_at: datetime
    entries: tuple[TrendingEntry, ...]
    _scores: dict[str, float] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        self._scores.update({e.article.id: e.trending_score for e in self.entries})

    def score_of(self, article_id: str) -> Optional[float]:
        return self._scores.get(article_id)

    def __len__(self) -> int:
        return len(self.entries)


def compute_trending_scores(
    articles: Iterable[Article],
    events: Iterable[dict],
    now: datetime,
    window: timedelta = DEFAULT_WINDOW,
    decay_seconds: float = DEFAULT_DECAY_SECONDS,
) -> tuple[TrendingEntry, ...]:
    """
    Pure total recompute. Events outside the window or pointing at unknown
    articles are ignored; output order follows `articles`.
    """
    articles = list(articles)
    totals: dict[str, float] = {a.id: 0.0 for a in articles}
    cutoff = now - window

    for event in events:
        article_id = event.get("article_id")
        if article_id not in totals:
            continue
        created_at = _as_utc(event["created_at"])
        if created_at <= cutoff:
            continue
        # Future timestamps (clock skew) count as brand new, never boosted.
        age = max(0.0, (now - created_at).total_seconds())
        totals[article_id] += event_contribution(event.get("event_type", "view"), age, decay_seconds)

    return tuple(TrendingEntry(article=a, trending_score=totals[a.id]) for a in articles)


class SnapshotStore:
    """Two-slot holder; publish() is a single reference swap."""

    def __init__(self) -> None:
        self._current: Optional[TrendingSnapshot] = None
        self._previous: Optional[TrendingSnapshot] = None

    @property
    def current(self) -> Optional[TrendingSnapshot]:
        return self._current

    @property
    def previous(self) -> Optional[TrendingSnapshot]:
        return self._previous

    def publish(self, snapshot: TrendingSnapshot) -> None:
        self._previous = self._current
        self._current = snapshot


# ── Aggregator ────────────────────────────────────────────────────────────────

class PopularityAggregator:
    """
    Rebuilds the trending snapshot on a fixed cycle.

    `repository_factory` is called once per rebuild so a database that comes
    back after an outage is picked up on the next tick. It may raise; the
    cycle is then logged and retried later.
    """

    def __init__(
        self,
        repository_factory: Callable[[], object],
        store: SnapshotStore,
        *,
        window_hours: float = 24,
        decay_seconds: float = DEFAULT_DECAY_SECONDS,
        refresh_seconds: float = 300.0,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repository_factory = repository_factory
        self.store = store
        self.window = timedelta(hours=window_hours)
        self.decay_seconds = decay_seconds
        self.refresh_seconds = refresh_seconds
        self._clock = clock
        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None

    async def rebuild(self) -> TrendingSnapshot:
        """Recompute every score and publish a new snapshot."""
        async with self._lock:
            repository = self._repository_factory()
            now = self._clock()
            articles = await repository.list_articles()
            events = await repository.events_since(now - self.window)

            # CPU-bound over a full day of events; keep it off the serving loop.
            entries = await asyncio.to_thread(
                compute_trending_scores,
                articles, events, now, window=self.window, decay_seconds=self.decay_seconds,
            )
            current = self.store.current
            snapshot = TrendingSnapshot(
                version=(current.version + 1) if current else 1,
                built_at=now,
                entries=entries,
            )
            self.store.publish(snapshot)

        logger.info(
            "Trending snapshot v%d published (%d articles, %d recent events)",
            snapshot.version, len(entries), len(events),
        )
        return snapshot

    async def run_forever(self) -> None:
        """Rebuild now, then every refresh_seconds. Failures never stop the loop."""
        while True:
            try:
                await self.rebuild()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error(
                    "Trending rebuild failed (%s: %s) — keeping snapshot v%s, retrying in %.0fs",
                    type(exc).__name__, exc,
                    self.store.current.version if self.store.current else "none",
                    self.refresh_seconds,
                    exc_info=True,
                )
            await asyncio.sleep(self.refresh_seconds)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run_forever(), name="trending-aggregator")
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None


# Module-level singleton: the lifespan aggregator publishes here, routes read it
snapshot_store = SnapshotStore()
