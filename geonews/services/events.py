"""
events.py — Append-only ingestion of view / click events.

Events feed the popularity aggregator. There is no deduplication and no
rate limiting here: repeated events from the same user simply add up.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Callable

from geonews.core.errors import InvalidInputError, UnknownArticleError
from geonews.models.news import UserEvent
from geonews.services.geo import to_geojson_point, validate_coordinates

logger = logging.getLogger(__name__)

EVENT_TYPES = ("view", "click")


class EventRecorder:
    def __init__(self, repository,
                 clock: Callable[[], datetime] = lambda: datetime.now(tz=timezone.utc)) -> None:
        self.repository = repository
        self._clock = clock

    async def record(self, event_type: str, article_id: str, user_id: str,
                     lat: float, lon: float) -> UserEvent:
        """
        Store one event.

        Raises:
            InvalidInputError:   unknown event type or bad coordinates.
            UnknownArticleError: article_id does not exist; nothing is written.
        """
        if event_type not in EVENT_TYPES:
            raise InvalidInputError(f"event_type must be one of {EVENT_TYPES}, got {event_type!r}")
        validate_coordinates(lat, lon)

        if not await self.repository.article_exists(article_id):
            raise UnknownArticleError(article_id)

        event = UserEvent(
            id=str(uuid.uuid4()),
            event_type=event_type,
            article_id=article_id,
            user_id=user_id,
            latitude=lat,
            longitude=lon,
            created_at=self._clock(),
        )
        doc = event.model_dump(exclude={"id"})
        doc["_id"] = event.id
        doc["location"] = to_geojson_point(lat, lon)
        await self.repository.insert_event(doc)

        logger.info("Recorded %s on article %s (user=%s)", event_type, article_id, user_id)
        return event
