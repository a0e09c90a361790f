"""In-process publish/subscribe fan-out for live catalog notifications."""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import contextmanager
from typing import Any, Iterator

from pydantic import BaseModel

logger = logging.getLogger(__name__)

DEFAULT_BUFFER_SIZE = 100

MOVIE_ADDED = "movie_added"
MOVIE_UPDATED = "movie_updated"
MOVIE_DELETED = "movie_deleted"
SERIES_ADDED = "series_added"
SERIES_UPDATED = "series_updated"
SERIES_DELETED = "series_deleted"
COLLECTION_ADDED = "collection_added"
COLLECTION_UPDATED = "collection_updated"
COLLECTION_DELETED = "collection_deleted"
COLLECTION_IMPORTED = "collection_imported"
USER_CREATED = "user_created"
USER_UPDATED = "user_updated"
TMDB_ENRICH_STARTED = "tmdb_enrich_started"
TMDB_ENRICH_PROGRESS = "tmdb_enrich_progress"
TMDB_ENRICH_CANCELLED = "tmdb_enrich_cancelled"
TMDB_ENRICH_COMPLETE = "tmdb_enrich_complete"


class Subscription:
    """A bounded mailbox receiving every message published after creation."""

    def __init__(self, bus: "EventBus", maxsize: int):
        self._bus = bus
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def _offer(self, message: str) -> None:
        if self._queue.full():
            # Lagging subscriber: discard the eldest message to make room.
            self._queue.get_nowait()
            self.dropped += 1
        self._queue.put_nowait(message)

    async def receive(self) -> str:
        return await self._queue.get()

    def receive_nowait(self) -> str | None:
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    def drain(self) -> list[str]:
        messages: list[str] = []
        while (message := self.receive_nowait()) is not None:
            messages.append(message)
        return messages

    def close(self) -> None:
        self._bus.unsubscribe(self)


class EventBus:
    """Broadcast typed domain events to every live subscriber."""

    def __init__(self, buffer_size: int = DEFAULT_BUFFER_SIZE):
        self._buffer_size = buffer_size
        self._subscribers: set[Subscription] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> Subscription:
        subscription = Subscription(self, self._buffer_size)
        self._subscribers.add(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        self._subscribers.discard(subscription)

    @contextmanager
    def subscription(self) -> Iterator[Subscription]:
        subscription = self.subscribe()
        try:
            yield subscription
        finally:
            subscription.close()

    def publish(self, event_type: str, payload: Any = None) -> int:
        """Serialise and fan out an event; returns the number of receivers."""

        if isinstance(payload, BaseModel):
            payload = payload.model_dump(mode="json")
        message = json.dumps({"type": event_type, "payload": payload}, default=str)
        for subscription in list(self._subscribers):
            subscription._offer(message)
        logger.debug(
            "Published %s to %d subscriber(s)", event_type, len(self._subscribers)
        )
        return len(self._subscribers)
