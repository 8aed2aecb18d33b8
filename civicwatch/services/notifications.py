# File: civicwatch/services/notifications.py
"""In-process change feed.

The store publishes ``insert``/``update``/``delete`` events for issues and
upvotes after each commit; the lifecycle publishes score deltas
(``entity="score"``) so consumers can patch one row instead of refetching
the whole collection.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Literal

logger = logging.getLogger(__name__)

EventType = Literal["insert", "update", "delete"]
Entity = Literal["issue", "upvote", "score"]


@dataclass(frozen=True)
class ChangeEvent:
    event_type: EventType
    entity: Entity
    payload: dict = field(default_factory=dict)

    def as_dict(self) -> dict:
        return {"eventType": self.event_type, "entity": self.entity, "payload": self.payload}


def score_delta(issue_id: int, priority_score: float) -> ChangeEvent:
    return ChangeEvent("update", "score", {"issue_id": issue_id, "priority_score": priority_score})


class ChangeFeed:
    def __init__(self, max_queue: int = 100) -> None:
        self._max_queue = max_queue
        self._subscribers: set[asyncio.Queue] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @asynccontextmanager
    async def subscribe(self) -> AsyncIterator[asyncio.Queue]:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._max_queue)
        self._subscribers.add(queue)
        try:
            yield queue
        finally:
            self._subscribers.discard(queue)

    async def publish(self, event: ChangeEvent) -> None:
        for queue in list(self._subscribers):
            if queue.full():
                # slow consumer: drop its oldest event rather than block the writer
                queue.get_nowait()
                logger.warning("change feed subscriber lagging; dropped oldest event")
            queue.put_nowait(event)


def public_event(event: ChangeEvent) -> ChangeEvent | None:
    """What an anonymous subscriber may see of ``event``.

    Spam reports never appear; an update that marks a visible issue as spam
    turns into a ``delete`` so subscribers drop the row they already show.
    """
    if event.entity != "issue" or not event.payload.get("is_spam"):
        return event
    if event.event_type == "update":
        return ChangeEvent("delete", "issue", {"id": event.payload.get("id")})
    return None
