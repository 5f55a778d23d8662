"""Row-change notifications and a local entity cache.

Writers stage a :class:`Change` on their database session; the change is
published to matching subscribers only after that session commits. Changes
staged in a transaction that rolls back are dropped.
"""

import asyncio
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, Literal

from sqlalchemy import event, inspect
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session
from starlette.requests import HTTPConnection

logger = logging.getLogger(__name__)

ChangeEvent = Literal["INSERT", "UPDATE", "DELETE"]
RowPredicate = Callable[[dict[str, Any]], bool]

PENDING_CHANGES_KEY = "socialnet.pending_changes"


@dataclass(frozen=True)
class Change:
    """A committed row change."""

    table: str
    event: ChangeEvent
    new: dict[str, Any] = field(default_factory=dict)
    old: dict[str, Any] | None = None

    @property
    def row(self) -> dict[str, Any]:
        """The row the change is about (the old row for deletes)."""
        if self.event == "DELETE":
            return self.old or {}
        return self.new


def row_to_dict(obj: Any) -> dict[str, Any]:
    """Snapshot the column values of an ORM instance."""
    mapper = inspect(obj).mapper
    return {attr.key: getattr(obj, attr.key) for attr in mapper.column_attrs}


class Subscription:
    """A bounded queue of changes matching one filter."""

    def __init__(
        self,
        feed: "ChangeFeed",
        table: str,
        events: frozenset[str] | None = None,
        predicate: RowPredicate | None = None,
        maxsize: int = 100,
    ) -> None:
        self.table = table
        self.events = events
        self.predicate = predicate
        self._feed = feed
        self._queue: asyncio.Queue[Change] = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    def matches(self, change: Change) -> bool:
        if change.table != self.table:
            return False
        if self.events is not None and change.event not in self.events:
            return False
        if self.predicate is not None and not self.predicate(change.row):
            return False
        return True

    def offer(self, change: Change) -> bool:
        """Queue ``change`` without waiting. Returns False if it was dropped."""
        if self.closed:
            return False
        try:
            self._queue.put_nowait(change)
        except asyncio.QueueFull:
            logger.warning(
                "Dropping %s change on %s: subscriber queue full", change.event, self.table
            )
            return False
        return True

    async def get(self) -> Change:
        return await self._queue.get()

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._feed._remove(self)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> Change:
        if self.closed:
            raise StopAsyncIteration
        return await self.get()

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()


class ChangeFeed:
    """In-process fan-out of committed row changes to subscribers."""

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(
        self,
        table: str,
        events: Iterable[ChangeEvent] | None = None,
        predicate: RowPredicate | None = None,
        maxsize: int = 100,
    ) -> Subscription:
        """Subscribe to changes on ``table``.

        Args:
            table: Table name to watch.
            events: Event types to receive. All events when omitted.
            predicate: Row filter; receives the new row (old row for deletes).
            maxsize: Queue bound. Changes arriving at a full queue are dropped.
        """
        subscription = Subscription(
            self,
            table,
            events=frozenset(events) if events is not None else None,
            predicate=predicate,
            maxsize=maxsize,
        )
        self._subscriptions.append(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def publish(self, change: Change) -> int:
        """Deliver ``change`` to every matching subscriber. Returns the delivery count."""
        delivered = 0
        for subscription in list(self._subscriptions):
            if subscription.matches(change) and subscription.offer(change):
                delivered += 1
        return delivered

    def stage(self, session: AsyncSession | Session, change: Change) -> None:
        """Publish ``change`` once ``session`` commits."""
        session.info.setdefault(PENDING_CHANGES_KEY, []).append((self, change))


@event.listens_for(Session, "after_commit")
def _publish_committed_changes(session: Session) -> None:
    pending = session.info.pop(PENDING_CHANGES_KEY, None)
    if not pending:
        return
    for feed, change in pending:
        feed.publish(change)


@event.listens_for(Session, "after_rollback")
def _discard_rolled_back_changes(session: Session) -> None:
    pending = session.info.pop(PENDING_CHANGES_KEY, None)
    if pending:
        logger.debug("Discarded %d staged change(s) after rollback", len(pending))


class EntityCache:
    """Ordered local copy of entities keyed by id.

    Direct mutation results and inbound change notifications both go through
    :meth:`upsert`/:meth:`apply`, so whichever arrives second is a no-op.
    """

    def __init__(self, key: str = "id") -> None:
        self.key = key
        self._items: dict[Any, dict[str, Any]] = {}

    def __contains__(self, entity_id: Any) -> bool:
        return entity_id in self._items

    def __len__(self) -> int:
        return len(self._items)

    def get(self, entity_id: Any) -> dict[str, Any] | None:
        return self._items.get(entity_id)

    def values(self) -> list[dict[str, Any]]:
        return list(self._items.values())

    def seed(self, rows: Iterable[dict[str, Any]]) -> None:
        for row in rows:
            self.upsert(row)

    def upsert(self, row: dict[str, Any]) -> bool:
        """Insert or replace a row. Returns True if the cache changed."""
        entity_id = row[self.key]
        if self._items.get(entity_id) == row:
            return False
        self._items[entity_id] = dict(row)
        return True

    def remove(self, entity_id: Any) -> bool:
        """Drop an entity. Returns True if it was present."""
        return self._items.pop(entity_id, None) is not None

    def apply(self, change: Change) -> bool:
        """Apply a change notification. Returns True if the cache changed."""
        if change.event == "DELETE":
            return self.remove(change.row.get(self.key))
        return self.upsert(change.new)


def get_change_feed(connection: HTTPConnection) -> ChangeFeed:
    """Dependency returning the process-wide change feed."""
    return connection.app.state.change_feed
