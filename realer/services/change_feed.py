"""Recipient-filtered change feed.

Publishers append row-level events to a bounded per-recipient log; each event
gets a monotonically increasing cursor. Live subscriptions receive events as
they are published; a subscriber that reconnects passes its last cursor and
gets the retained tail replayed, or a single RESYNC event when the cursor has
fallen out of the retained window. Delivery is at-least-once: consumers
de-duplicate by ``event_id`` and re-fetch authoritative state from the store.
"""

import asyncio
from collections import OrderedDict, defaultdict, deque
from datetime import datetime, timezone
from itertools import count
from typing import Iterable, Optional

from realer.models.feed import FeedEvent, FeedEventType, FeedTable
from realer.utils.ids import new_id
from realer.utils.logging import get_structured_logger, mask_user_id

logger = get_structured_logger(__name__)

DEFAULT_RETENTION = 1000
DEFAULT_QUEUE_SIZE = 256
DEFAULT_MAX_RECIPIENTS = 10000


def _normalize_tables(tables: Optional[Iterable]) -> Optional[frozenset[FeedTable]]:
    if tables is None:
        return None
    return frozenset(FeedTable(t) for t in tables)


class Subscription:
    """Live stream of one recipient's events, optionally filtered by table."""

    def __init__(self, feed: "ChangeFeed", recipient_id: str, tables: Optional[frozenset[FeedTable]],
                 max_queue: int = DEFAULT_QUEUE_SIZE):
        self.feed = feed
        self.recipient_id = recipient_id
        self.tables = tables
        self.queue: asyncio.Queue[FeedEvent] = asyncio.Queue(maxsize=max_queue)
        self.last_cursor = 0
        self.closed = False

    def matches(self, event: FeedEvent) -> bool:
        if event.event_type is FeedEventType.RESYNC:
            return True
        return self.tables is None or event.table in self.tables

    def offer(self, event: FeedEvent) -> None:
        """Queue an event; an overflowing subscriber is told to resync instead."""
        if self.closed or not self.matches(event):
            return
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(
                "Feed subscriber overflowed; forcing resync",
                recipient_id=mask_user_id(self.recipient_id),
                queue_size=self.queue.maxsize
            )
            while not self.queue.empty():
                self.queue.get_nowait()
            self.queue.put_nowait(self.feed.resync_event(self.recipient_id))

    async def get(self, timeout: Optional[float] = None) -> FeedEvent:
        if timeout is None:
            event = await self.queue.get()
        else:
            event = await asyncio.wait_for(self.queue.get(), timeout)
        self.last_cursor = max(self.last_cursor, event.cursor)
        return event

    def drain(self) -> list[FeedEvent]:
        """Events already queued, without waiting."""
        events = []
        while not self.queue.empty():
            event = self.queue.get_nowait()
            self.last_cursor = max(self.last_cursor, event.cursor)
            events.append(event)
        return events

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.feed._unsubscribe(self)

    def __aiter__(self):
        return self

    async def __anext__(self) -> FeedEvent:
        if self.closed:
            raise StopAsyncIteration
        return await self.get()

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class ChangeFeed:
    """In-process publish/subscribe hub keyed by recipient id.

    History is kept for at most ``max_recipients`` recipients. Past that the
    least recently published recipient without a live subscription is
    dropped, and any later resume for a recipient with no history at or
    below the highest dropped cursor gets a RESYNC.
    """

    def __init__(self, retention: int = DEFAULT_RETENTION, max_recipients: int = DEFAULT_MAX_RECIPIENTS):
        self.retention = retention
        self.max_recipients = max_recipients
        self._cursor = count(1)
        # Least recently published first
        self._logs: OrderedDict[str, deque[FeedEvent]] = OrderedDict()
        # Highest cursor evicted from each retained log; resume below it needs a resync
        self._evicted: dict[str, int] = {}
        self._dropped = 0
        self._subscriptions: dict[str, set[Subscription]] = defaultdict(set)

    def resync_event(self, recipient_id: str) -> FeedEvent:
        return FeedEvent(
            event_id=new_id(),
            recipient_id=recipient_id,
            table=None,
            event_type=FeedEventType.RESYNC,
            cursor=self.latest_cursor(recipient_id),
            created_at=datetime.now(timezone.utc).isoformat(),
        )

    def _horizon(self, recipient_id: str) -> int:
        if recipient_id in self._logs:
            return self._evicted.get(recipient_id, 0)
        return self._dropped

    def latest_cursor(self, recipient_id: str) -> int:
        log = self._logs.get(recipient_id)
        return log[-1].cursor if log else self._horizon(recipient_id)

    def _log_for(self, recipient_id: str) -> deque[FeedEvent]:
        log = self._logs.get(recipient_id)
        if log is not None:
            self._logs.move_to_end(recipient_id)
            return log

        log = self._logs[recipient_id] = deque(maxlen=self.retention)
        if self._dropped:
            self._evicted[recipient_id] = self._dropped
        self._prune(keep=recipient_id)
        return log

    def _prune(self, keep: str) -> None:
        excess = len(self._logs) - self.max_recipients
        if excess <= 0:
            return

        idle = []
        for recipient_id in self._logs:
            if len(idle) == excess:
                break
            if recipient_id != keep and recipient_id not in self._subscriptions:
                idle.append(recipient_id)

        for recipient_id in idle:
            log = self._logs.pop(recipient_id)
            self._evicted.pop(recipient_id, None)
            if log:
                self._dropped = max(self._dropped, log[-1].cursor)
        if idle:
            logger.debug("Feed history dropped", recipients=len(idle), dropped_cursor=self._dropped)

    def publish(self, event: FeedEvent) -> FeedEvent:
        """Stamp a cursor on ``event``, retain it and fan it out. Returns the stamped event."""
        stamped = event.model_copy(update={
            "cursor": next(self._cursor),
            "created_at": event.created_at or datetime.now(timezone.utc).isoformat(),
        })
        log = self._log_for(stamped.recipient_id)
        if len(log) == log.maxlen:
            self._evicted[stamped.recipient_id] = log[0].cursor
        log.append(stamped)

        subscribers = list(self._subscriptions.get(stamped.recipient_id, ()))
        for subscription in subscribers:
            subscription.offer(stamped)

        logger.debug(
            "Feed event published",
            recipient_id=mask_user_id(stamped.recipient_id),
            table=stamped.table.value if stamped.table else None,
            event_type=stamped.event_type.value,
            record_id=stamped.record_id,
            cursor=stamped.cursor,
            subscribers=len(subscribers)
        )
        return stamped

    def publish_many(self, events: Iterable[FeedEvent]) -> list[FeedEvent]:
        return [self.publish(event) for event in events]

    def _replay(self, recipient_id: str, since: int, tables: Optional[frozenset[FeedTable]]) -> list[FeedEvent]:
        if since < self._horizon(recipient_id):
            return [self.resync_event(recipient_id)]
        return [
            e for e in self._logs.get(recipient_id, ())
            if e.cursor > since and (tables is None or e.table in tables)
        ]

    def subscribe(self, recipient_id: str, tables: Optional[Iterable] = None,
                  since: Optional[int] = None) -> Subscription:
        """Open a live subscription; with ``since``, retained events after it are queued first."""
        subscription = Subscription(self, recipient_id, _normalize_tables(tables))
        if since is not None:
            for event in self._replay(recipient_id, since, subscription.tables):
                subscription.offer(event)
        self._subscriptions[recipient_id].add(subscription)
        logger.info(
            "Feed subscription opened",
            recipient_id=mask_user_id(recipient_id),
            tables=sorted(t.value for t in subscription.tables) if subscription.tables else None,
            since=since
        )
        return subscription

    def poll(self, recipient_id: str, since: int = 0, tables: Optional[Iterable] = None) -> list[FeedEvent]:
        """Non-streaming fallback with the same resume semantics as ``subscribe``."""
        return self._replay(recipient_id, since, _normalize_tables(tables))

    def _unsubscribe(self, subscription: Subscription) -> None:
        subs = self._subscriptions.get(subscription.recipient_id)
        if subs is not None:
            subs.discard(subscription)
            if not subs:
                del self._subscriptions[subscription.recipient_id]
        logger.info("Feed subscription closed", recipient_id=mask_user_id(subscription.recipient_id))

    def get_stats(self) -> dict:
        return {
            "recipients": len(self._logs),
            "subscriptions": sum(len(s) for s in self._subscriptions.values()),
        }


class InvalidationTracker:
    """Subscriber-side reducer turning feed events into re-fetch work.

    Re-delivered events (same ``event_id``) are ignored; a RESYNC marks the
    whole session stale.
    """

    def __init__(self, max_seen: int = 5000):
        self._seen: deque[str] = deque(maxlen=max_seen)
        self._seen_set: set[str] = set()
        self.stale: set[tuple[str, str]] = set()
        self.needs_full_refresh = False
        self.cursor = 0

    def apply(self, event: FeedEvent) -> bool:
        """Record ``event``; returns False when it was a duplicate."""
        if event.event_id in self._seen_set:
            return False
        if len(self._seen) == self._seen.maxlen:
            self._seen_set.discard(self._seen[0])
        self._seen.append(event.event_id)
        self._seen_set.add(event.event_id)
        self.cursor = max(self.cursor, event.cursor)

        if event.event_type is FeedEventType.RESYNC:
            self.needs_full_refresh = True
        elif event.table is not None and event.record_id:
            self.stale.add((event.table.value, event.record_id))
        return True

    def take(self) -> tuple[bool, set[tuple[str, str]]]:
        """Return and clear the pending (full_refresh, stale keys) work."""
        full, stale = self.needs_full_refresh, self.stale
        self.needs_full_refresh = False
        self.stale = set()
        return full, stale


def row_event(recipient_id: str, table: FeedTable, event_type: FeedEventType, record: dict,
              version: Optional[int] = None) -> FeedEvent:
    """Feed event for one row mutation.

    The event id is derived from the row identity and version so that the
    same mutation published twice is recognised as a re-delivery.
    """
    record_id = record.get("id")
    suffix = version if version is not None else event_type.value
    return FeedEvent(
        event_id=f"{table.value}:{record_id}:{suffix}:{recipient_id}",
        recipient_id=recipient_id,
        table=table,
        event_type=event_type,
        record_id=record_id,
        record=record,
    )
