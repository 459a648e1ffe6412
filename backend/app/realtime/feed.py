"""
In-process change feed.

Routes publish row changes (`channel_messages` inserts, for example) and
subscribers receive the ones matching a `column == value` filter on a
table. Subscriptions are scoped: leaving the `subscribe()` block removes
them on every exit path.
"""
import asyncio
from collections.abc import Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional

from app.core.config import settings
from app.core.logging import realtime_logger
from app.db.enums import FeedEvent


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    event: FeedEvent
    row: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"table": self.table, "eventType": self.event.value, "new": self.row}


class Subscription:
    """Queue of events for one `(table, column == value)` filter.

    Iterate with `async for`. When the consumer falls `maxsize` events
    behind, the oldest pending event is dropped.
    """

    def __init__(self, table: str, column: str, value: Any, maxsize: int):
        self.table = table
        self.column = column
        self.value = value
        self.dropped = 0
        self._queue: asyncio.Queue[ChangeEvent] = asyncio.Queue(maxsize=maxsize)

    def matches(self, event: ChangeEvent) -> bool:
        return event.table == self.table and event.row.get(self.column) == self.value

    def put(self, event: ChangeEvent) -> None:
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
            realtime_logger.warning(
                "Feed subscriber lagging, dropped oldest event",
                table=self.table,
                column=self.column,
                value=self.value,
                dropped=self.dropped,
            )
        self._queue.put_nowait(event)

    async def get(self) -> ChangeEvent:
        return await self._queue.get()

    def pending(self) -> int:
        return self._queue.qsize()

    def __aiter__(self) -> AsyncIterator[ChangeEvent]:
        return self

    async def __anext__(self) -> ChangeEvent:
        return await self._queue.get()

    def __repr__(self) -> str:
        return f"<Subscription {self.table}.{self.column}={self.value!r}>"


class ChangeFeed:
    def __init__(self, queue_size: Optional[int] = None):
        self.queue_size = queue_size or settings.FEED_QUEUE_SIZE
        self._subscriptions: dict[str, set[Subscription]] = {}
        # Called with every local publish; the Redis bridge registers here
        self._forwarders: list[Callable[[ChangeEvent], None]] = []

    def add_forwarder(self, forwarder: Callable[[ChangeEvent], None]) -> None:
        self._forwarders.append(forwarder)

    def remove_forwarder(self, forwarder: Callable[[ChangeEvent], None]) -> None:
        if forwarder in self._forwarders:
            self._forwarders.remove(forwarder)

    def subscription_count(self, table: Optional[str] = None) -> int:
        if table is not None:
            return len(self._subscriptions.get(table, ()))
        return sum(len(s) for s in self._subscriptions.values())

    def publish(self, table: str, row: dict, event: FeedEvent | str = FeedEvent.insert) -> int:
        """Publish a row change locally and to every forwarder.

        Returns the number of local subscriptions that received it.
        """
        change = ChangeEvent(table=table, event=FeedEvent(event), row=dict(row))
        delivered = self.deliver(change)
        for forward in list(self._forwarders):
            try:
                forward(change)
            except Exception as exc:
                realtime_logger.warning("Feed forwarder failed", table=table, error=str(exc))
        return delivered

    def deliver(self, change: ChangeEvent) -> int:
        """Hand an event to matching local subscriptions only."""
        delivered = 0
        for sub in list(self._subscriptions.get(change.table, ())):
            if sub.matches(change):
                sub.put(change)
                delivered += 1
        realtime_logger.debug(
            "Feed event delivered",
            table=change.table,
            event=change.event.value,
            subscribers=delivered,
        )
        return delivered

    @asynccontextmanager
    async def subscribe(self, table: str, column: str, value: Any) -> AsyncIterator[Subscription]:
        sub = Subscription(table, column, value, self.queue_size)
        self._subscriptions.setdefault(table, set()).add(sub)
        realtime_logger.debug("Feed subscription opened", table=table, column=column, value=value)
        try:
            yield sub
        finally:
            subs = self._subscriptions.get(table)
            if subs is not None:
                subs.discard(sub)
                if not subs:
                    del self._subscriptions[table]
            realtime_logger.debug("Feed subscription closed", table=table, column=column, value=value)


change_feed = ChangeFeed()


def get_change_feed() -> ChangeFeed:
    return change_feed
