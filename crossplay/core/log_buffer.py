"""Bounded console history with replay-then-live subscriptions."""

import asyncio
import logging
from collections import deque
from collections.abc import AsyncIterator

from crossplay.storage.models import LogCategory, LogEntry

logger = logging.getLogger(__name__)

LOG_CAPACITY = 1000


class Subscription:
    """
    Live feed of entries appended after the subscription was created.

    Iterate with ``async for``. A subscriber that falls more than the buffer
    capacity behind is closed with ``overflowed`` set instead of silently
    losing entries; it should resubscribe to get a fresh snapshot.
    """

    def __init__(self, buffer: "LogBuffer", maxsize: int):
        self._buffer = buffer
        self._queue: asyncio.Queue[LogEntry | None] = asyncio.Queue(maxsize=maxsize + 1)
        self._maxsize = maxsize
        self.closed = False
        self.overflowed = False

    def _push(self, entry: LogEntry) -> None:
        if self.closed:
            return
        if self._queue.qsize() >= self._maxsize:
            self.overflowed = True
            logger.warning("Log subscriber fell behind, closing subscription")
            self.close()
            return
        self._queue.put_nowait(entry)

    def close(self) -> None:
        """Stop the feed; pending entries are still delivered."""
        if self.closed:
            return
        self.closed = True
        self._buffer._unsubscribe(self)
        # One slot is always kept free for the sentinel
        self._queue.put_nowait(None)

    async def get(self) -> LogEntry | None:
        """Wait for the next entry, None once the subscription is closed."""
        entry = await self._queue.get()
        if entry is None:
            # Keep returning None on further calls
            self._queue.put_nowait(None)
        return entry

    def __aiter__(self) -> AsyncIterator[LogEntry]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[LogEntry]:
        while True:
            entry = await self.get()
            if entry is None:
                return
            yield entry


class LogBuffer:
    """
    Ordered store of the most recent console entries.

    Holds at most ``capacity`` entries, evicting the oldest first. Runs on
    the event loop thread; appends and snapshots are not interleaved.
    """

    def __init__(self, capacity: int = LOG_CAPACITY):
        self.capacity = capacity
        self._entries: deque[LogEntry] = deque(maxlen=capacity)
        self._subscribers: list[Subscription] = []
        self._sequence = 0

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def last_sequence(self) -> int:
        """Sequence number of the most recent entry (0 if none)."""
        return self._sequence

    def append(self, entry: LogEntry) -> None:
        """Store an entry and forward it to live subscribers."""
        self._entries.append(entry)
        for subscription in list(self._subscribers):
            subscription._push(entry)

    def add(
        self,
        message: str,
        category: LogCategory = LogCategory.INFO,
        raw: str | None = None,
        source: str = "manager",
    ) -> LogEntry:
        """Create the next entry in sequence and append it."""
        self._sequence += 1
        entry = LogEntry(
            sequence=self._sequence,
            message=message,
            category=category,
            raw=message if raw is None else raw,
            source=source,
        )
        self.append(entry)
        return entry

    def snapshot(self) -> list[LogEntry]:
        """Current contents, oldest first."""
        return list(self._entries)

    def subscribe(self) -> tuple[list[LogEntry], Subscription]:
        """
        Take a snapshot and open a live feed at the same point.

        Both happen without yielding to the event loop, so replaying the
        snapshot and then consuming the feed gives every entry exactly once.
        """
        subscription = Subscription(self, self.capacity)
        self._subscribers.append(subscription)
        return self.snapshot(), subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def clear(self) -> None:
        """Drop stored history; subscribers stay attached."""
        self._entries.clear()
