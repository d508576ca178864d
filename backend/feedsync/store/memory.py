"""In-memory document store for feeds.

This module keeps each feed's documents in process memory and pushes live
windows to subscribers. It backs the bundled HTTP service and the tests.

Key features:
    - Multiple feeds with isolated state
    - Upsert by id (a rewritten document replaces the old copy)
    - Items kept sorted by (createdAt, id) with bisect lookups
    - Live newest-K windows pushed only when a subscriber's window changes
    - Paginated history strictly older than a cursor

Thread Safety:
    This implementation is designed for async/await usage with a single event
    loop. Window delivery is safe from another thread (it is handed to the
    subscriber's loop), but document writes are not.
"""
import asyncio
import logging
from bisect import bisect_left
from typing import AsyncIterator, Dict, List, Optional, Tuple

from feedsync.feed.schemas import Item

from .base import FeedStore

logger = logging.getLogger(__name__)

# Maximum page size to prevent abuse
MAX_PAGE_SIZE = 100

SortKey = Tuple[float, str]


class _Subscription:
    """One live-tail subscriber and its delivery slot.

    Windows are full replacements, so the queue holds at most one: a newer
    window overwrites one the consumer has not picked up yet.
    """

    __slots__ = ("window_size", "queue", "loop", "last_window")

    def __init__(self, window_size: int) -> None:
        self.window_size = window_size
        self.queue: "asyncio.Queue[List[Item]]" = asyncio.Queue(maxsize=1)
        self.loop = asyncio.get_running_loop()
        self.last_window: Optional[List[Item]] = None

    def offer(self, window: List[Item]) -> bool:
        """Queue a window unless it equals the last one delivered."""
        if window == self.last_window or self.loop.is_closed():
            return False
        self.last_window = window
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self.loop:
            self._replace(window)
        else:
            self.loop.call_soon_threadsafe(self._replace, window)
        return True

    def _replace(self, window: List[Item]) -> None:
        if self.queue.full():
            self.queue.get_nowait()
        self.queue.put_nowait(window)


class InMemoryFeedStore(FeedStore):
    """Feed documents and live subscriptions, per feed id."""

    def __init__(self, max_page_size: int = MAX_PAGE_SIZE) -> None:
        self.max_page_size = max_page_size
        # feed_id -> {item_id -> Item}
        self._documents: Dict[str, Dict[str, Item]] = {}
        # feed_id -> ascending sort keys
        self._keys: Dict[str, List[SortKey]] = {}
        # feed_id -> live subscribers
        self._subscribers: Dict[str, List[_Subscription]] = {}

    # =========================================================================
    # Writes
    # =========================================================================

    def put(self, feed_id: str, item: Item) -> Item:
        """Create or replace a document, then push changed live windows."""
        documents = self._documents.setdefault(feed_id, {})
        keys = self._keys.setdefault(feed_id, [])

        previous = documents.get(item.id)
        if previous is not None and previous.sort_key != item.sort_key:
            del keys[bisect_left(keys, previous.sort_key)]
        if previous is None or previous.sort_key != item.sort_key:
            keys.insert(bisect_left(keys, item.sort_key), item.sort_key)
        documents[item.id] = item

        self._publish(feed_id)
        return item

    def put_many(self, feed_id: str, items: List[Item]) -> None:
        for item in items:
            self.put(feed_id, item)

    def clear_feed(self, feed_id: str) -> None:
        """Remove all documents of a feed. Subscribers see an empty window."""
        self._documents.pop(feed_id, None)
        self._keys.pop(feed_id, None)
        self._publish(feed_id)
        logger.info(f"[Store] Feed {feed_id} cleared")

    def clear(self) -> None:
        for feed_id in list(self._documents):
            self.clear_feed(feed_id)

    # =========================================================================
    # Queries
    # =========================================================================

    def get(self, feed_id: str, item_id: str) -> Optional[Item]:
        return self._documents.get(feed_id, {}).get(item_id)

    def count(self, feed_id: str) -> int:
        return len(self._documents.get(feed_id, {}))

    def subscriber_count(self, feed_id: str) -> int:
        return len(self._subscribers.get(feed_id, []))

    def newest(self, feed_id: str, limit: int) -> List[Item]:
        """Return the newest ``limit`` items, newest first."""
        return self.older_than(feed_id, None, limit)

    def older_than(
        self, feed_id: str, before: Optional[SortKey], limit: int
    ) -> List[Item]:
        """Return up to ``limit`` items with sort key < ``before``, newest first.

        Args:
            feed_id: The feed to query.
            before: Exclusive upper bound, or None for the newest items.
            limit: Maximum number of items (clamped to ``max_page_size``).
        """
        limit = min(limit, self.max_page_size)
        if limit < 1:
            return []
        keys = self._keys.get(feed_id, [])
        end = len(keys) if before is None else bisect_left(keys, before)
        start = max(0, end - limit)
        documents = self._documents[feed_id] if keys else {}
        return [documents[item_id] for _, item_id in reversed(keys[start:end])]

    def has_older(self, feed_id: str, before: SortKey) -> bool:
        keys = self._keys.get(feed_id, [])
        return bisect_left(keys, before) > 0

    # =========================================================================
    # FeedStore primitives
    # =========================================================================

    async def fetch_history_page(
        self, feed_id: str, cursor: Optional[Item], page_size: int
    ) -> List[Item]:
        before = cursor.sort_key if cursor is not None else None
        return self.older_than(feed_id, before, page_size)

    async def subscribe_live_tail(
        self, feed_id: str, page_size: int
    ) -> AsyncIterator[List[Item]]:
        subscription = _Subscription(min(page_size, self.max_page_size))
        self._subscribers.setdefault(feed_id, []).append(subscription)
        logger.debug(
            "[Store] Live subscriber added to %s (window=%d)", feed_id, subscription.window_size
        )
        try:
            subscription.offer(self.newest(feed_id, subscription.window_size))
            while True:
                yield await subscription.queue.get()
        finally:
            subscribers = self._subscribers.get(feed_id, [])
            if subscription in subscribers:
                subscribers.remove(subscription)
            if not subscribers:
                self._subscribers.pop(feed_id, None)
            logger.debug("[Store] Live subscriber removed from %s", feed_id)

    def _publish(self, feed_id: str) -> None:
        for subscription in list(self._subscribers.get(feed_id, [])):
            subscription.offer(self.newest(feed_id, subscription.window_size))


# Global store instance used by the HTTP service
feed_store = InMemoryFeedStore()
