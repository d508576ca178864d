"""FeedStore abstract interface for document-store backends.

A store exposes the two primitives the feed engine consumes:

    - subscribe_live_tail(): push the newest-K window on every change
    - fetch_history_page(): pull a page of items older than a cursor

Usage:
    from feedsync.store import InMemoryFeedStore

    store = InMemoryFeedStore()
    async for window in store.subscribe_live_tail("general", 10):
        ...
"""
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Optional, Sequence

from feedsync.feed.schemas import Item


class FeedStore(ABC):
    """Abstract base class for feed stores."""

    @abstractmethod
    def subscribe_live_tail(
        self, feed_id: str, page_size: int
    ) -> AsyncIterator[Sequence[Any]]:
        """Subscribe to the newest ``page_size`` items of a feed.

        The first delivery is the current window. Each later delivery is the
        entire window, newest first, sent whenever it changes. Closing the
        iterator unsubscribes.
        """

    @abstractmethod
    async def fetch_history_page(
        self, feed_id: str, cursor: Optional[Item], page_size: int
    ) -> Sequence[Any]:
        """Fetch up to ``page_size`` items strictly older than ``cursor``.

        Older means smaller ``(createdAt, id)``. With no cursor, returns the
        newest page. Items are newest first; an empty result means there is
        no older history.
        """

    async def close(self) -> None:
        """Release resources held by the store."""
