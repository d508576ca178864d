"""One open feed: store, live tail, pager, merger and scroll trigger wired together.

Usage:
    async with FeedSession(store, "general") as session:
        await session.live_tail.wait_seeded(timeout=5)
        session.scroll.sentinel_reached()
        print(session.view().ids)
"""
import logging
from functools import partial
from typing import Optional

from feedsync.config import FeedSettings
from feedsync.store.base import FeedStore

from .history_pager import DEFAULT_HISTORY_PAGE_SIZE, HistoryPager
from .live_tail import DEFAULT_LIVE_WINDOW_SIZE, LiveTail
from .merger import FeedMerger
from .schemas import FeedView, PageOutcome
from .scroll import ErrorHandler, ScrollTrigger

logger = logging.getLogger(__name__)


class FeedSession:
    """Owns every component of one feed and tears them down together."""

    def __init__(
        self,
        store: FeedStore,
        feed_id: str,
        live_window_size: int = DEFAULT_LIVE_WINDOW_SIZE,
        history_page_size: int = DEFAULT_HISTORY_PAGE_SIZE,
        on_error: Optional[ErrorHandler] = None,
    ) -> None:
        self.feed_id = feed_id
        self.pager = HistoryPager(
            partial(store.fetch_history_page, feed_id), page_size=history_page_size
        )
        self.merger = FeedMerger(self.pager, feed_id=feed_id)
        self.live_tail = LiveTail(
            partial(store.subscribe_live_tail, feed_id),
            window_size=live_window_size,
            name=f"live-tail:{feed_id}",
        )
        self.scroll = ScrollTrigger(self.merger, on_error=on_error)
        self._opened = False

    @classmethod
    def from_settings(
        cls,
        store: FeedStore,
        feed_id: str,
        settings: FeedSettings,
        on_error: Optional[ErrorHandler] = None,
    ) -> "FeedSession":
        return cls(
            store,
            feed_id,
            live_window_size=settings.live_window_size,
            history_page_size=settings.history_page_size,
            on_error=on_error,
        )

    async def open(self) -> "FeedSession":
        """Start the live subscription. The first snapshot seeds the feed."""
        if not self._opened:
            self.live_tail.start(self.merger.ingest_live)
            self._opened = True
            logger.info(f"[Session] Opened feed {self.feed_id}")
        return self

    async def close(self) -> None:
        """Close the merger first so anything still in flight is discarded."""
        self.merger.close()
        await self.live_tail.stop()
        await self.scroll.stop()
        logger.info(f"[Session] Closed feed {self.feed_id}")

    async def load_older(self) -> PageOutcome:
        """Request the next older page directly. Raises FetchFailed on failure."""
        return await self.merger.request_older_page()

    def view(self) -> FeedView:
        return self.merger.view()

    async def __aenter__(self) -> "FeedSession":
        return await self.open()

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
