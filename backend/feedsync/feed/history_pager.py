"""Cursor-based backward paging over a feed's history.

The pager is a thin adapter over the store's ``fetch_history_page`` primitive.
It is not safe for overlapping calls; FeedMerger guarantees at most one
request in flight per feed.
"""
import logging
from typing import Any, Awaitable, Callable, List, Optional, Sequence

from .errors import FetchFailed
from .schemas import Item

logger = logging.getLogger(__name__)

# Default page size for backward history requests
DEFAULT_HISTORY_PAGE_SIZE = 20

FetchHistoryPage = Callable[[Optional[Item], int], Awaitable[Sequence[Any]]]


class HistoryPager:
    """Fetches pages of items strictly older than a cursor, newest first."""

    def __init__(
        self,
        fetch_page: FetchHistoryPage,
        page_size: int = DEFAULT_HISTORY_PAGE_SIZE,
    ) -> None:
        if page_size < 1:
            raise ValueError(f"page_size must be positive, got {page_size}")
        self._fetch_page = fetch_page
        self.page_size = page_size
        self.requests = 0

    async def fetch(self, cursor: Optional[Item]) -> List[Any]:
        """Fetch the page after ``cursor``.

        Args:
            cursor: Oldest item loaded so far, or None for the newest page.

        Returns:
            Up to ``page_size`` raw items, newest first. Empty when history
            is exhausted.

        Raises:
            FetchFailed: If the store call raised.
        """
        self.requests += 1
        cursor_id = cursor.id if cursor is not None else None
        logger.debug("[Pager] Fetching %d items before cursor=%s", self.page_size, cursor_id)
        try:
            page = await self._fetch_page(cursor, self.page_size)
        except FetchFailed:
            raise
        except Exception as exc:
            logger.warning(f"[Pager] Fetch before cursor={cursor_id} failed: {exc}")
            raise FetchFailed(str(exc) or type(exc).__name__, cursor_id=cursor_id) from exc
        return list(page or [])
