"""Feed merger: the single owner of a feed's timeline state.

The merger reconciles two asynchronous sources into one timeline:

    - Live snapshots of the newest K items, pushed at any time
    - History pages of older items, pulled one at a time by cursor

Both sources go through the same merge routine (``Timeline.merge``), so the
final timeline does not depend on the order in which snapshots and pages
arrive.

Concurrency:
    This implementation is designed for async/await usage with a single event
    loop. Merge work never awaits, so each merge is atomic with respect to the
    loop. The history fetch is the only suspension point: the LOADING
    transition happens before it and the merge happens after it, each in one
    uninterrupted step. It is NOT thread-safe for access from multiple threads.

Lifecycle:
    idle -> loading -> idle        (non-empty page, or failure)
    idle -> loading -> exhausted   (empty page, terminal)
"""
import asyncio
import logging
from typing import Any, Callable, Iterable, List, Optional

from .errors import FetchFailed, StaleCompletion
from .history_pager import HistoryPager
from .schemas import FeedView, Item, LoadState, PageOutcome
from .timeline import MergeResult, Timeline, parse_items

logger = logging.getLogger(__name__)

FeedListener = Callable[[FeedView], None]


class FeedMerger:
    """Merges live snapshots and history pages into one timeline.

    Attributes:
        feed_id: Feed this merger belongs to (used for logging).
    """

    def __init__(self, pager: HistoryPager, feed_id: str = "default") -> None:
        self.feed_id = feed_id
        self._pager = pager
        self._timeline = Timeline()
        # Oldest item consumed by paging (or the first live seed)
        self._cursor: Optional[Item] = None
        self._load_state = LoadState.IDLE
        self._latest_snapshot: List[Item] = []
        self._listeners: List[FeedListener] = []
        self._closed = False

    # =========================================================================
    # Read-only state
    # =========================================================================

    @property
    def load_state(self) -> LoadState:
        return self._load_state

    @property
    def cursor(self) -> Optional[Item]:
        return self._cursor

    @property
    def latest_snapshot(self) -> List[Item]:
        return list(self._latest_snapshot)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def items(self) -> List[Item]:
        """Current timeline, newest first."""
        return self._timeline.items()

    def view(self) -> FeedView:
        """Return a read-only snapshot of the feed."""
        return FeedView(
            items=self._timeline.items(),
            cursor=self._cursor,
            loadState=self._load_state,
        )

    def add_listener(self, listener: FeedListener) -> Callable[[], None]:
        """Register a callback invoked with a FeedView after every change.

        Returns:
            A function that removes the listener.
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    # =========================================================================
    # Live snapshots
    # =========================================================================

    def ingest_live(self, snapshot: Iterable[Any]) -> MergeResult:
        """Merge a full live snapshot (newest first) into the timeline.

        Items missing from the snapshot stay in the timeline; the live window
        only reports the newest K items. Re-ingesting the same snapshot changes
        nothing.

        Args:
            snapshot: Items or raw documents, newest first.

        Returns:
            What the merge changed. Empty if the feed is closed.
        """
        try:
            self._ensure_open("Live snapshot")
        except StaleCompletion as exc:
            logger.debug("[Feed %s] %s", self.feed_id, exc.message)
            return MergeResult()

        items = parse_items(snapshot, source="live snapshot")
        self._latest_snapshot = items
        result = self._timeline.merge(items)

        # First seed positions the cursor; later live items never move it
        if self._cursor is None and len(self._timeline):
            self._cursor = self._timeline.oldest()
            logger.info(
                f"[Feed {self.feed_id}] Seeded {len(self._timeline)} items, "
                f"cursor={self._cursor.id}"
            )

        if result.changed:
            logger.debug(
                "[Feed %s] Live merge: +%d new, %d refreshed, %d moved",
                self.feed_id, result.inserted, result.refreshed, result.moved,
            )
            self._notify()
        return result

    # =========================================================================
    # History paging
    # =========================================================================

    async def request_older_page(self) -> PageOutcome:
        """Fetch and merge the next page of older items.

        Single-flight: while a request is in flight, or once history is
        exhausted, the call returns SKIPPED without touching the store.

        Returns:
            The outcome of this call.

        Raises:
            FetchFailed: If the store call failed. The feed is back to IDLE.
        """
        if self._closed or self._load_state is not LoadState.IDLE:
            logger.debug(
                "[Feed %s] Older page request skipped (state=%s, closed=%s)",
                self.feed_id, self._load_state.value, self._closed,
            )
            return PageOutcome.SKIPPED

        self._set_state(LoadState.LOADING)
        cursor = self._cursor

        try:
            raw_page = await self._pager.fetch(cursor)
        except FetchFailed:
            if self._discard_if_closed("History failure"):
                return PageOutcome.DISCARDED
            self._set_state(LoadState.IDLE)
            raise
        except asyncio.CancelledError:
            if not self._closed:
                self._set_state(LoadState.IDLE)
            raise

        if self._discard_if_closed("History page"):
            return PageOutcome.DISCARDED

        if not raw_page:
            logger.info(f"[Feed {self.feed_id}] History exhausted at cursor={_item_id(cursor)}")
            self._set_state(LoadState.EXHAUSTED)
            return PageOutcome.EXHAUSTED

        items = parse_items(raw_page, source="history page")
        result = self._timeline.merge(items)

        if items:
            oldest = min(items, key=lambda item: item.sort_key)
            # Never move the cursor back toward newer items
            if self._cursor is None or oldest.sort_key < self._cursor.sort_key:
                self._cursor = oldest
        else:
            logger.warning(
                "[Feed %s] History page of %d items had no valid items; cursor unchanged",
                self.feed_id, len(raw_page),
            )

        logger.info(
            f"[Feed {self.feed_id}] Loaded page: {result.inserted} new of {len(raw_page)}, "
            f"cursor={_item_id(self._cursor)}, timeline={len(self._timeline)}"
        )
        self._load_state = LoadState.IDLE
        self._notify()
        return PageOutcome.LOADED

    # =========================================================================
    # Teardown
    # =========================================================================

    def close(self) -> None:
        """Tear the merger down. Later deliveries are discarded."""
        if self._closed:
            return
        self._closed = True
        self._listeners.clear()
        logger.info(f"[Feed {self.feed_id}] Closed with {len(self._timeline)} items")

    # =========================================================================
    # Internal
    # =========================================================================

    def _ensure_open(self, source: str) -> None:
        if self._closed:
            raise StaleCompletion(source)

    def _discard_if_closed(self, source: str) -> bool:
        try:
            self._ensure_open(source)
        except StaleCompletion as exc:
            logger.debug("[Feed %s] %s", self.feed_id, exc.message)
            return True
        return False

    def _set_state(self, state: LoadState) -> None:
        self._load_state = state
        self._notify()

    def _notify(self) -> None:
        if not self._listeners:
            return
        view = self.view()
        for listener in list(self._listeners):
            try:
                listener(view)
            except Exception:
                logger.exception("[Feed %s] Listener failed", self.feed_id)


def _item_id(item: Optional[Item]) -> Optional[str]:
    return item.id if item is not None else None
