"""Feed synchronization engine.

Merges a live newest-K window with cursor-paginated history into one
ordered, deduplicated timeline.
"""
from .errors import FeedError, FetchFailed, MalformedItem, StaleCompletion
from .history_pager import HistoryPager
from .live_tail import LiveTail
from .merger import FeedMerger
from .schemas import FeedView, Item, LoadState, PageOutcome
from .scroll import ScrollTrigger, should_load_older
from .timeline import Timeline

__all__ = [
    "FeedError",
    "FeedMerger",
    "FeedView",
    "FetchFailed",
    "HistoryPager",
    "Item",
    "LiveTail",
    "LoadState",
    "MalformedItem",
    "PageOutcome",
    "ScrollTrigger",
    "StaleCompletion",
    "Timeline",
    "should_load_older",
]
