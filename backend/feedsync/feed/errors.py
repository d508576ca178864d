"""Exceptions raised by the feed synchronization engine."""
from typing import Any, Optional


class FeedError(Exception):
    """Base exception for feed errors."""
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class FetchFailed(FeedError):
    """Raised when a history page fetch fails.

    The feed returns to idle, so a later sentinel event can retry.
    """
    def __init__(self, message: str, cursor_id: Optional[str] = None):
        self.cursor_id = cursor_id
        super().__init__(f"History fetch failed (cursor={cursor_id}): {message}")


class StaleCompletion(FeedError):
    """Raised internally when a delivery lands on a closed feed."""
    def __init__(self, source: str):
        self.source = source
        super().__init__(f"{source} completed after the feed was closed")


class MalformedItem(FeedError):
    """Raised when an incoming item lacks a usable id or createdAt."""
    def __init__(self, message: str, raw: Any = None):
        self.raw = raw
        super().__init__(f"Malformed item: {message}")
