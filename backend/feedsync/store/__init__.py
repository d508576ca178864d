"""Document-store backends for feeds.

Services:
    - InMemoryFeedStore: in-process store behind the HTTP service.
    - RemoteFeedStore: client for a running feedsync service.
"""
from .base import FeedStore
from .memory import InMemoryFeedStore, feed_store
from .remote import RemoteFeedStore

__all__ = ["FeedStore", "InMemoryFeedStore", "RemoteFeedStore", "feed_store"]
