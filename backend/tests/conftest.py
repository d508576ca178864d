"""Shared test fixtures and configuration for backend tests."""
import pytest
from fastapi.testclient import TestClient

from feedsync.feed.schemas import Item
from feedsync.main import app
from feedsync.store.memory import feed_store


def make_item(item_id: str, created_at: float, body: str = "", author: str = "u1") -> Item:
    """Shorthand for building a feed item."""
    return Item(id=item_id, authorId=author, createdAt=created_at, body=body or f"msg {item_id}")


@pytest.fixture
def api_client():
    """Provide a TestClient for the main FastAPI app."""
    return TestClient(app)


@pytest.fixture(autouse=True)
def cleanup_feeds():
    """Clear the global store after each test to avoid interference."""
    yield
    feed_store.clear()
