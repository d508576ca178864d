"""Client-side store that talks to the feedsync HTTP service.

History pages come from ``GET /feeds/{feed_id}/history`` over httpx; the live
tail comes from the ``/ws/feeds/{feed_id}`` WebSocket. Items are returned as
raw dicts so the merger can drop malformed documents individually.
"""
import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
import websockets

from feedsync.config import ClientSettings
from feedsync.feed.schemas import Item

from .base import FeedStore

logger = logging.getLogger(__name__)


def _ws_base_url(base_url: str) -> str:
    if base_url.startswith("https://"):
        return "wss://" + base_url[len("https://"):]
    if base_url.startswith("http://"):
        return "ws://" + base_url[len("http://"):]
    return base_url


class RemoteFeedStore(FeedStore):
    """FeedStore backed by a remote feedsync service.

    Args:
        base_url: Service root, e.g. ``http://localhost:8000``.
        timeout: Per-request timeout in seconds for history fetches.
        client: Optional pre-built httpx.AsyncClient (not closed by ``close()``).
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    @classmethod
    def from_settings(cls, settings: ClientSettings) -> "RemoteFeedStore":
        return cls(settings.base_url, timeout=settings.request_timeout_seconds)

    async def fetch_history_page(
        self, feed_id: str, cursor: Optional[Item], page_size: int
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"limit": page_size}
        if cursor is not None:
            params["before"] = cursor.createdAt
            params["beforeId"] = cursor.id

        resp = await self._client.get(f"/feeds/{feed_id}/history", params=params)
        resp.raise_for_status()
        data = resp.json()
        items = data.get("items", [])
        logger.debug("[Remote] %s history: %d items, hasMore=%s", feed_id, len(items), data.get("hasMore"))
        return items

    async def subscribe_live_tail(
        self, feed_id: str, page_size: int
    ) -> AsyncIterator[List[Dict[str, Any]]]:
        url = f"{_ws_base_url(self.base_url)}/ws/feeds/{feed_id}?limit={page_size}"
        logger.info(f"[Remote] Subscribing to {url}")
        async with websockets.connect(url) as ws:
            async for raw in ws:
                data = json.loads(raw)
                if data.get("type") != "snapshot":
                    logger.debug("[Remote] Ignoring %s frame on %s", data.get("type"), feed_id)
                    continue
                yield data.get("items", [])

    async def put(self, feed_id: str, item: Item) -> Dict[str, Any]:
        """Store a document through the service (used by tools and tests)."""
        resp = await self._client.post(f"/feeds/{feed_id}/items", json=item.model_dump())
        resp.raise_for_status()
        return resp.json()

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
