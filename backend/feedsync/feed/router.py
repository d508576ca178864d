"""Feed router providing HTTP and WebSocket endpoints over the document store.

This module provides:
    - GET /feeds/{feed_id}/history: Paginated history older than a cursor
    - POST /feeds/{feed_id}/items: Store a pre-formed item
    - WebSocket /ws/feeds/{feed_id}: Live newest-K window

The WebSocket protocol is push-only:
    - On connect the server sends {type: "snapshot", feedId, items: [...]}
    - Every change of the newest-K window sends the full window again
    - Anything the client sends is ignored
"""
import asyncio
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Query, WebSocket
from fastapi.responses import JSONResponse

from feedsync.config import get_config
from feedsync.store.memory import feed_store

from .errors import MalformedItem
from .schemas import HistoryPage
from .timeline import to_item

logger = logging.getLogger(__name__)

router = APIRouter(tags=["feeds"])


@router.get("/feeds/{feed_id}/history", response_model=HistoryPage)
async def get_feed_history(
    feed_id: str,
    before: Optional[float] = Query(None, description="Cursor createdAt (items older than this)"),
    beforeId: Optional[str] = Query(None, description="Cursor id, tie-break for equal createdAt"),
    limit: Optional[int] = Query(None, ge=1, description="Number of items to return"),
):
    """Get a page of items strictly older than the cursor, newest first.

    Args:
        feed_id: The feed ID.
        before: createdAt of the cursor item. Omit for the newest page.
        beforeId: id of the cursor item. Items with the same createdAt and a
                  smaller id are older. Requires ``before``.
        limit: Maximum number of items to return. Defaults to
               ``feed.history_page_size`` and is clamped to ``feed.max_page_size``.

    Returns:
        JSON with items array (newest first) and hasMore boolean.

    Example:
        GET /feeds/general/history?limit=20
        GET /feeds/general/history?before=1707321600.123&beforeId=m1&limit=20
    """
    if beforeId is not None and before is None:
        return JSONResponse({"error": "beforeId requires before"}, status_code=400)

    feed = get_config().feed
    limit = min(limit or feed.history_page_size, feed.max_page_size)

    cursor_key = (before, beforeId or "") if before is not None else None
    items = feed_store.older_than(feed_id, cursor_key, limit)

    # Check if there are more items before the oldest returned
    has_more = bool(items) and feed_store.has_older(feed_id, items[-1].sort_key)
    return HistoryPage(items=items, hasMore=has_more)


@router.post("/feeds/{feed_id}/items")
async def put_feed_item(feed_id: str, document: Dict[str, Any] = Body(...)) -> JSONResponse:
    """Store a pre-formed item and push the new live window to subscribers.

    The body must already carry ``id`` and ``createdAt``; this endpoint does
    not generate ids or sanitize text.

    Returns:
        The stored item, or 400 if the document is malformed.
    """
    try:
        item = to_item(document)
    except MalformedItem as exc:
        logger.warning(f"[Feed] Rejected item for {feed_id}: {exc.message}")
        return JSONResponse({"error": exc.message}, status_code=400)

    feed_store.put(feed_id, item)
    logger.info(f"[Feed] Stored item {item.id} in feed {feed_id}")
    return JSONResponse(item.model_dump())


@router.websocket("/ws/feeds/{feed_id}")
async def feed_live_tail(
    websocket: WebSocket,
    feed_id: str,
    limit: Optional[int] = Query(None, ge=1, description="Live window size"),
) -> None:
    """WebSocket endpoint streaming the newest-K window of a feed.

    Args:
        websocket: The WebSocket connection.
        feed_id: The feed to follow.
        limit: Window size K. Defaults to ``feed.live_window_size`` and is
               clamped to ``feed.max_page_size``.
    """
    feed = get_config().feed
    limit = min(limit or feed.live_window_size, feed.max_page_size)

    await websocket.accept()
    logger.info(f"[WS] Live tail opened for feed {feed_id} (window={limit})")

    pump = asyncio.create_task(_send_snapshots(websocket, feed_id, limit))
    try:
        # Only used to notice the disconnect; text and binary frames are ignored
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                logger.info(f"[WS] Live tail closed for feed {feed_id}")
                break
    finally:
        pump.cancel()
        try:
            await pump
        except asyncio.CancelledError:
            pass
        except Exception as exc:
            logger.debug(f"[WS] Snapshot pump for {feed_id} ended with error: {exc}")


async def _send_snapshots(websocket: WebSocket, feed_id: str, limit: int) -> None:
    stream = feed_store.subscribe_live_tail(feed_id, limit)
    try:
        async for window in stream:
            await websocket.send_json({
                "type": "snapshot",
                "feedId": feed_id,
                "items": [item.model_dump() for item in window],
            })
    finally:
        await stream.aclose()
