"""Scroll-driven trigger for loading older history.

The viewport observer reports each time the top-of-content sentinel comes
into view. Sentinel events are at-least-once and arrive redundantly while a
page is loading; only one request runs at a time, and events that land
while it runs are coalesced into it.
"""
import asyncio
import logging
from typing import Any, AsyncIterator, Callable, Optional

from .errors import FetchFailed
from .merger import FeedMerger
from .schemas import LoadState, PageOutcome

logger = logging.getLogger(__name__)

ErrorHandler = Callable[[FetchFailed], None]


def should_load_older(scroll_top: float, threshold: float = 0.0) -> bool:
    """Return True when a scroll offset has reached the top of loaded content."""
    return scroll_top <= threshold


class ScrollTrigger:
    """Turns sentinel events into ``FeedMerger.request_older_page()`` calls.

    Attributes:
        events: Sentinel events received.
        coalesced: Events dropped because a request was already running.
        failures: Requests that raised FetchFailed.
        last_outcome: Outcome of the most recent completed request.
        last_error: Most recent FetchFailed, cleared by the next success.
    """

    def __init__(
        self,
        merger: FeedMerger,
        on_error: Optional[ErrorHandler] = None,
        threshold: float = 0.0,
    ) -> None:
        self._merger = merger
        self._on_error = on_error
        self.threshold = threshold
        self.events = 0
        self.coalesced = 0
        self.failures = 0
        self.last_outcome: Optional[PageOutcome] = None
        self.last_error: Optional[FetchFailed] = None
        self._inflight: Optional[asyncio.Task] = None

    def sentinel_reached(self) -> Optional[asyncio.Task]:
        """Handle one sentinel event.

        Returns:
            The task running the page request, or None if the event was
            coalesced or history is exhausted.
        """
        self.events += 1
        if self._inflight is not None and not self._inflight.done():
            self.coalesced += 1
            return None
        if self._merger.load_state is not LoadState.IDLE:
            self.coalesced += 1
            return None
        self._inflight = asyncio.create_task(self._request())
        return self._inflight

    def scrolled(self, scroll_top: float) -> Optional[asyncio.Task]:
        """Handle a raw scroll offset, as a viewport without a sentinel reports it."""
        if not should_load_older(scroll_top, self.threshold):
            return None
        return self.sentinel_reached()

    async def run(self, sentinel_events: AsyncIterator[Any]) -> None:
        """Consume a sentinel event stream until it ends."""
        async for _ in sentinel_events:
            self.sentinel_reached()
        await self.wait_idle()

    async def wait_idle(self) -> None:
        """Wait for the in-flight request, if any."""
        if self._inflight is not None and not self._inflight.done():
            await asyncio.wait({self._inflight})

    async def stop(self) -> None:
        task = self._inflight
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _request(self) -> None:
        try:
            self.last_outcome = await self._merger.request_older_page()
            self.last_error = None
        except FetchFailed as exc:
            self.failures += 1
            self.last_error = exc
            logger.warning(f"[Scroll] Older page failed for feed {self._merger.feed_id}: {exc.message}")
            if self._on_error is not None:
                self._on_error(exc)
