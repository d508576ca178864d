"""Live subscription to the newest items of a feed.

The store pushes the entire newest-K window (not a diff) every time it
changes. LiveTail runs the subscription as a cancellable asyncio task and
forwards each window to a callback, normally ``FeedMerger.ingest_live``.
"""
import asyncio
import logging
from typing import Any, AsyncIterator, Callable, List, Optional, Sequence

logger = logging.getLogger(__name__)

# Default size of the live newest-K window
DEFAULT_LIVE_WINDOW_SIZE = 10

SubscribeLiveTail = Callable[[int], AsyncIterator[Sequence[Any]]]
SnapshotHandler = Callable[[List[Any]], Any]


class LiveTail:
    """Cancellable subscription delivering newest-first snapshots."""

    def __init__(
        self,
        subscribe: SubscribeLiveTail,
        window_size: int = DEFAULT_LIVE_WINDOW_SIZE,
        name: str = "live-tail",
    ) -> None:
        if window_size < 1:
            raise ValueError(f"window_size must be positive, got {window_size}")
        self._subscribe = subscribe
        self.window_size = window_size
        self.name = name
        self.deliveries = 0
        self.error: Optional[BaseException] = None
        self._task: Optional[asyncio.Task] = None
        self._seeded = asyncio.Event()
        self._stopped = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, on_snapshot: SnapshotHandler) -> asyncio.Task:
        """Start forwarding snapshots to ``on_snapshot``.

        Raises:
            RuntimeError: If the subscription was already started.
        """
        if self._task is not None:
            raise RuntimeError(f"{self.name} already started")
        self._task = asyncio.create_task(self._pump(on_snapshot), name=self.name)
        return self._task

    async def wait_seeded(self, timeout: Optional[float] = None) -> bool:
        """Wait for the first snapshot. Returns False on timeout."""
        try:
            await asyncio.wait_for(self._seeded.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def stop(self) -> None:
        """Unsubscribe. No snapshot is delivered after this returns."""
        self._stopped = True
        task = self._task
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug("[LiveTail] %s stopped after %d deliveries", self.name, self.deliveries)

    async def _pump(self, on_snapshot: SnapshotHandler) -> None:
        stream = self._subscribe(self.window_size)
        try:
            async for snapshot in stream:
                if self._stopped:
                    break
                self.deliveries += 1
                on_snapshot(list(snapshot))
                self._seeded.set()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.error = exc
            logger.error(f"[LiveTail] {self.name} subscription failed: {exc}")
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()
