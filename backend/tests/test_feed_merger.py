"""Tests for FeedMerger: merge rules, load state machine, single-flight and teardown.

Page fetches are driven by a gated fake so tests decide exactly when a fetch
completes relative to live snapshots.
"""
import asyncio

import pytest

from feedsync.feed.errors import FetchFailed
from feedsync.feed.history_pager import HistoryPager
from feedsync.feed.merger import FeedMerger
from feedsync.feed.schemas import LoadState, PageOutcome

from conftest import make_item


class GatedFetch:
    """Fake fetch_history_page that blocks until released.

    Each entry in ``pages`` is either a list of items or an exception to raise.
    """

    def __init__(self, pages, gated: bool = True):
        self.pages = list(pages)
        self.calls = []
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        if not gated:
            self.release.set()

    async def __call__(self, cursor, page_size):
        self.calls.append((cursor.id if cursor is not None else None, page_size))
        self.started.set()
        await self.release.wait()
        result = self.pages.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


def _merger(fetch) -> FeedMerger:
    return FeedMerger(HistoryPager(fetch, page_size=20), feed_id="test")


SEED = [make_item("m3", 30), make_item("m2", 20), make_item("m1", 10)]


# ---------------------------------------------------------------------------
# Live ingest
# ---------------------------------------------------------------------------

class TestIngestLive:
    def test_first_snapshot_seeds_timeline_and_cursor(self):
        merger = _merger(GatedFetch([]))
        merger.ingest_live(SEED)
        assert [i.id for i in merger.items] == ["m3", "m2", "m1"]
        assert merger.cursor.id == "m1"
        assert merger.load_state is LoadState.IDLE
        assert merger.latest_snapshot == SEED

    def test_empty_snapshot_leaves_cursor_unset(self):
        merger = _merger(GatedFetch([]))
        merger.ingest_live([])
        assert merger.items == []
        assert merger.cursor is None

    def test_idempotent(self):
        merger = _merger(GatedFetch([]))
        merger.ingest_live(SEED)
        once = merger.view()
        result = merger.ingest_live(SEED)
        assert merger.view() == once
        assert not result.changed

    def test_aged_out_items_are_kept(self):
        merger = _merger(GatedFetch([]))
        merger.ingest_live(SEED)
        merger.ingest_live([make_item("m5", 50), make_item("m4", 40), make_item("m3", 30)])
        assert [i.id for i in merger.items] == ["m5", "m4", "m3", "m2", "m1"]
        assert merger.cursor.id == "m1"

    def test_refresh_updates_fields_without_reordering(self):
        merger = _merger(GatedFetch([]))
        merger.ingest_live(SEED)
        merger.ingest_live([make_item("m2", 20, body="edited")])
        assert [i.id for i in merger.items] == ["m3", "m2", "m1"]
        assert merger.items[1].body == "edited"

    def test_live_item_older_than_cursor_does_not_move_cursor(self):
        merger = _merger(GatedFetch([]))
        merger.ingest_live(SEED)
        merger.ingest_live([make_item("late", 5)])
        assert [i.id for i in merger.items][-1] == "late"
        assert merger.cursor.id == "m1"

    def test_malformed_items_dropped_rest_applied(self):
        merger = _merger(GatedFetch([]))
        merger.ingest_live([
            {"id": "m3", "createdAt": 30},
            {"id": "broken"},
            {"id": "m1", "createdAt": 10},
        ])
        assert [i.id for i in merger.items] == ["m3", "m1"]

    def test_ingest_after_close_is_discarded(self):
        merger = _merger(GatedFetch([]))
        merger.ingest_live(SEED)
        merger.close()
        result = merger.ingest_live([make_item("m4", 40)])
        assert not result.changed
        assert [i.id for i in merger.items] == ["m3", "m2", "m1"]


# ---------------------------------------------------------------------------
# History paging
# ---------------------------------------------------------------------------

class TestRequestOlderPage:
    @pytest.mark.asyncio
    async def test_page_merges_and_advances_cursor(self):
        fetch = GatedFetch([[make_item("m0", 5)]], gated=False)
        merger = _merger(fetch)
        merger.ingest_live(SEED)

        outcome = await merger.request_older_page()

        assert outcome is PageOutcome.LOADED
        assert fetch.calls == [("m1", 20)]
        assert [i.id for i in merger.items] == ["m3", "m2", "m1", "m0"]
        assert merger.cursor.id == "m0"
        assert merger.load_state is LoadState.IDLE

    @pytest.mark.asyncio
    async def test_first_request_without_seed_uses_no_cursor(self):
        fetch = GatedFetch([[make_item("m3", 30), make_item("m2", 20)]], gated=False)
        merger = _merger(fetch)
        await merger.request_older_page()
        assert fetch.calls == [(None, 20)]
        assert merger.cursor.id == "m2"

    @pytest.mark.asyncio
    async def test_empty_page_exhausts_permanently(self):
        fetch = GatedFetch([[]], gated=False)
        merger = _merger(fetch)
        merger.ingest_live(SEED)

        assert await merger.request_older_page() is PageOutcome.EXHAUSTED
        assert merger.load_state is LoadState.EXHAUSTED

        assert await merger.request_older_page() is PageOutcome.SKIPPED
        assert await merger.request_older_page() is PageOutcome.SKIPPED
        assert len(fetch.calls) == 1
        assert merger.load_state is LoadState.EXHAUSTED

    @pytest.mark.asyncio
    async def test_single_flight(self):
        fetch = GatedFetch([[make_item("m0", 5)]])
        merger = _merger(fetch)
        merger.ingest_live(SEED)

        first = asyncio.create_task(merger.request_older_page())
        await fetch.started.wait()
        assert merger.load_state is LoadState.LOADING

        second = await merger.request_older_page()
        assert second is PageOutcome.SKIPPED

        fetch.release.set()
        assert await first is PageOutcome.LOADED
        assert len(fetch.calls) == 1

    @pytest.mark.asyncio
    async def test_failure_returns_to_idle_and_allows_retry(self):
        fetch = GatedFetch([RuntimeError("backend down"), [make_item("m0", 5)]], gated=False)
        merger = _merger(fetch)
        merger.ingest_live(SEED)

        with pytest.raises(FetchFailed, match="backend down"):
            await merger.request_older_page()
        assert merger.load_state is LoadState.IDLE
        assert merger.cursor.id == "m1"
        assert [i.id for i in merger.items] == ["m3", "m2", "m1"]

        assert await merger.request_older_page() is PageOutcome.LOADED
        assert fetch.calls == [("m1", 20), ("m1", 20)]

    @pytest.mark.asyncio
    async def test_malformed_page_items_dropped(self):
        fetch = GatedFetch([[{"id": "m0", "createdAt": 5}, {"createdAt": 4}, {"id": "m-1", "createdAt": 3}]], gated=False)
        merger = _merger(fetch)
        merger.ingest_live(SEED)
        await merger.request_older_page()
        assert [i.id for i in merger.items] == ["m3", "m2", "m1", "m0", "m-1"]
        assert merger.cursor.id == "m-1"

    @pytest.mark.asyncio
    async def test_page_of_only_malformed_items_keeps_cursor(self):
        fetch = GatedFetch([[{"id": ""}, {"createdAt": 4}]], gated=False)
        merger = _merger(fetch)
        merger.ingest_live(SEED)
        assert await merger.request_older_page() is PageOutcome.LOADED
        assert merger.cursor.id == "m1"
        assert merger.load_state is LoadState.IDLE

    @pytest.mark.asyncio
    async def test_cursor_never_moves_to_newer_item(self):
        # A store that ignores the cursor returns items newer than it
        fetch = GatedFetch([[make_item("m2", 20)]], gated=False)
        merger = _merger(fetch)
        merger.ingest_live(SEED)
        await merger.request_older_page()
        assert merger.cursor.id == "m1"

    @pytest.mark.asyncio
    async def test_cancelled_fetch_returns_to_idle(self):
        fetch = GatedFetch([[make_item("m0", 5)]])
        merger = _merger(fetch)
        merger.ingest_live(SEED)
        task = asyncio.create_task(merger.request_older_page())
        await fetch.started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert merger.load_state is LoadState.IDLE


# ---------------------------------------------------------------------------
# Races between live snapshots and page completion
# ---------------------------------------------------------------------------

class TestConcurrentIngest:
    @pytest.mark.asyncio
    async def test_live_arrives_while_page_in_flight(self):
        fetch = GatedFetch([[make_item("m0", 5)]])
        merger = _merger(fetch)
        merger.ingest_live(SEED)

        task = asyncio.create_task(merger.request_older_page())
        await fetch.started.wait()
        merger.ingest_live([make_item("m4", 40), make_item("m3", 30)])
        fetch.release.set()
        await task

        assert [i.id for i in merger.items] == ["m4", "m3", "m2", "m1", "m0"]
        assert merger.cursor.id == "m0"

    @pytest.mark.asyncio
    async def test_live_arrives_after_page_completes(self):
        fetch = GatedFetch([[make_item("m0", 5)]], gated=False)
        merger = _merger(fetch)
        merger.ingest_live(SEED)

        await merger.request_older_page()
        merger.ingest_live([make_item("m4", 40), make_item("m3", 30)])

        assert [i.id for i in merger.items] == ["m4", "m3", "m2", "m1", "m0"]

    @pytest.mark.asyncio
    async def test_page_overlapping_live_window_has_no_duplicates(self):
        fetch = GatedFetch([[make_item("m2", 20), make_item("m1", 10), make_item("m0", 5)]])
        merger = _merger(fetch)

        task = asyncio.create_task(merger.request_older_page())
        await fetch.started.wait()
        merger.ingest_live(SEED)
        fetch.release.set()
        await task

        ids = [i.id for i in merger.items]
        assert ids == ["m3", "m2", "m1", "m0"]
        assert merger.cursor.id == "m0"


# ---------------------------------------------------------------------------
# Teardown and observers
# ---------------------------------------------------------------------------

class TestTeardown:
    @pytest.mark.asyncio
    async def test_page_completing_after_close_is_discarded(self):
        fetch = GatedFetch([[make_item("m0", 5)]])
        merger = _merger(fetch)
        merger.ingest_live(SEED)

        task = asyncio.create_task(merger.request_older_page())
        await fetch.started.wait()
        merger.close()
        fetch.release.set()

        assert await task is PageOutcome.DISCARDED
        assert [i.id for i in merger.items] == ["m3", "m2", "m1"]
        assert merger.cursor.id == "m1"

    @pytest.mark.asyncio
    async def test_failure_after_close_is_discarded(self):
        fetch = GatedFetch([RuntimeError("late")])
        merger = _merger(fetch)
        task = asyncio.create_task(merger.request_older_page())
        await fetch.started.wait()
        merger.close()
        fetch.release.set()
        assert await task is PageOutcome.DISCARDED

    @pytest.mark.asyncio
    async def test_request_after_close_is_skipped(self):
        fetch = GatedFetch([[make_item("m0", 5)]], gated=False)
        merger = _merger(fetch)
        merger.close()
        assert await merger.request_older_page() is PageOutcome.SKIPPED
        assert fetch.calls == []


class TestListeners:
    @pytest.mark.asyncio
    async def test_listener_sees_state_transitions(self):
        fetch = GatedFetch([[make_item("m0", 5)]], gated=False)
        merger = _merger(fetch)
        views = []
        merger.add_listener(views.append)

        merger.ingest_live(SEED)
        await merger.request_older_page()

        states = [v.loadState for v in views]
        assert states == [LoadState.IDLE, LoadState.LOADING, LoadState.IDLE]
        assert views[-1].ids == ["m3", "m2", "m1", "m0"]
        assert views[-1].cursor.id == "m0"

    def test_unchanged_ingest_does_not_notify(self):
        merger = _merger(GatedFetch([]))
        merger.ingest_live(SEED)
        views = []
        merger.add_listener(views.append)
        merger.ingest_live(SEED)
        assert views == []

    def test_failing_listener_does_not_break_merge(self, caplog):
        merger = _merger(GatedFetch([]))

        def boom(view):
            raise ValueError("listener bug")

        merger.add_listener(boom)
        merger.ingest_live(SEED)
        assert len(merger.items) == 3
        assert "Listener failed" in caplog.text

    def test_remove_listener(self):
        merger = _merger(GatedFetch([]))
        views = []
        remove = merger.add_listener(views.append)
        remove()
        merger.ingest_live(SEED)
        assert views == []
