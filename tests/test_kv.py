"""Tests for the ordered SQLite key-value store."""

import asyncio
import threading

import pytest

from tt_clock.errors import NotFoundError, StoreError
from tt_clock.kv import SCAN_PAGE_SIZE, OrderedStore
from tt_clock.models import BatchOp


async def scan_keys(store: OrderedStore, **kwargs) -> list[str]:
    return [key async for key, _ in store.scan(**kwargs)]


class TestGetPut:
    """Tests for single-key operations."""

    def test_put_then_get_round_trips(self):
        """A stored value reads back equal."""
        store = OrderedStore.open_in_memory()
        value = {"type": "work", "message": "line one\nline two", "archive": True, "n": 3}
        asyncio.run(store.put("time!2024-01-01 10:00:00", value))
        assert asyncio.run(store.get("time!2024-01-01 10:00:00")) == value

    def test_get_missing_raises_not_found(self):
        store = OrderedStore.open_in_memory()
        with pytest.raises(NotFoundError):
            asyncio.run(store.get("time!missing"))

    def test_delete(self):
        store = OrderedStore.open_in_memory()
        asyncio.run(store.put("a", 1))
        asyncio.run(store.delete("a"))
        with pytest.raises(NotFoundError):
            asyncio.run(store.get("a"))

    def test_open_on_disk_persists(self, tmp_path):
        path = tmp_path / "kv.db"
        with OrderedStore.open(path) as store:
            asyncio.run(store.put("k", {"v": 1}))
        with OrderedStore.open(path) as store:
            assert asyncio.run(store.get("k")) == {"v": 1}


class TestBatch:
    """Tests for atomic batches."""

    def test_batch_applies_in_order(self):
        store = OrderedStore.open_in_memory()
        asyncio.run(store.batch([
            BatchOp.put("a", 1),
            BatchOp.put("b", 2),
            BatchOp.delete("a"),
        ]))
        assert asyncio.run(scan_keys(store, gt="", lt="~")) == ["b"]

    def test_failed_batch_leaves_nothing(self):
        """A batch with an unserializable value applies none of its ops."""
        store = OrderedStore.open_in_memory()
        with pytest.raises(StoreError):
            asyncio.run(store.batch([
                BatchOp.put("a", 1),
                BatchOp.put("b", object()),
            ]))
        assert asyncio.run(scan_keys(store, gt="", lt="~")) == []


class TestScan:
    """Tests for range scans."""

    def _store_with(self, count: int) -> OrderedStore:
        store = OrderedStore.open_in_memory()
        asyncio.run(store.batch([BatchOp.put(f"k{i:04d}", i) for i in range(count)]))
        return store

    def test_bounds_are_exclusive(self):
        store = self._store_with(5)
        assert asyncio.run(scan_keys(store, gt="k0001", lt="k0004")) == ["k0002", "k0003"]

    def test_reverse_with_limit(self):
        store = self._store_with(5)
        assert asyncio.run(scan_keys(store, gt="k", lt="l", reverse=True, limit=2)) == ["k0004", "k0003"]

    def test_scan_crosses_pages(self):
        """Scans longer than one page return every key once, in order."""
        count = SCAN_PAGE_SIZE * 2 + 5
        store = self._store_with(count)
        keys = asyncio.run(scan_keys(store, gt="k", lt="l"))
        assert keys == [f"k{i:04d}" for i in range(count)]
        reverse = asyncio.run(scan_keys(store, gt="k", lt="l", reverse=True))
        assert reverse == list(reversed(keys))

    def test_limit_across_pages(self):
        store = self._store_with(SCAN_PAGE_SIZE * 3)
        keys = asyncio.run(scan_keys(store, gt="k", lt="l", limit=SCAN_PAGE_SIZE + 1))
        assert len(keys) == SCAN_PAGE_SIZE + 1

    def test_early_stop(self):
        store = self._store_with(SCAN_PAGE_SIZE * 3)

        async def first() -> str:
            async for key, _ in store.scan(gt="k", lt="l", reverse=True):
                return key
            return ""

        assert asyncio.run(first()) == f"k{SCAN_PAGE_SIZE * 3 - 1:04d}"


class TestWorkerThread:
    """SQLite statements never run on the event loop's thread."""

    def test_statements_run_off_the_loop_thread(self):
        store = OrderedStore.open_in_memory()
        threads = []
        store._conn.set_trace_callback(lambda sql: threads.append(threading.get_ident()))

        async def exercise() -> int:
            await store.put("a", 1)
            await store.get("a")
            await scan_keys(store, gt="", lt="~")
            return threading.get_ident()

        loop_thread = asyncio.run(exercise())
        assert threads
        assert loop_thread not in threads

    def test_concurrent_calls_keep_issue_order(self):
        store = OrderedStore.open_in_memory()

        async def exercise():
            await asyncio.gather(*(store.put("k", i) for i in range(20)))
            return await store.get("k")

        assert asyncio.run(exercise()) == 19
