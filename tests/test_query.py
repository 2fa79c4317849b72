"""Tests for range queries and type filters."""

import asyncio
import random
from datetime import datetime, timedelta

import pytest

from tt_clock.errors import ParseError, ValidationError
from tt_clock.kv import OrderedStore
from tt_clock.query import RangeQuery, TypeFilter
from tt_clock.store import EntryStore


def collect(query: RangeQuery) -> list[str]:
    return [entry.key for entry in asyncio.run(query.collect())]


@pytest.fixture
def store() -> EntryStore:
    """Store with three typed entries, one of them archived."""
    store = EntryStore(OrderedStore.open_in_memory())
    asyncio.run(store.start_entry(datetime(2024, 1, 1, 9, 0, 0), None, "client-a"))
    asyncio.run(store.start_entry(datetime(2024, 1, 2, 9, 0, 0), None, "client-b"))
    asyncio.run(store.start_entry(datetime(2024, 2, 1, 9, 0, 0), None, "internal"))
    asyncio.run(store.start_entry(datetime(2024, 2, 2, 9, 0, 0)))
    asyncio.run(store.set_archived(["2024-01-02 09:00:00"]))
    return store


class TestOrdering:
    """Tests for scan order."""

    def test_ascending_regardless_of_insert_order(self):
        store = EntryStore(OrderedStore.open_in_memory())
        base = datetime(2024, 1, 1, 0, 0, 0)
        starts = [base + timedelta(hours=7 * i, seconds=i) for i in range(40)]
        shuffled = list(starts)
        random.Random(7).shuffle(shuffled)
        for start in shuffled:
            asyncio.run(store.start_entry(start))
        entries = asyncio.run(RangeQuery(store.db).collect())
        assert [e.start for e in entries] == starts

    def test_reverse_limit_one_is_latest(self):
        store = EntryStore(OrderedStore.open_in_memory())
        for start in (datetime(2024, 3, 1), datetime(2024, 5, 1), datetime(2024, 4, 1)):
            asyncio.run(store.start_entry(start))
        assert collect(RangeQuery(store.db, reverse=True, limit=1)) == ["time!2024-05-01 00:00:00"]

    def test_type_index_keys_never_scanned(self, store):
        assert all(key.startswith("time!") for key in collect(RangeQuery(store.db, include_archived=True)))


class TestFilters:
    """Tests for archive and type filters."""

    def test_archived_excluded_by_default(self, store):
        assert "time!2024-01-02 09:00:00" not in collect(RangeQuery(store.db))

    def test_archived_included_on_request(self, store):
        assert "time!2024-01-02 09:00:00" in collect(RangeQuery(store.db, include_archived=True))

    def test_exact_type(self, store):
        assert collect(RangeQuery(store.db, type_filter="internal")) == ["time!2024-02-01 09:00:00"]

    def test_pattern_type(self, store):
        keys = collect(RangeQuery(store.db, type_filter="/^client-/", include_archived=True))
        assert keys == ["time!2024-01-01 09:00:00", "time!2024-01-02 09:00:00"]

    def test_bounds(self, store):
        keys = collect(RangeQuery(store.db, gt="2024-01-01 12", lt="2024-02-02"))
        assert keys == ["time!2024-02-01 09:00:00"]


class TestTypeFilter:
    """Tests for TypeFilter parsing."""

    def test_empty_is_no_filter(self):
        assert TypeFilter.parse(None) is None
        assert TypeFilter.parse("") is None

    def test_exact_does_not_treat_slash_text_as_pattern(self):
        f = TypeFilter.parse("a/b")
        assert f.exact == "a/b"
        assert f.matches("a/b")
        assert not f.matches("a/bc")

    def test_pattern_searches_anywhere(self):
        f = TypeFilter.parse("/view/")
        assert f.pattern is not None
        assert f.matches("code-review")
        assert not f.matches(None)

    def test_lone_slash_is_exact(self):
        assert TypeFilter.parse("/").exact == "/"

    def test_invalid_pattern(self):
        with pytest.raises(ParseError):
            TypeFilter.parse("/([/")


class TestUnreadableRecords:
    """A malformed record does not stop the scan."""

    def test_invalid_record_is_skipped(self, store, caplog):
        asyncio.run(store.db.put("time!2024-01-15 09:00:00", {"end": "garbage"}))
        asyncio.run(store.db.put("time!2024-01-16 09:00:00", ["not", "an", "object"]))
        with caplog.at_level("WARNING", logger="tt_clock.query"):
            keys = collect(RangeQuery(store.db))
        assert keys == [
            "time!2024-01-01 09:00:00",
            "time!2024-02-01 09:00:00",
            "time!2024-02-02 09:00:00",
        ]
        assert "time!2024-01-15 09:00:00" in caplog.text
        assert "time!2024-01-16 09:00:00" in caplog.text

    def test_get_entry_stays_strict(self, store):
        asyncio.run(store.db.put("time!2024-01-15 09:00:00", {"end": "garbage"}))
        with pytest.raises(ValidationError):
            asyncio.run(store.get_entry("2024-01-15 09:00:00"))
