"""Ordered key-value store on SQLite.

Keys are strings kept in lexicographic order; values are JSON. Every
operation is a coroutine. SQLite work runs on one dedicated worker thread,
so the event loop never blocks on disk I/O and calls reach the database in
the order they were issued.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Iterable, TypeVar

from tt_clock.errors import NotFoundError, StoreError
from tt_clock.models import BatchOp

SCHEMA = """
CREATE TABLE IF NOT EXISTS kv (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
) WITHOUT ROWID;
"""

# Rows fetched per round trip during scans.
SCAN_PAGE_SIZE = 64

logger = logging.getLogger(__name__)

T = TypeVar("T")


class OrderedStore:
    """SQLite-backed ordered key-value store.

    The connection is only ever used from the store's worker thread. Share
    one OrderedStore per event loop; do not call it from several loops.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="tt-clock-store")
        self._init_schema()

    def __enter__(self) -> "OrderedStore":
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        self.close()

    def close(self) -> None:
        """Wait for pending calls, then close the database connection."""
        self._executor.shutdown(wait=True)
        self._conn.close()

    def _init_schema(self) -> None:
        try:
            self._conn.executescript(SCHEMA)
            self._conn.commit()
        except sqlite3.Error as e:
            raise StoreError(f"Could not initialize store: {e}") from e

    @classmethod
    def open(cls, path: Path) -> OrderedStore:
        """Open or create a store at the given path."""
        try:
            conn = sqlite3.connect(path, check_same_thread=False)
            conn.execute("PRAGMA journal_mode=WAL")
        except sqlite3.Error as e:
            raise StoreError(f"Could not open store at {path}: {e}") from e
        return cls(conn)

    @classmethod
    def open_in_memory(cls) -> OrderedStore:
        """Create an in-memory store for testing."""
        return cls(sqlite3.connect(":memory:", check_same_thread=False))

    async def _call(self, fn: Callable[..., T], *args: Any) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, fn, *args)

    def _get_sync(self, key: str) -> str | None:
        try:
            row = self._conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"get {key!r} failed: {e}") from e
        return None if row is None else row[0]

    def _batch_sync(self, ops: list[BatchOp]) -> None:
        try:
            with self._conn:  # Commits on success, rolls back on error
                for op in ops:
                    if op.type == "put":
                        self._conn.execute(
                            "INSERT OR REPLACE INTO kv (key, value) VALUES (?, ?)",
                            (op.key, json.dumps(op.value)),
                        )
                    else:
                        self._conn.execute("DELETE FROM kv WHERE key = ?", (op.key,))
        except (sqlite3.Error, TypeError, ValueError) as e:
            raise StoreError(f"batch of {len(ops)} operations failed: {e}") from e

    def _page_sync(self, low: str, high: str, order: str, size: int) -> list[tuple[str, str]]:
        try:
            return self._conn.execute(
                f"SELECT key, value FROM kv WHERE key > ? AND key < ? ORDER BY key {order} LIMIT ?",
                (low, high, size),
            ).fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"scan failed: {e}") from e

    async def get(self, key: str) -> Any:
        """Return the value stored under key.

        Raises:
            NotFoundError: If the key does not exist.
        """
        raw = await self._call(self._get_sync, key)
        if raw is None:
            raise NotFoundError(key)
        return json.loads(raw)

    async def put(self, key: str, value: Any) -> None:
        await self.batch([BatchOp.put(key, value)])

    async def delete(self, key: str) -> None:
        await self.batch([BatchOp.delete(key)])

    async def batch(self, ops: Iterable[BatchOp]) -> None:
        """Apply puts and deletes in order as one transaction.

        Either every operation lands or none does.
        """
        ops = list(ops)
        await self._call(self._batch_sync, ops)
        logger.debug("Applied batch: %s", [(op.type, op.key) for op in ops])

    async def scan(
        self,
        *,
        gt: str,
        lt: str,
        limit: int | None = None,
        reverse: bool = False,
    ) -> AsyncIterator[tuple[str, Any]]:
        """Yield (key, value) pairs with gt < key < lt in key order.

        Rows are fetched a page at a time, so a consumer that stops early
        never loads the rest of the range.
        """
        remaining = limit
        low, high = gt, lt
        order = "DESC" if reverse else "ASC"
        while remaining is None or remaining > 0:
            page = SCAN_PAGE_SIZE if remaining is None else min(SCAN_PAGE_SIZE, remaining)
            rows = await self._call(self._page_sync, low, high, order, page)

            for key, value in rows:
                yield key, json.loads(value)

            if len(rows) < page:
                return
            if remaining is not None:
                remaining -= len(rows)
            if reverse:
                high = rows[-1][0]
            else:
                low = rows[-1][0]
