"""Time entry store with a secondary index by type.

Each entry lives under ``time!<start>``. Entries with a type also have an
index key ``time-type!<type>!<start>`` holding a sentinel. Any write that
touches both goes through a single batch, so the index never disagrees with
the primary records.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable

from tt_clock import keys
from tt_clock.dates import DateParser, elapsed
from tt_clock.errors import NotFoundError, ParseError, ValidationError
from tt_clock.kv import OrderedStore
from tt_clock.models import BatchOp, Entry
from tt_clock.query import RangeQuery

INDEX_SENTINEL = 0

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now().replace(microsecond=0)


def index_ops(
    old_type: str | None,
    old_start: datetime | None,
    new_type: str | None,
    new_start: datetime | None,
) -> list[BatchOp]:
    """Index updates for an entry moving from (old_type, old_start) to (new_type, new_start).

    Empty types have no index entry. Returns no ops when nothing changes.
    """
    old_key = keys.type_key(old_type, old_start) if old_type and old_start else None
    new_key = keys.type_key(new_type, new_start) if new_type and new_start else None
    if old_key == new_key:
        return []
    ops = []
    if old_key:
        ops.append(BatchOp.delete(old_key))
    if new_key:
        ops.append(BatchOp.put(new_key, INDEX_SENTINEL))
    return ops


class EntryStore:
    """CRUD over time entries, keeping the type index consistent.

    Args:
        db: The ordered store holding entries and index keys.
        parser: Date expression parser for property updates.
        clock: Returns the current instant; overridable for tests.
    """

    def __init__(
        self,
        db: OrderedStore,
        *,
        parser: DateParser | None = None,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        self._db = db
        self.parser = parser or DateParser(clock=clock)
        self.clock = clock

    @property
    def db(self) -> OrderedStore:
        return self._db

    async def _get_or_none(self, key: str) -> Any:
        try:
            return await self._db.get(key)
        except NotFoundError:
            return None

    async def _write_new(self, entry: Entry) -> str:
        """Write a fresh entry, replacing whatever had the same start second."""
        previous = await self._get_or_none(entry.key)
        old_type = previous.get("type") if isinstance(previous, dict) else None
        ops = [BatchOp.put(entry.key, entry.to_value())]
        ops += index_ops(old_type, entry.start, entry.type, entry.start)
        await self._db.batch(ops)
        logger.info("Wrote entry %s (type=%s)", entry.key, entry.type)
        return entry.key

    async def start_entry(
        self,
        date: datetime | None = None,
        message: str | None = None,
        entry_type: str | None = None,
    ) -> str:
        """Open a new entry at date (default now). Returns its key."""
        start = (date or self.clock()).replace(microsecond=0)
        entry = Entry(
            key=keys.entry_key(start),
            start=start,
            message=message or None,
            type=entry_type or None,
        )
        return await self._write_new(entry)

    async def add_entry(
        self,
        start: datetime,
        end: datetime,
        message: str | None = None,
        entry_type: str | None = None,
    ) -> str:
        """Record a closed entry. Returns its key."""
        start = start.replace(microsecond=0)
        entry = Entry(
            key=keys.entry_key(start),
            start=start,
            end=end.replace(microsecond=0),
            message=message or None,
            type=entry_type or None,
        )
        return await self._write_new(entry)

    async def get_entry(self, stamp: str) -> Entry:
        key = keys.resolve_reference(stamp)
        return Entry.from_value(key, await self._db.get(key))

    async def latest_entry(self) -> Entry | None:
        """The entry with the greatest start, or None for an empty store."""
        async for entry in RangeQuery(self._db, reverse=True, limit=1, include_archived=True):
            return entry
        return None

    async def latest_open_entry(self) -> Entry | None:
        async for entry in RangeQuery(self._db, reverse=True, include_archived=True):
            if entry.is_open:
                return entry
        return None

    async def stop_entry(
        self,
        target: str | None = None,
        date: datetime | None = None,
        message: str | None = None,
    ) -> str:
        """Close an entry.

        Args:
            target: Stamp of the entry; defaults to the latest open entry.
            date: End instant (default now).
            message: Appended to any existing message on a new line.

        Raises:
            NotFoundError: If no entry resolves.
        """
        if target:
            entry = await self.get_entry(target)
        else:
            entry = await self.latest_open_entry()
            if entry is None:
                raise NotFoundError("no running entry")

        entry.end = (date or self.clock()).replace(microsecond=0)
        if message:
            entry.message = f"{entry.message}\n{message}" if entry.message else message
        await self._db.put(entry.key, entry.to_value())
        logger.info("Stopped entry %s at %s", entry.key, keys.encode(entry.end))
        return entry.key

    async def restart_entry(self, target: str | None = None) -> str:
        """Start a new entry copying the message and type of target (default latest)."""
        if target:
            entry = await self.get_entry(target)
        else:
            entry = await self.latest_entry()
            if entry is None:
                raise NotFoundError("no entries")
        return await self.start_entry(self.clock(), entry.message, entry.type)

    async def set_property(
        self,
        stamp: str,
        name: str,
        value: Any,
        original: Any = None,
    ) -> str:
        """Set one property on an entry. Returns the entry's (possibly new) key.

        ``end``/``stop`` and ``start`` values are date expressions merged
        against the current value; ``start`` moves the entry to a new key.
        ``type`` moves the index entry. For other names an empty string
        deletes the property.

        Raises:
            NotFoundError: If the entry does not exist.
            ParseError: If a date expression cannot be resolved.
            ValidationError: If the result is not a valid entry.
        """
        entry = await self.get_entry(stamp)

        if name == "stop":
            name = "end"

        if name == "end":
            reference = _reference_instant(original) or entry.end or entry.start
            entry.end = self.parser.merge(reference, str(value))
            await self._db.put(entry.key, entry.to_value())
            return entry.key

        if name == "start":
            new_start = self.parser.merge(entry.start, str(value))
            new_key = keys.entry_key(new_start)
            if new_key == entry.key:
                return entry.key
            displaced = await self._get_or_none(new_key)
            displaced_type = displaced.get("type") if isinstance(displaced, dict) else None
            ops = [
                BatchOp.put(new_key, entry.to_value()),
                BatchOp.delete(entry.key),
            ]
            ops += index_ops(entry.type, entry.start, None, None)
            ops += index_ops(displaced_type, new_start, entry.type, new_start)
            await self._db.batch(ops)
            logger.info("Moved entry %s to %s", entry.key, new_key)
            return new_key

        if name == "type":
            previous_type = original or entry.type
            entry.type = str(value) if value else None
            ops = [BatchOp.put(entry.key, entry.to_value())]
            ops += index_ops(previous_type, entry.start, entry.type, entry.start)
            await self._db.batch(ops)
            return entry.key

        record = entry.to_value()
        if value == "":
            record.pop(name, None)
        else:
            record[name] = value
        updated = Entry.from_value(entry.key, record)
        await self._db.put(updated.key, updated.to_value())
        return updated.key

    async def replace_entry(self, stamp: str, source: str) -> str:
        """Replace an entry's whole record with JSON source.

        Raises:
            ParseError: If source is not valid JSON.
            ValidationError: If source is not a well-formed entry record.
        """
        current = await self.get_entry(stamp)
        try:
            record = json.loads(source)
        except json.JSONDecodeError as e:
            raise ParseError(f"error parsing json: {e}") from e
        updated = Entry.from_value(current.key, record)
        ops = [BatchOp.put(updated.key, updated.to_value())]
        ops += index_ops(current.type, current.start, updated.type, updated.start)
        await self._db.batch(ops)
        return updated.key

    async def insert_entry(self, stamp: str) -> str:
        """Write an empty record at stamp."""
        key = keys.resolve_reference(stamp)
        entry = Entry(key=key, start=keys.decode(key))
        return await self._write_new(entry)

    async def remove_entries(self, stamps: Iterable[str]) -> list[str]:
        """Delete entries together with their index keys."""
        removed = []
        for stamp in stamps:
            entry = await self.get_entry(stamp)
            ops = [BatchOp.delete(entry.key)]
            ops += index_ops(entry.type, entry.start, None, None)
            await self._db.batch(ops)
            removed.append(entry.key)
        logger.info("Removed %d entries", len(removed))
        return removed

    async def set_archived(self, stamps: Iterable[str], archived: bool = True) -> list[str]:
        """Flip the archive flag on the given entries."""
        changed = []
        for stamp in stamps:
            entry = await self.get_entry(stamp)
            entry.archive = archived
            await self._db.put(entry.key, entry.to_value())
            changed.append(entry.key)
        return changed

    async def archive_range(self, query: RangeQuery, archived: bool = True) -> list[str]:
        """Flip the archive flag on every entry a query yields, in one batch.

        Entries already in the requested state are left alone.
        """
        query.include_archived = True
        ops = []
        async for entry in query:
            if entry.archive == archived:
                continue
            entry.archive = archived
            ops.append(BatchOp.put(entry.key, entry.to_value()))
        if ops:
            await self._db.batch(ops)
        return [op.key for op in ops]

    async def status(self, now: datetime | None = None) -> timedelta | None:
        """Elapsed time of the latest entry if it is still running."""
        entry = await self.latest_entry()
        if entry is None or not entry.is_open:
            return None
        return elapsed(entry.start, now or self.clock())


def _reference_instant(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        try:
            return keys.parse_timestamp(value)
        except ValueError:
            return None
    return None
