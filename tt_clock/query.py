"""Bounded, ordered and filtered scans over primary entries."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import AsyncIterator

from tt_clock import keys
from tt_clock.errors import ParseError, ValidationError
from tt_clock.kv import OrderedStore
from tt_clock.models import Entry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TypeFilter:
    """Match entry types exactly, or against a compiled pattern.

    Build with ``TypeFilter.parse``: ``/expr/`` selects pattern matching,
    anything else is an exact match.
    """

    exact: str | None = None
    pattern: re.Pattern[str] | None = None

    @classmethod
    def parse(cls, expr: str | None) -> TypeFilter | None:
        if not expr:
            return None
        if len(expr) >= 2 and expr.startswith("/") and expr.endswith("/"):
            try:
                return cls(pattern=re.compile(expr[1:-1]))
            except re.error as e:
                raise ParseError(f"Invalid type pattern {expr!r}: {e}") from e
        return cls(exact=expr)

    def matches(self, entry_type: str | None) -> bool:
        if self.pattern is not None:
            return entry_type is not None and self.pattern.search(entry_type) is not None
        return entry_type == self.exact


class RangeQuery:
    """Lazy scan of entries between two key bounds.

    Bounds are key suffixes (``gt="2024-01"``), appended to the primary
    prefix. Iterate with ``async for``; breaking out stops the scan. Records
    that do not validate as entries are logged and skipped.
    """

    def __init__(
        self,
        db: OrderedStore,
        *,
        gt: str | None = None,
        lt: str | None = None,
        reverse: bool = False,
        limit: int | None = None,
        type_filter: TypeFilter | str | None = None,
        include_archived: bool = False,
    ) -> None:
        self._db = db
        self.gt = keys.ENTRY_PREFIX + (gt or "")
        self.lt = keys.ENTRY_PREFIX + (lt or keys.HIGH)
        self.reverse = reverse
        self.limit = limit
        if isinstance(type_filter, str):
            type_filter = TypeFilter.parse(type_filter)
        self.type_filter = type_filter
        self.include_archived = include_archived

    def accepts(self, entry: Entry) -> bool:
        if entry.archive and not self.include_archived:
            return False
        if self.type_filter is not None and not self.type_filter.matches(entry.type):
            return False
        return True

    async def __aiter__(self) -> AsyncIterator[Entry]:
        async for key, value in self._db.scan(
            gt=self.gt, lt=self.lt, limit=self.limit, reverse=self.reverse
        ):
            try:
                entry = Entry.from_value(key, value)
            except ValidationError as e:
                logger.warning("Skipping unreadable entry %s: %s", key, e)
                continue
            if self.accepts(entry):
                yield entry

    async def collect(self) -> list[Entry]:
        return [entry async for entry in self]
