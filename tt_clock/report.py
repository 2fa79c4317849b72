"""Hour reports and tabular export."""

from __future__ import annotations

import csv
from collections import defaultdict
from datetime import date, datetime, time, timedelta
from typing import IO, Iterable, Iterator

from tt_clock import keys
from tt_clock.dates import elapsed
from tt_clock.models import DayHours, Entry, Report

CSV_HEADER = ["Key", "Date", "Start", "End", "Duration", "Archived", "Type", "Message"]
OPEN_END_MARKER = "NOW"
DEFAULT_TITLE = "consulting"


def split_at_midnight(start: datetime, end: datetime) -> Iterator[tuple[date, float]]:
    """Yield (calendar date, hours) pieces of an interval, cut at local midnight.

    An interval spanning N full days gives N+1 pieces. An end at or before
    the start gives a single zero-hour piece on the start's date.
    """
    if end <= start:
        yield start.date(), 0.0
        return
    while start.date() != end.date():
        next_midnight = datetime.combine(start.date() + timedelta(days=1), time())
        yield start.date(), _hours(start, next_midnight)
        start = next_midnight
    yield start.date(), _hours(start, end)


def _hours(start: datetime, end: datetime) -> float:
    return elapsed(start, end).total_seconds() / 3600


class DayAggregator:
    """Accumulates entry hours into per-day buckets.

    Open entries count up to ``now``, so their totals grow between runs.
    Totals stay unrounded until the report is built.
    """

    def __init__(self, now: datetime | None = None) -> None:
        self.now = now or datetime.now().replace(microsecond=0)
        self.buckets: dict[date, float] = defaultdict(float)

    def add(self, entry: Entry) -> None:
        end = entry.end or self.now
        for day, hours in split_at_midnight(entry.start, end):
            self.buckets[day] += hours

    def add_all(self, entries: Iterable[Entry]) -> DayAggregator:
        for entry in entries:
            self.add(entry)
        return self


def build_report(
    buckets: dict[date, float],
    title: str = DEFAULT_TITLE,
    rate: float | None = None,
) -> Report:
    """Order day buckets by date and round hours to two decimals."""
    return Report(
        title=title,
        rate=rate,
        hours=[
            DayHours(date=day.strftime(keys.DATE_FORMAT), hours=round(buckets[day], 2))
            for day in sorted(buckets)
        ],
    )


def format_elapsed(delta: timedelta) -> str:
    """Format a duration as HH:MM:SS (hours may exceed two digits)."""
    total = max(0, int(delta.total_seconds()))
    return f"{total // 3600:02d}:{total // 60 % 60:02d}:{total % 60:02d}"


def csv_row(entry: Entry, now: datetime) -> list[object]:
    end = entry.end or now
    return [
        keys.to_stamp(entry.key),
        entry.start.strftime(keys.DATE_FORMAT),
        entry.start.strftime(keys.TIME_FORMAT),
        entry.end.strftime(keys.TIME_FORMAT) if entry.end else OPEN_END_MARKER,
        format_elapsed(elapsed(entry.start, end)),
        "A" if entry.archive else "",
        entry.type or "",
        entry.message or "",
    ]


def write_csv(entries: Iterable[Entry], out: IO[str], now: datetime | None = None) -> int:
    """Write entries as CSV with a fixed header. Returns the row count.

    The stamp key is written bare; every text field is quoted, embedded
    quotes doubled.
    """
    now = now or datetime.now().replace(microsecond=0)
    csv.writer(out, lineterminator="\n").writerow(CSV_HEADER)
    writer = csv.writer(out, quoting=csv.QUOTE_NONNUMERIC, lineterminator="\n")
    count = 0
    for entry in entries:
        writer.writerow(csv_row(entry, now))
        count += 1
    return count
