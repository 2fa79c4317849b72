"""Date expression parsing.

Expressions go through an ordered pipeline of stages. Each stage returns a
datetime or ``None`` to pass the expression to the next stage:

1. strict calendar date plus time (``2024-01-05 14:30:00`` and close variants)
2. calendar formats via ``dateutil``, missing parts taken from the reference
3. natural language (``yesterday 5pm``, ``2 hours ago``) via ``dateparser``;
   injectable
4. a time of day merged onto the reference instant's calendar date
"""

from __future__ import annotations

import logging
from datetime import datetime, time, timedelta
from typing import Callable

import dateparser
from dateutil import parser as dtparser

from tt_clock.errors import ParseError

logger = logging.getLogger(__name__)

Stage = Callable[[str, "datetime | None"], "datetime | None"]

STRICT_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M",
)

TIME_OF_DAY_FORMATS = (
    "%H:%M:%S",
    "%H:%M",
    "%I:%M:%S%p",
    "%I:%M%p",
    "%I%p",
)


def elapsed(start: datetime, end: datetime) -> timedelta:
    """Wall-clock difference between two local instants, DST-aware."""
    return end.astimezone() - start.astimezone()


def _seconds(value: datetime) -> datetime:
    """Truncate to whole seconds and drop tzinfo (instants are local)."""
    if value.tzinfo is not None:
        value = value.astimezone().replace(tzinfo=None)
    return value.replace(microsecond=0)


def strict_stage(expr: str, reference: datetime | None) -> datetime | None:
    for fmt in STRICT_FORMATS:
        try:
            return datetime.strptime(expr, fmt)
        except ValueError:
            continue
    return None


def dateutil_stage(expr: str, reference: datetime | None) -> datetime | None:
    """Calendar formats backed by ``dateutil``.

    Components missing from the expression are filled from the reference
    date (or today), so a bare ``14:30`` lands on the reference's day.
    """
    base = reference if reference is not None else datetime.now()
    default = datetime.combine(base.date(), time())
    try:
        return dtparser.parse(expr, default=default)
    except (TypeError, ValueError, OverflowError) as e:
        logger.debug("dateutil could not parse %r: %s", expr, e)
        return None


class DateparserStage:
    """Natural-language stage backed by ``dateparser``.

    Relative expressions count from ``clock()``, the current instant, not
    from the reference: ``set end now`` means now.
    """

    def __init__(self, clock: Callable[[], datetime] = datetime.now) -> None:
        self.clock = clock

    def __call__(self, expr: str, reference: datetime | None) -> datetime | None:
        try:
            return dateparser.parse(
                expr,
                languages=["en"],
                settings={"RELATIVE_BASE": self.clock(), "RETURN_AS_TIMEZONE_AWARE": False},
            )
        except (TypeError, ValueError, OverflowError) as e:
            logger.debug("dateparser could not parse %r: %s", expr, e)
            return None


def merge_stage(expr: str, reference: datetime | None) -> datetime | None:
    if reference is None:
        return None
    compact = expr.replace(" ", "").upper()
    for fmt in TIME_OF_DAY_FORMATS:
        try:
            parsed = datetime.strptime(compact, fmt)
        except ValueError:
            continue
        return datetime.combine(reference.date(), parsed.time())
    return None


class DateParser:
    """Runs date expressions through the stage pipeline.

    Args:
        natural: Replacement for the natural-language stage.
        clock: Current instant used as the base of relative expressions.
    """

    def __init__(
        self,
        natural: Stage | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.stages: list[Stage] = [
            strict_stage,
            dateutil_stage,
            natural or DateparserStage(clock),
            merge_stage,
        ]

    def parse(self, expr: str, reference: datetime | None = None) -> datetime:
        """Resolve an expression to a local instant.

        Args:
            expr: Date, datetime, time-of-day or natural-language expression.
            reference: Instant whose calendar date completes partial input.

        Raises:
            ParseError: If no stage resolves the expression.
        """
        expr = expr.strip()
        if expr:
            for stage in self.stages:
                result = stage(expr, reference)
                if result is not None:
                    return _seconds(result)
        raise ParseError(f"Could not parse date expression: {expr!r}")

    def merge(self, reference: datetime, expr: str) -> datetime:
        """Combine an expression with a reference instant's calendar date."""
        return self.parse(expr, reference)
