"""Tests for the date expression pipeline."""

from datetime import datetime

import pytest

from tt_clock.dates import DateParser, DateparserStage, merge_stage
from tt_clock.errors import ParseError

REFERENCE = datetime(2024, 6, 10, 9, 15, 0)


class TestDateParser:
    """Tests for DateParser.parse stage ordering."""

    def test_strict_datetime(self):
        assert DateParser().parse("2024-01-05 14:30:00") == datetime(2024, 1, 5, 14, 30, 0)

    def test_strict_iso_without_seconds(self):
        assert DateParser().parse("2024-01-05T14:30") == datetime(2024, 1, 5, 14, 30, 0)

    def test_time_of_day_uses_reference_date(self):
        """A bare time lands on the reference instant's calendar date."""
        assert DateParser().parse("17:45", REFERENCE) == datetime(2024, 6, 10, 17, 45, 0)

    def test_calendar_date_with_time(self):
        assert DateParser().parse("June 3 2024 5pm") == datetime(2024, 6, 3, 17, 0, 0)

    def test_microseconds_truncated(self):
        assert DateParser().parse("2024-01-05T14:30:00.999999") == datetime(2024, 1, 5, 14, 30, 0)

    def test_unparseable_raises(self):
        with pytest.raises(ParseError):
            DateParser(clock=lambda: REFERENCE).parse("xyzzy", REFERENCE)

    def test_empty_raises(self):
        with pytest.raises(ParseError):
            DateParser().parse("   ")

    def test_merge_is_parse_with_reference(self):
        assert DateParser().merge(REFERENCE, "08:00") == datetime(2024, 6, 10, 8, 0, 0)


class TestNaturalLanguage:
    """Relative expressions count from the parser's clock."""

    @pytest.fixture
    def parser(self) -> DateParser:
        return DateParser(clock=lambda: REFERENCE)

    def test_yesterday_at_time(self, parser):
        assert parser.parse("yesterday 5pm") == datetime(2024, 6, 9, 17, 0, 0)

    def test_now(self, parser):
        assert parser.parse("now") == REFERENCE

    def test_hours_ago(self, parser):
        assert parser.parse("2 hours ago") == datetime(2024, 6, 10, 7, 15, 0)

    def test_relative_ignores_reference(self, parser):
        """``now`` against an old entry still means the clock's now."""
        assert parser.merge(datetime(2020, 1, 1, 8, 0, 0), "now") == REFERENCE

    def test_stage_returns_none_for_garbage(self):
        assert DateparserStage(lambda: REFERENCE)("xyzzy", None) is None


class TestPluggableNaturalStage:
    """The natural-language stage can be swapped out."""

    def test_custom_stage_is_consulted(self):
        calls = []

        def natural(expr, reference):
            calls.append(expr)
            if expr == "lunch":
                return datetime(2024, 6, 10, 12, 0, 0)
            return None

        parser = DateParser(natural=natural)
        assert parser.parse("lunch") == datetime(2024, 6, 10, 12, 0, 0)
        assert calls == ["lunch"]

    def test_strict_stage_wins_before_natural(self):
        def natural(expr, reference):
            raise AssertionError("natural stage should not run")

        parser = DateParser(natural=natural)
        assert parser.parse("2024-01-05 14:30:00") == datetime(2024, 1, 5, 14, 30, 0)

    def test_merge_stage_combines_time_with_reference(self):
        assert merge_stage("3:15 pm", REFERENCE) == datetime(2024, 6, 10, 15, 15, 0)

    def test_merge_stage_needs_reference(self):
        assert merge_stage("10:00", None) is None
