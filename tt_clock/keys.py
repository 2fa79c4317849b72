"""Sortable key encoding for time entries.

Primary keys are ``time!`` followed by the entry start rendered as
``YYYY-MM-DD HH:MM:SS``. That rendering is fixed-width, so lexicographic key
order is chronological order. Type index keys live under ``time-type!``,
outside the primary range.
"""

from __future__ import annotations

from datetime import datetime

ENTRY_PREFIX = "time!"
TYPE_PREFIX = "time-type!"
SEPARATOR = "!"

# Sorts after every digit, so "time!" + HIGH bounds the whole primary range.
HIGH = "~"

KEY_FORMAT = "%Y-%m-%d %H:%M:%S"
DATE_FORMAT = "%Y-%m-%d"
TIME_FORMAT = "%H:%M:%S"


def encode(instant: datetime) -> str:
    """Render an instant as a fixed-width sortable timestamp."""
    return instant.strftime(KEY_FORMAT)


def parse_timestamp(value: str) -> datetime:
    """Parse a sortable timestamp back into a naive local datetime."""
    return datetime.strptime(value, KEY_FORMAT)


def decode(key: str) -> datetime:
    """Extract the start instant from a primary or type index key."""
    return parse_timestamp(key.rsplit(SEPARATOR, 1)[-1])


def entry_key(instant: datetime) -> str:
    return ENTRY_PREFIX + encode(instant)


def type_key(entry_type: str, instant: datetime) -> str:
    return f"{TYPE_PREFIX}{entry_type}{SEPARATOR}{encode(instant)}"


def resolve_reference(token: str) -> str:
    """Turn a user-supplied stamp into a primary key.

    Accepts a full key, a literal timestamp suffix, or Unix epoch seconds.
    """
    token = str(token).strip()
    if token.startswith(ENTRY_PREFIX):
        return token
    if token.isdigit():
        return entry_key(datetime.fromtimestamp(int(token)))
    return ENTRY_PREFIX + token


def to_stamp(key: str) -> int:
    """Epoch seconds for a key, the short handle shown to users."""
    return int(decode(key).timestamp())
