"""Error taxonomy for the entry store."""

from __future__ import annotations


class ClockError(Exception):
    """Base exception for entry store errors."""

    pass


class NotFoundError(ClockError):
    """Raised when a key lookup misses."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Key not found: {key}")
        self.key = key


class ParseError(ClockError):
    """Raised for unparseable date expressions or malformed input data."""

    pass


class ValidationError(ClockError):
    """Raised when a supplied value is not a well-formed entry record."""

    pass


class StoreError(ClockError):
    """Raised when the underlying storage fails."""

    pass
