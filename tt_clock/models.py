"""Record types for entries, store batches and reports."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Literal

import pydantic
from pydantic import BaseModel, Field, field_validator

from tt_clock import keys
from tt_clock.errors import ValidationError

# Fields with a fixed meaning; everything else on a stored record is extra.
KNOWN_FIELDS = ("end", "type", "message", "archive")


class Entry(BaseModel):
    """One recorded time interval.

    The start instant is not stored in the record itself, it is the key.
    Unknown properties set by users are kept in ``extra``.
    """

    key: str
    start: datetime
    end: datetime | None = None
    type: str | None = None
    message: str | None = None
    archive: bool = False
    extra: dict[str, Any] = Field(default_factory=dict)

    @field_validator("end", mode="before")
    @classmethod
    def _parse_end(cls, value: Any) -> Any:
        if value in (None, ""):
            return None
        if isinstance(value, str):
            return keys.parse_timestamp(value)
        return value

    @field_validator("archive", mode="before")
    @classmethod
    def _none_is_false(cls, value: Any) -> Any:
        return False if value is None else value

    @property
    def is_open(self) -> bool:
        return self.end is None

    @classmethod
    def from_value(cls, key: str, value: Any) -> Entry:
        """Build an entry from a primary key and its stored record.

        Raises:
            ValidationError: If the record is not an object or a known field
                has the wrong shape.
        """
        if not isinstance(value, dict):
            raise ValidationError(f"Not an object: {value!r}")
        data = dict(value)
        known = {name: data.pop(name) for name in KNOWN_FIELDS if name in data}
        try:
            return cls(key=key, start=keys.decode(key), extra=data, **known)
        except (pydantic.ValidationError, ValueError) as e:
            raise ValidationError(f"Invalid entry {key}: {e}") from e

    def to_value(self) -> dict[str, Any]:
        """The record stored under the primary key."""
        value: dict[str, Any] = dict(self.extra)
        if self.type is not None:
            value["type"] = self.type
        if self.message is not None:
            value["message"] = self.message
        if self.end is not None:
            value["end"] = keys.encode(self.end)
        if self.archive:
            value["archive"] = True
        return value


class BatchOp(BaseModel):
    """A single put or delete inside an atomic batch."""

    type: Literal["put", "del"]
    key: str
    value: Any = None

    @classmethod
    def put(cls, key: str, value: Any) -> BatchOp:
        return cls(type="put", key=key, value=value)

    @classmethod
    def delete(cls, key: str) -> BatchOp:
        return cls(type="del", key=key)


class DayHours(BaseModel):
    date: str
    hours: float


class Report(BaseModel):
    """Hours per calendar day, ready for serialization."""

    title: str
    rate: float | None = None
    hours: list[DayHours]

    def to_json(self) -> str:
        """Canonical JSON: sorted keys, so identical data gives identical bytes."""
        return json.dumps(self.model_dump(exclude_none=True), sort_keys=True, indent=2)
