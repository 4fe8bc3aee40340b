"""Base models and enums for pytailnet.

Domain models inherit from :class:`TailnetModel` which provides:

* ``alias_generator=to_camel`` so camelCase wire keys map
  automatically to snake_case fields.
* frozen instances; the store derives new versions with ``model_copy``.

Records read from external sources inherit from :class:`SourceRecordModel`
which additionally strips sentinel values (``""``, ``"--"``, ``None``) so
the field default is used, and stashes the original payload in ``raw``.

String enums inherit from :class:`TailnetEnum` which matches values
case-insensitively.
"""

from __future__ import annotations

import enum
from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

_SENTINELS = frozenset({"", "--", "null", "NaN"})

# Threshold to distinguish seconds from milliseconds.
_MS_THRESHOLD = 1_000_000_000_000


def utcnow() -> datetime:
    return datetime.now(UTC)


def parse_timestamp(value: Any) -> datetime | None:
    """Convert an ISO-8601 string or epoch number (s or ms) to a UTC datetime.

    Naive datetimes are assumed to be UTC. Returns ``None`` for ``None``.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        ts = float(value)
        if ts >= _MS_THRESHOLD:
            ts /= 1000.0
        return datetime.fromtimestamp(ts, tz=UTC)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
        return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)
    raise ValueError(f"unsupported timestamp value: {value!r}")


Timestamp = Annotated[datetime | None, BeforeValidator(parse_timestamp)]
"""Annotated type that coerces ISO strings / epoch numbers to UTC datetimes."""


def _dedupe_tags(value: Any) -> Any:
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple, set, frozenset)):
        return value
    seen: dict[str, None] = {}
    for tag in value:
        text = str(tag).strip()
        if text:
            seen.setdefault(text, None)
    return list(seen)


Tags = Annotated[list[str], BeforeValidator(_dedupe_tags)]
"""Ordered, de-duplicated tag list."""


class TailnetEnum(enum.StrEnum):
    """Base for wire enums; lookups ignore case and surrounding whitespace."""

    @classmethod
    def _missing_(cls, value: object) -> TailnetEnum | None:
        if isinstance(value, str):
            wanted = value.strip().lower()
            for member in cls:
                if member.value == wanted:
                    return member
        return None


class TailnetModel(BaseModel):
    """Base for frozen domain models."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    def to_wire(self) -> dict[str, Any]:
        """JSON-ready dict with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)


class SourceRecordModel(TailnetModel):
    """Base for records read from an external source."""

    raw: dict[str, Any] = Field(default_factory=dict, exclude=True)
    """Original record as received."""

    @staticmethod
    def _clean_dict(values: dict[str, Any]) -> dict[str, Any]:
        cleaned: dict[str, Any] = {}
        for key, value in values.items():
            if value is None:
                continue
            if isinstance(value, str) and value.strip() in _SENTINELS:
                continue
            cleaned[key] = value
        return cleaned

    @model_validator(mode="before")
    @classmethod
    def _clean_source_values(cls, values: Any) -> Any:
        """Strip sentinel values and stash the raw payload."""
        if not isinstance(values, dict):
            return values
        cleaned = SourceRecordModel._clean_dict(values)
        if "raw" not in values:
            cleaned["raw"] = dict(values)
        return cleaned


class PatchModel(TailnetModel):
    """Base for partial updates.

    Every field is optional so callers can omit it, but a field that is
    supplied must carry a value: an explicit ``null`` is rejected.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    @model_validator(mode="before")
    @classmethod
    def _reject_explicit_nulls(cls, values: Any) -> Any:
        if isinstance(values, dict):
            nulls = sorted(str(key) for key, value in values.items() if value is None)
            if nulls:
                raise ValueError(f"fields cannot be null: {', '.join(nulls)}")
        return values

    def changes(self) -> dict[str, Any]:
        """Fields explicitly set by the caller."""
        return {name: getattr(self, name) for name in self.model_fields_set}
