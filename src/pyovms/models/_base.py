"""Base model and time helpers shared by pyovms records.

Every record is a frozen pydantic model: sessions advance by
``model_copy(update=...)`` rather than in-place mutation, which keeps the
session state machines pure.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator


def epoch_ms(value: datetime) -> int:
    """Convert a datetime to epoch milliseconds (naive values are taken as UTC)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return int(value.timestamp() * 1000)


def iso_utc(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat()


def new_session_id() -> str:
    return str(uuid.uuid4())


class OvmsModel(BaseModel):
    """Base for pyovms records: immutable, unknown keys rejected, datetimes UTC-aware."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator("*", mode="after")
    @classmethod
    def _ensure_tz_aware(cls, value: Any) -> Any:
        if isinstance(value, datetime) and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value
