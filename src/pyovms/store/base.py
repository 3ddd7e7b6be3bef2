"""Telemetry store interface and queued write operations."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol


class TelemetryStore(Protocol):
    """Structural sink interface used by the scheduler.

    ``update`` and ``delete`` against an identifier the store never saw must
    be a no-op, not an error: a session whose start insert failed still
    attempts its finalize update.
    """

    async def insert(self, table: str, row: Mapping[str, Any]) -> None:
        ...

    async def update(self, table: str, row_id: str, row: Mapping[str, Any]) -> None:
        ...

    async def delete(self, table: str, row_id: str) -> None:
        ...


class StoreVerb(StrEnum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class StoreOperation:
    """One pending write against a store table."""

    verb: StoreVerb
    table: str
    row_id: str | None = None
    row: Mapping[str, Any] = field(default_factory=dict)

    async def apply(self, store: TelemetryStore) -> None:
        if self.verb == StoreVerb.INSERT:
            await store.insert(self.table, self.row)
        elif self.verb == StoreVerb.UPDATE:
            await store.update(self.table, self._require_id(), self.row)
        else:
            await store.delete(self.table, self._require_id())

    def _require_id(self) -> str:
        if not self.row_id:
            raise ValueError(f"{self.verb} on {self.table} requires a row id")
        return self.row_id

    def describe(self) -> str:
        if self.row_id:
            return f"{self.verb} {self.table}#{self.row_id}"
        return f"{self.verb} {self.table}"
