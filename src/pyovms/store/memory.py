"""In-process telemetry store used for dry runs and tests."""

from __future__ import annotations

import copy
import logging
from collections.abc import Mapping
from typing import Any

_logger = logging.getLogger(__name__)


class MemoryTelemetryStore:
    """Keeps every table as a list of row dicts.

    Rows inserted without an ``id`` (telemetry snapshots) are append-only;
    session rows are addressed by their ``id`` column.
    """

    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {}

    def rows(self, table: str) -> list[dict[str, Any]]:
        return self.tables.get(table, [])

    def get(self, table: str, row_id: str) -> dict[str, Any] | None:
        for row in self.rows(table):
            if row.get("id") == row_id:
                return row
        return None

    async def insert(self, table: str, row: Mapping[str, Any]) -> None:
        self.tables.setdefault(table, []).append(copy.deepcopy(dict(row)))
        _logger.debug("Inserted row into %s (%d rows)", table, len(self.tables[table]))

    async def update(self, table: str, row_id: str, row: Mapping[str, Any]) -> None:
        existing = self.get(table, row_id)
        if existing is None:
            _logger.debug("Update of unknown %s row %s ignored", table, row_id)
            return
        existing.update(copy.deepcopy(dict(row)))

    async def delete(self, table: str, row_id: str) -> None:
        rows = self.rows(table)
        remaining = [row for row in rows if row.get("id") != row_id]
        if len(remaining) == len(rows):
            _logger.debug("Delete of unknown %s row %s ignored", table, row_id)
        if table in self.tables:
            self.tables[table] = remaining
