"""In-process entity store used for local development and tests."""

from __future__ import annotations

import asyncio
import uuid
from copy import deepcopy
from typing import Any

from journalagent.storage.base import EntityStore, Row


class MemoryEntityStore(EntityStore):
    def __init__(self, tables: dict[str, list[Row]] | None = None) -> None:
        self._tables: dict[str, list[Row]] = {name: [dict(row) for row in rows] for name, rows in (tables or {}).items()}
        self._lock = asyncio.Lock()

    def rows(self, table: str) -> list[Row]:
        return deepcopy(self._tables.get(table, []))

    @staticmethod
    def _matches(
        row: Row,
        eq: dict[str, Any] | None,
        in_: tuple[str, list[str]] | None,
        contains: tuple[str, list[str]] | None,
        search: tuple[list[str], str] | None,
    ) -> bool:
        for key, value in (eq or {}).items():
            if row.get(key) != value:
                return False
        if in_ is not None:
            column, values = in_
            if row.get(column) not in set(values):
                return False
        if contains is not None:
            column, values = contains
            present = row.get(column) or []
            if not all(value in present for value in values):
                return False
        if search is not None:
            columns, term = search
            needle = term.lower()
            if not any(needle in str(row.get(column) or "").lower() for column in columns):
                return False
        return True

    @staticmethod
    def _project(row: Row, columns: list[str] | None) -> Row:
        if not columns:
            return deepcopy(row)
        return {column: deepcopy(row.get(column)) for column in columns}

    async def select(
        self,
        table: str,
        *,
        columns: list[str] | None = None,
        eq: dict[str, Any] | None = None,
        in_: tuple[str, list[str]] | None = None,
        contains: tuple[str, list[str]] | None = None,
        search: tuple[list[str], str] | None = None,
        order: str | None = None,
        limit: int | None = None,
    ) -> list[Row]:
        async with self._lock:
            found = [row for row in self._tables.get(table, []) if self._matches(row, eq, in_, contains, search)]
        if order:
            column, _, direction = order.partition(".")
            found.sort(key=lambda row: str(row.get(column) or ""), reverse=direction == "desc")
        if limit is not None:
            found = found[:limit]
        return [self._project(row, columns) for row in found]

    async def insert(self, table: str, row: Row) -> Row:
        stored = dict(row)
        stored.setdefault("id", str(uuid.uuid4()))
        async with self._lock:
            self._tables.setdefault(table, []).append(stored)
        return deepcopy(stored)

    async def update(self, table: str, match: dict[str, Any], values: Row) -> list[Row]:
        changed: list[Row] = []
        async with self._lock:
            for row in self._tables.get(table, []):
                if self._matches(row, match, None, None, None):
                    row.update(values)
                    changed.append(deepcopy(row))
        return changed

    async def delete(self, table: str, match: dict[str, Any]) -> int:
        async with self._lock:
            rows = self._tables.get(table, [])
            kept = [row for row in rows if not self._matches(row, match, None, None, None)]
            self._tables[table] = kept
        return len(rows) - len(kept)

    async def upsert(self, table: str, row: Row, on_conflict: list[str]) -> Row:
        match = {column: row.get(column) for column in on_conflict}
        updated = await self.update(table, match, row)
        if updated:
            return updated[0]
        return await self.insert(table, row)
