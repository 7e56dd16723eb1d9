"""Entity store abstraction over the journal tables."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


Row = dict[str, Any]


class EntityStore(ABC):
    """Minimal table API the agent needs: filtered reads plus note/tag writes.

    Filters combine with AND. ``in_`` is ``(column, values)``; ``contains`` is
    ``(array_column, values)`` and requires every value; ``search`` is
    ``(columns, term)`` and matches a case-insensitive substring in any column.
    """

    @abstractmethod
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
        pass

    @abstractmethod
    async def insert(self, table: str, row: Row) -> Row:
        pass

    @abstractmethod
    async def update(self, table: str, match: dict[str, Any], values: Row) -> list[Row]:
        pass

    @abstractmethod
    async def delete(self, table: str, match: dict[str, Any]) -> int:
        pass

    @abstractmethod
    async def upsert(self, table: str, row: Row, on_conflict: list[str]) -> Row:
        pass

    async def close(self) -> None:
        return None
