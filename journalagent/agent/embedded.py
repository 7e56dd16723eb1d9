"""Full entity payloads for the references left in a validated answer."""

from __future__ import annotations

import asyncio

from journalagent.agent.references import KINDS_BY_NAME, ReferenceKind, extract_references, unique_ids_by_kind
from journalagent.core.errors import StoreError
from journalagent.storage.base import EntityStore, Row
from journalagent.util.logger import logger


EmbeddedData = dict[str, dict[str, Row]]


class EmbeddedDataResolver:
    def __init__(self, store: EntityStore) -> None:
        self._store = store

    async def _fetch(self, kind: ReferenceKind, ids: list[str], caller_identity: str) -> dict[str, Row]:
        scope = {kind.owner_column: caller_identity} if kind.owner_scoped else None
        try:
            rows = await self._store.select(kind.table, eq=scope, in_=("id", ids))
        except StoreError as exc:
            logger.warning("embedded fetch failed kind=%s error=%s", kind.name, exc)
            return {}
        wanted = set(ids)
        return {str(row["id"]): row for row in rows if str(row.get("id")) in wanted}

    async def resolve(self, text: str, caller_identity: str) -> EmbeddedData:
        """``{"trades": {id: row}, ...}`` with empty kinds left out."""

        grouped = unique_ids_by_kind(extract_references(text))
        if not grouped:
            return {}
        kinds = [KINDS_BY_NAME[name] for name in grouped]
        fetched = await asyncio.gather(*(self._fetch(kind, grouped[kind.name], caller_identity) for kind in kinds))
        return {kind.payload_key: entities for kind, entities in zip(kinds, fetched) if entities}
