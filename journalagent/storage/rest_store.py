"""PostgREST-backed entity store over httpx."""

from __future__ import annotations

import re
from typing import Any

import httpx

from journalagent.config.settings import settings
from journalagent.core.errors import StoreError
from journalagent.storage.base import EntityStore, Row
from journalagent.util.http_client import SharedAsyncClient, decode_json_or_text, describe_http_error, safe_error_detail
from journalagent.util.logger import logger


_UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)
_SEARCH_UNSAFE = re.compile(r"[,()*\"]")

store_http_client = SharedAsyncClient("store", timeout=lambda: settings.store_timeout_seconds)


def is_uuid(value: str) -> bool:
    return bool(_UUID_RE.match(value or ""))


def _literal(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _quoted(value: str) -> str:
    return '"' + str(value).replace('"', '\\"') + '"'


class RestEntityStore(EntityStore):
    def __init__(
        self,
        base_url: str,
        service_key: str,
        *,
        http: SharedAsyncClient | None = None,
        uuid_columns: frozenset[str] = frozenset({"id"}),
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._service_key = service_key
        self._http = http or store_http_client
        self._uuid_columns = uuid_columns

    def _headers(self, *, returning: bool = False, prefer: str | None = None) -> dict[str, str]:
        headers = {
            "apikey": self._service_key,
            "Authorization": f"Bearer {self._service_key}",
            "Content-Type": "application/json",
        }
        preferences = [item for item in (prefer, "return=representation" if returning else None) if item]
        if preferences:
            headers["Prefer"] = ",".join(preferences)
        return headers

    def _match_params(self, match: dict[str, Any]) -> dict[str, str]:
        return {column: f"eq.{_literal(value)}" for column, value in match.items()}

    async def _send(self, method: str, table: str, *, params: dict[str, str], headers: dict[str, str], json: Any = None) -> Any:
        client = await self._http.get()
        url = f"{self._base_url}/{table}"
        try:
            response = await client.request(method, url, params=params, headers=headers, json=json)
        except httpx.HTTPError as exc:
            raise StoreError(f"store_unreachable: {describe_http_error(exc)}") from exc
        decoded = decode_json_or_text(response.content)
        if response.status_code >= 400:
            detail = safe_error_detail(decoded)
            logger.warning("store request failed method=%s table=%s status=%s detail=%s", method, table, response.status_code, detail)
            raise StoreError(f"store_http_error:{response.status_code}:{detail}")
        return decoded

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
        params: dict[str, str] = {"select": ",".join(columns) if columns else "*"}
        params.update(self._match_params(eq or {}))
        if in_ is not None:
            column, values = in_
            if column in self._uuid_columns:
                # uuid 列上出现非 UUID 值会让整条查询报错
                values = [value for value in values if is_uuid(value)]
            if not values:
                return []
            params[column] = f"in.({','.join(_quoted(value) for value in values)})"
        if contains is not None:
            column, values = contains
            params[column] = "cs.{" + ",".join(_quoted(value) for value in values) + "}"
        if search is not None:
            search_columns, term = search
            cleaned = _SEARCH_UNSAFE.sub(" ", term).strip()
            if cleaned:
                params["or"] = "(" + ",".join(f"{column}.ilike.*{cleaned}*" for column in search_columns) + ")"
        if order:
            params["order"] = order
        if limit is not None:
            params["limit"] = str(limit)
        decoded = await self._send("GET", table, params=params, headers=self._headers())
        return [row for row in decoded if isinstance(row, dict)] if isinstance(decoded, list) else []

    async def insert(self, table: str, row: Row) -> Row:
        decoded = await self._send("POST", table, params={}, headers=self._headers(returning=True), json=row)
        if isinstance(decoded, list) and decoded and isinstance(decoded[0], dict):
            return decoded[0]
        raise StoreError(f"store_insert_returned_nothing:{table}")

    async def update(self, table: str, match: dict[str, Any], values: Row) -> list[Row]:
        decoded = await self._send(
            "PATCH", table, params=self._match_params(match), headers=self._headers(returning=True), json=values
        )
        return [row for row in decoded if isinstance(row, dict)] if isinstance(decoded, list) else []

    async def delete(self, table: str, match: dict[str, Any]) -> int:
        decoded = await self._send("DELETE", table, params=self._match_params(match), headers=self._headers(returning=True))
        return len(decoded) if isinstance(decoded, list) else 0

    async def upsert(self, table: str, row: Row, on_conflict: list[str]) -> Row:
        decoded = await self._send(
            "POST",
            table,
            params={"on_conflict": ",".join(on_conflict)},
            headers=self._headers(returning=True, prefer="resolution=merge-duplicates"),
            json=row,
        )
        if isinstance(decoded, list) and decoded and isinstance(decoded[0], dict):
            return decoded[0]
        raise StoreError(f"store_upsert_returned_nothing:{table}")

    async def close(self) -> None:
        await self._http.close()
