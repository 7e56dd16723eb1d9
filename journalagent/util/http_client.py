"""Shared httpx clients and response decoding helpers."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable

import httpx

from journalagent.util.logger import logger


class SharedAsyncClient:
    """Lazily-created process-wide ``httpx.AsyncClient``.

    ``install`` swaps in a pre-built client (tests pass one backed by ``httpx.MockTransport``).
    """

    def __init__(
        self,
        name: str,
        *,
        timeout: Callable[[], float],
        max_connections: Callable[[], int] = lambda: 50,
        max_keepalive_connections: Callable[[], int] = lambda: 10,
    ) -> None:
        self.name = name
        self._timeout = timeout
        self._max_connections = max_connections
        self._max_keepalive = max_keepalive_connections
        self._client: httpx.AsyncClient | None = None
        self._lock: asyncio.Lock | None = None

    def _limits(self) -> httpx.Limits:
        return httpx.Limits(
            max_connections=max(10, int(self._max_connections())),
            max_keepalive_connections=max(5, int(self._max_keepalive())),
        )

    def _http_timeout(self) -> httpx.Timeout:
        timeout = float(self._timeout())
        return httpx.Timeout(connect=timeout, read=timeout, write=timeout, pool=timeout)

    async def get(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    http2=False,
                    timeout=self._http_timeout(),
                    limits=self._limits(),
                    follow_redirects=True,
                )
                logger.debug("http client created name=%s", self.name)
        return self._client

    def install(self, client: httpx.AsyncClient | None) -> None:
        self._client = client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def decode_json_or_text(body: bytes) -> dict[str, Any] | list[Any] | str:
    text = body.decode("utf-8", errors="replace")
    if not text:
        return ""
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        return text
    if isinstance(parsed, (dict, list)):
        return parsed
    return text


def safe_error_detail(payload: dict[str, Any] | list[Any] | str) -> str:
    if isinstance(payload, str):
        return payload[:600]
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, str):
            return error[:600]
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"][:600]
    return json.dumps(payload, ensure_ascii=False)[:600]


def describe_http_error(exc: httpx.HTTPError) -> str:
    return (str(exc) or "").strip() or "connection_failed_or_timeout"
