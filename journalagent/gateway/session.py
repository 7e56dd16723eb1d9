"""Session handshake with the remote tool gateway, cached process-wide."""

from __future__ import annotations

import json
from itertools import count
from typing import Any

import httpx

from journalagent.config.settings import settings
from journalagent.core.ttl_cache import TtlRef
from journalagent.util.http_client import SharedAsyncClient, decode_json_or_text, describe_http_error, safe_error_detail
from journalagent.util.logger import logger


SESSION_HEADER = "Mcp-Session-Id"
ACCEPT_HEADER = "application/json, text/event-stream"

gateway_http_client = SharedAsyncClient("gateway", timeout=lambda: settings.gateway_timeout_seconds)

_rpc_ids = count(1)


def next_rpc_id() -> int:
    return next(_rpc_ids)


def gateway_configured() -> bool:
    return bool(settings.gateway_url.strip() and settings.gateway_access_token.strip())


def gateway_headers(session_id: str | None = None) -> dict[str, str]:
    headers = {
        "Content-Type": "application/json",
        "Accept": ACCEPT_HEADER,
        "Authorization": f"Bearer {settings.gateway_access_token}",
    }
    if session_id:
        headers[SESSION_HEADER] = session_id
    return headers


def decode_rpc_body(response: httpx.Response) -> dict[str, Any] | str:
    """JSON-RPC message from a plain JSON body or from an SSE-framed one."""

    content_type = response.headers.get("content-type", "")
    if "text/event-stream" not in content_type:
        decoded = decode_json_or_text(response.content)
        return decoded if isinstance(decoded, (dict, str)) else json.dumps(decoded)
    message: dict[str, Any] | None = None
    for line in response.text.splitlines():
        stripped = line.strip()
        if not stripped.startswith("data:"):
            continue
        try:
            parsed = json.loads(stripped[5:].strip())
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict) and ("result" in parsed or "error" in parsed):
            message = parsed
    return message if message is not None else response.text


class GatewaySessionManager:
    def __init__(self, *, http: SharedAsyncClient | None = None, ttl_seconds: float | None = None) -> None:
        self._http = http or gateway_http_client
        ttl = settings.gateway_session_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._ref: TtlRef[str] = TtlRef(ttl)
        self.handshakes = 0

    async def ensure_session(self) -> str | None:
        if not gateway_configured():
            return None
        return await self._ref.get_or_refresh(self._handshake)

    def invalidate(self, stale_session: str) -> None:
        if not self._ref.invalidate_if(stale_session):
            # 已被并发调用换成新会话
            logger.debug("gateway session already replaced, keeping the new one")
            return
        logger.info("gateway session invalidated")

    async def _handshake(self) -> str | None:
        self.handshakes += 1
        payload = {
            "jsonrpc": "2.0",
            "id": next_rpc_id(),
            "method": "initialize",
            "params": {
                "protocolVersion": settings.gateway_protocol_version,
                "capabilities": {},
                "clientInfo": {"name": settings.gateway_client_name, "version": "1.0.0"},
            },
        }
        client = await self._http.get()
        try:
            response = await client.post(settings.gateway_url, json=payload, headers=gateway_headers())
        except httpx.HTTPError as exc:
            logger.warning("gateway handshake unreachable error=%s", describe_http_error(exc))
            return None
        if response.status_code >= 400:
            detail = safe_error_detail(decode_json_or_text(response.content))
            logger.warning("gateway handshake failed status=%s detail=%s", response.status_code, detail)
            return None
        session_id = response.headers.get(SESSION_HEADER, "").strip()
        if not session_id:
            logger.warning("gateway handshake returned no session id status=%s", response.status_code)
            return None
        await self._notify_initialized(client, session_id)
        logger.info("gateway session established")
        return session_id

    async def _notify_initialized(self, client: httpx.AsyncClient, session_id: str) -> None:
        payload = {"jsonrpc": "2.0", "method": "notifications/initialized"}
        try:
            response = await client.post(settings.gateway_url, json=payload, headers=gateway_headers(session_id))
        except httpx.HTTPError as exc:
            logger.warning("gateway initialized notification failed error=%s", describe_http_error(exc))
            return
        if response.status_code >= 400:
            logger.warning("gateway initialized notification rejected status=%s", response.status_code)
