"""RPC calls to the remote tool gateway (``tools/list`` and ``tools/call``)."""

from __future__ import annotations

import json
from typing import Any

import httpx

from journalagent.config.settings import settings
from journalagent.core.errors import GatewayError, StaleSessionError
from journalagent.gateway.session import (
    SESSION_HEADER,
    GatewaySessionManager,
    decode_rpc_body,
    gateway_configured,
    gateway_headers,
    gateway_http_client,
    next_rpc_id,
)
from journalagent.util.http_client import SharedAsyncClient, describe_http_error, safe_error_detail
from journalagent.util.logger import logger


def _is_stale_session(status_code: int, body_text: str) -> bool:
    if status_code == 404:
        return True
    return status_code == 400 and SESSION_HEADER.lower() in body_text.lower()


def unwrap_tool_result(message: dict[str, Any]) -> tuple[str, bool]:
    """Text payload of a ``tools/call`` reply and whether the call succeeded."""

    error = message.get("error")
    if isinstance(error, dict):
        return f"Error: {error.get('message') or 'unknown gateway error'}", False
    result = message.get("result")
    if not isinstance(result, dict):
        return json.dumps(result, ensure_ascii=False, default=str), True
    content = result.get("content")
    failed = bool(result.get("isError"))
    if isinstance(content, list) and content:
        first = content[0]
        if isinstance(first, dict) and isinstance(first.get("text"), str):
            return first["text"], not failed
    return json.dumps(result, ensure_ascii=False, default=str), not failed


class GatewayClient:
    def __init__(self, sessions: GatewaySessionManager, *, http: SharedAsyncClient | None = None) -> None:
        self.sessions = sessions
        self._http = http or gateway_http_client

    @property
    def configured(self) -> bool:
        return gateway_configured()

    async def _rpc(self, method: str, params: dict[str, Any], session_id: str) -> dict[str, Any]:
        payload = {"jsonrpc": "2.0", "id": next_rpc_id(), "method": method, "params": params}
        client = await self._http.get()
        try:
            response = await client.post(settings.gateway_url, json=payload, headers=gateway_headers(session_id))
        except httpx.HTTPError as exc:
            raise GatewayError(f"gateway_unreachable: {describe_http_error(exc)}") from exc
        if response.status_code >= 400:
            if _is_stale_session(response.status_code, response.text):
                raise StaleSessionError(f"gateway_session_stale:{response.status_code}")
            detail = safe_error_detail(decode_rpc_body(response))
            raise GatewayError(f"gateway_http_error:{response.status_code}:{detail}")
        message = decode_rpc_body(response)
        if not isinstance(message, dict):
            raise GatewayError("gateway_invalid_body")
        return message

    async def _call(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        session_id = await self.sessions.ensure_session()
        if session_id is None:
            raise GatewayError("gateway session could not be established")
        try:
            return await self._rpc(method, params, session_id)
        except StaleSessionError:
            logger.info("gateway session stale, re-handshaking once method=%s", method)
            self.sessions.invalidate(session_id)
        session_id = await self.sessions.ensure_session()
        if session_id is None:
            raise GatewayError("gateway session could not be re-established")
        return await self._rpc(method, params, session_id)

    async def list_tools(self) -> list[dict[str, Any]] | None:
        """Remote tool descriptors; ``None`` when discovery failed (as opposed to an empty gateway)."""

        if not self.configured:
            logger.info("gateway not configured, remote tools disabled")
            return []
        try:
            message = await self._call("tools/list", {})
        except GatewayError as exc:
            logger.warning("gateway tools/list failed error=%s", exc)
            return None
        tools = (message.get("result") or {}).get("tools") if isinstance(message.get("result"), dict) else None
        if not isinstance(tools, list):
            logger.warning("gateway tools/list returned no tool array")
            return None
        return [tool for tool in tools if isinstance(tool, dict) and tool.get("name")]

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> tuple[str, bool]:
        if not self.configured:
            return f"Error: remote tool gateway is not configured, cannot run {name}", False
        try:
            message = await self._call("tools/call", {"name": name, "arguments": arguments})
        except GatewayError as exc:
            logger.warning("gateway tools/call failed tool=%s error=%s", name, exc)
            return f"Error calling {name}: {exc}", False
        return unwrap_tool_result(message)
