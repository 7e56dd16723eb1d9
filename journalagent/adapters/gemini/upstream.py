"""HTTP transport to the Gemini generative language API."""

from __future__ import annotations

import json
from typing import Any, AsyncGenerator

import httpx

from journalagent.config.settings import settings
from journalagent.core.errors import UpstreamLLMError
from journalagent.util.http_client import SharedAsyncClient, decode_json_or_text, describe_http_error, safe_error_detail
from journalagent.util.logger import logger


llm_http_client = SharedAsyncClient(
    "llm",
    timeout=lambda: settings.llm_timeout_seconds,
    max_connections=lambda: settings.llm_max_connections,
    max_keepalive_connections=lambda: settings.llm_max_keepalive_connections,
)


async def close_llm_async_client() -> None:
    await llm_http_client.close()


def _model_url(model: str, *, stream: bool) -> str:
    base = settings.llm_base_url.rstrip("/")
    if stream:
        return f"{base}/models/{model}:streamGenerateContent?alt=sse"
    return f"{base}/models/{model}:generateContent"


def _headers(api_key: str) -> dict[str, str]:
    return {"Content-Type": "application/json", "x-goog-api-key": api_key}


async def post_generate(model: str, payload: dict[str, Any], api_key: str) -> dict[str, Any]:
    url = _model_url(model, stream=False)
    body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
    logger.debug("llm generate start model=%s payload_bytes=%d", model, len(body))
    client = await llm_http_client.get()
    try:
        response = await client.post(url, content=body, headers=_headers(api_key))
    except httpx.HTTPError as exc:
        detail = describe_http_error(exc)
        logger.warning("llm generate http_error model=%s error=%s", model, detail)
        raise UpstreamLLMError(f"upstream_unreachable: {detail}") from exc
    decoded = decode_json_or_text(response.content)
    if response.status_code >= 400:
        raise UpstreamLLMError(f"upstream_http_error:{response.status_code}:{safe_error_detail(decoded)}")
    if not isinstance(decoded, dict):
        raise UpstreamLLMError("upstream_invalid_body")
    return decoded


async def stream_generate_lines(model: str, payload: dict[str, Any], api_key: str) -> AsyncGenerator[str, None]:
    url = _model_url(model, stream=True)
    body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
    logger.debug("llm stream start model=%s payload_bytes=%d", model, len(body))
    client = await llm_http_client.get()
    try:
        async with client.stream("POST", url, content=body, headers=_headers(api_key)) as resp:
            if resp.status_code >= 400:
                detail = safe_error_detail(decode_json_or_text(await resp.aread()))
                raise UpstreamLLMError(f"upstream_http_error:{resp.status_code}:{detail}")
            async for line in resp.aiter_lines():
                yield line
    except httpx.HTTPError as exc:
        detail = describe_http_error(exc)
        logger.warning("llm stream http_error model=%s error=%s", model, detail)
        raise UpstreamLLMError(f"upstream_unreachable: {detail}") from exc
