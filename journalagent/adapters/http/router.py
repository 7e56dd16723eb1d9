"""Agent chat routes."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from journalagent.agent.orchestrator import AgentOrchestrator, build_orchestrator, new_request_id
from journalagent.config.settings import settings
from journalagent.core.errors import ConfigurationError, IdentityLeakError, JournalAgentError, RequestValidationError
from journalagent.core.models import AgentRequest
from journalagent.observability.metrics import emit_counter
from journalagent.transport.sse import CollectingSink, SSEEmitter, build_streaming_response
from journalagent.util.logger import logger


router = APIRouter()

_ORCHESTRATOR: AgentOrchestrator | None = None
# 后台运行中的流式任务，持有引用防止被 GC
_BACKGROUND_TASKS: set[asyncio.Task] = set()
_TRUE_VALUES = {"1", "true", "yes", "on"}
_DEBUG_REQUEST_BODY_MAX_CHARS = 32000
_DEBUG_HEADERS_REDACT = frozenset({"authorization", "x-goog-api-key"})


def get_orchestrator() -> AgentOrchestrator:
    global _ORCHESTRATOR
    if _ORCHESTRATOR is None:
        _ORCHESTRATOR = build_orchestrator()
    return _ORCHESTRATOR


async def close_orchestrator() -> None:
    global _ORCHESTRATOR
    if _BACKGROUND_TASKS:
        await asyncio.gather(*list(_BACKGROUND_TASKS), return_exceptions=True)
    if _ORCHESTRATOR is not None:
        await _ORCHESTRATOR.close()
        _ORCHESTRATOR = None


def _flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in _TRUE_VALUES


def _should_stream(request: Request, payload: dict[str, Any]) -> bool:
    if _flag(request.query_params.get("stream")):
        return True
    if "text/event-stream" in request.headers.get("accept", "").lower():
        return True
    if _flag(request.headers.get("x-stream")):
        return True
    return payload.get("stream") is True


def _is_warmup(request: Request) -> bool:
    return _flag(request.headers.get("x-warmup"))


def _error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"message": (message or code).strip() or code, "type": "journalagent_error", "code": code}},
    )


def _log_request_if_debug(request: Request, payload: dict[str, Any]) -> None:
    if not logger.isEnabledFor(logging.DEBUG):
        return
    headers_safe = {
        key: ("***" if key.lower() in _DEBUG_HEADERS_REDACT or "key" in key.lower() or "token" in key.lower() else value)
        for key, value in request.headers.items()
    }
    body_str = json.dumps(payload, ensure_ascii=False, default=str)
    logger.debug(
        "incoming request method=%s path=%s headers=%s body_size=%d",
        request.method,
        request.url.path,
        headers_safe,
        len(body_str),
    )
    if settings.log_full_request_body:
        logger.debug("incoming request body:\n%s", body_str[:_DEBUG_REQUEST_BODY_MAX_CHARS])


async def _read_payload(request: Request) -> dict[str, Any]:
    raw = await request.body()
    if not raw.strip():
        raise RequestValidationError("request body is empty")
    try:
        payload = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise RequestValidationError(f"request body is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise RequestValidationError("request body must be a JSON object")
    return payload


def _parse_request(payload: dict[str, Any]) -> AgentRequest:
    try:
        return AgentRequest.model_validate(payload)
    except ValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(item) for item in first.get("loc", ()))
        message = str(first.get("msg") or "invalid request")
        raise RequestValidationError(f"{location}: {message}" if location else message) from exc


async def _warmup_response() -> JSONResponse:
    try:
        body = await get_orchestrator().warmup()
    except JournalAgentError as exc:
        logger.warning("warmup failed code=%s error=%s", exc.code, exc)
        return _error_response(exc.status_code, exc.code, str(exc))
    logger.info("warmup done cache_status=%s", body.get("cache_status"))
    return JSONResponse(content=body)


@router.get("/agent/warmup")
async def agent_warmup() -> JSONResponse:
    return await _warmup_response()


@router.api_route("/agent/chat", methods=["GET", "HEAD", "OPTIONS"])
async def agent_chat_probe(request: Request) -> JSONResponse:
    if _is_warmup(request):
        return await _warmup_response()
    return _error_response(405, "method_not_allowed", "use POST for /agent/chat")


@router.post("/agent/chat")
async def agent_chat(request: Request):
    if _is_warmup(request):
        return await _warmup_response()

    try:
        payload = await _read_payload(request)
        _log_request_if_debug(request, payload)
        agent_request = _parse_request(payload)
        if not agent_request.completion_key():
            raise ConfigurationError("no completion-service credential: supply one in the request or configure the server key")
    except JournalAgentError as exc:
        logger.info("agent request rejected code=%s detail=%s", exc.code, exc)
        emit_counter("agent_requests_rejected", labels={"code": exc.code})
        return _error_response(exc.status_code, exc.code, str(exc))

    request_id = new_request_id()
    orchestrator = get_orchestrator()
    logger.info(
        "agent request accepted request_id=%s caller=%s images=%s history=%s stream=%s",
        request_id,
        agent_request.caller_identity,
        len(agent_request.images),
        len(agent_request.conversation_history),
        _should_stream(request, payload),
    )

    if _should_stream(request, payload):
        emitter = SSEEmitter(request_id)
        task = asyncio.create_task(
            orchestrator.run_streaming(agent_request, emitter, request_id=request_id),
            name=f"journalagent-run-{request_id}",
        )
        _BACKGROUND_TASKS.add(task)
        task.add_done_callback(_BACKGROUND_TASKS.discard)
        return build_streaming_response(emitter)

    sink = CollectingSink()
    try:
        response = await orchestrator.run(agent_request, sink, request_id=request_id, stream_text=False)
    except IdentityLeakError as exc:
        return _error_response(exc.status_code, exc.code, "response withheld by the identity scan")
    except JournalAgentError as exc:
        logger.warning("agent request failed request_id=%s code=%s error=%s", request_id, exc.code, exc)
        return _error_response(exc.status_code, exc.code, str(exc))
    finally:
        sink.close()
    return JSONResponse(content=response.model_dump())
