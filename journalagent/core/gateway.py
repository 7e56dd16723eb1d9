"""FastAPI app entry."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from journalagent.adapters.gemini.upstream import close_llm_async_client
from journalagent.adapters.http.router import close_orchestrator, get_orchestrator, router as agent_router
from journalagent.config.settings import settings
from journalagent.core.audit import shutdown_audit_worker
from journalagent.core.schema_prewarm_task import SchemaPrewarmTask
from journalagent.gateway.session import gateway_http_client
from journalagent.storage.rest_store import store_http_client
from journalagent.tools.base import tool_http_client
from journalagent.tools.media import image_http_client
from journalagent.util.logger import logger


app = FastAPI(title=settings.app_name)
app.include_router(agent_router, prefix="/v1")
_schema_prewarm_task: SchemaPrewarmTask | None = None


def _too_large_response(detail: str) -> JSONResponse:
    return JSONResponse(
        status_code=413,
        content={"error": {"message": detail, "type": "journalagent_error", "code": "request_too_large"}},
    )


@app.middleware("http")
async def body_limit_middleware(request: Request, call_next):
    limit = settings.max_request_body_bytes
    if limit <= 0 or request.method.upper() not in {"POST", "PUT", "PATCH"}:
        return await call_next(request)

    content_length_header = request.headers.get("content-length", "").strip()
    if content_length_header:
        try:
            content_length = int(content_length_header)
        except ValueError:
            logger.warning("reject invalid content-length path=%s", request.url.path)
            return JSONResponse(
                status_code=400,
                content={"error": {"message": "invalid content-length", "type": "journalagent_error", "code": "invalid_request"}},
            )
        if content_length > limit:
            logger.warning("reject oversized body path=%s size=%s max=%s", request.url.path, content_length, limit)
            return _too_large_response(f"request body exceeds {limit} bytes")
    else:
        body = await request.body()
        if len(body) > limit:
            logger.warning("reject oversized body path=%s size=%s max=%s", request.url.path, len(body), limit)
            return _too_large_response(f"request body exceeds {limit} bytes")
    return await call_next(request)


@app.get("/health")
def health() -> dict:
    logger.info("health check")
    return {"status": "ok"}


@app.on_event("shutdown")
async def shutdown_cleanup() -> None:
    global _schema_prewarm_task
    if _schema_prewarm_task is not None:
        await _schema_prewarm_task.stop()
        _schema_prewarm_task = None
    await close_orchestrator()
    await close_llm_async_client()
    await gateway_http_client.close()
    await tool_http_client.close()
    await image_http_client.close()
    await store_http_client.close()
    shutdown_audit_worker()


@app.on_event("startup")
async def startup_background_tasks() -> None:
    global _schema_prewarm_task
    if settings.enable_schema_prewarm and _schema_prewarm_task is None:
        orchestrator = get_orchestrator()
        _schema_prewarm_task = SchemaPrewarmTask(refresh_func=orchestrator.registry.get_tools)
        await _schema_prewarm_task.start()
