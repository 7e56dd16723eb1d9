"""One request end to end: tools, loop, reference correction, post-processing, events."""

from __future__ import annotations

import asyncio
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Callable

from journalagent.adapters.gemini.client import CompletionClient, GeminiCompletionClient
from journalagent.agent.citations import extract_citations
from journalagent.agent.embedded import EmbeddedDataResolver
from journalagent.agent.formatting import render_html
from journalagent.agent.isolation import ensure_caller_isolation
from journalagent.agent.loop import ConversationLoop, LoopResult, LoopState
from journalagent.agent.loop_guard import LoopGuard
from journalagent.agent.prompt import build_system_prompt
from journalagent.agent.recovery import FALLBACK_MESSAGE, EmptyResponseRecovery
from journalagent.agent.references import strip_references
from journalagent.agent.validator import ReferenceValidator
from journalagent.config.agent_rules import load_agent_rules, tool_call_cap
from journalagent.config.settings import settings
from journalagent.core.audit import write_audit
from journalagent.core.context import RunContext
from journalagent.core.errors import ConfigurationError, IdentityLeakError, JournalAgentError, UpstreamLLMError
from journalagent.core.models import AgentRequest, AgentResponse, ImageAttachment
from journalagent.core.transcript import InlineMediaPart, Message, Part, TextPart, Transcript
from journalagent.gateway.client import GatewayClient
from journalagent.gateway.session import GatewaySessionManager
from journalagent.observability.metrics import emit_counter
from journalagent.storage import create_store
from journalagent.storage.base import EntityStore
from journalagent.tools.dispatcher import ToolDispatcher
from journalagent.tools.local.catalog import build_local_tools
from journalagent.tools.media import ImageFetcher
from journalagent.tools.registry import ToolRegistry
from journalagent.transport.sse import CITATION, DONE, EMBEDDED_DATA, ERROR, EventSink
from journalagent.util.logger import logger


_IMAGE_ONLY_PROMPT = "Please analyse the attached image(s)."
_HISTORY_ROLES = {"user": "user", "assistant": "model", "model": "model"}


def new_request_id() -> str:
    return f"agent-{uuid.uuid4().hex[:16]}"


def error_payload(exc: JournalAgentError) -> dict[str, Any]:
    return {"code": exc.code, "message": str(exc) or exc.code, "status": exc.status_code}


class AgentOrchestrator:
    def __init__(
        self,
        *,
        llm: CompletionClient,
        registry: ToolRegistry,
        store: EntityStore,
        dispatcher: ToolDispatcher | None = None,
        images: ImageFetcher | None = None,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ) -> None:
        self.llm = llm
        self.registry = registry
        self.store = store
        self.images = images or ImageFetcher()
        self.dispatcher = dispatcher or ToolDispatcher(images=self.images)
        self.validator = ReferenceValidator(store)
        self.resolver = EmbeddedDataResolver(store)
        self._sleep = sleep

    async def warmup(self) -> dict[str, Any]:
        tool_set = await self.registry.get_tools()
        return {
            "success": True,
            "message": f"tool registry ready ({len(tool_set)} tools)",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "cache_status": self.registry.cache_status(),
        }

    async def _image_part(self, image: ImageAttachment) -> InlineMediaPart | None:
        if image.data:
            data = image.data.split(",", 1)[1] if image.data.startswith("data:") and "," in image.data else image.data
            return InlineMediaPart(mime_type=image.mime_type, data=data)
        return await self.images.fetch(image.url or "")

    async def build_transcript(self, request: AgentRequest) -> Transcript:
        transcript = Transcript()
        history = request.conversation_history[-settings.max_history_messages :] if settings.max_history_messages > 0 else []
        for item in history:
            if not item.content.strip():
                continue
            transcript.append(Message(role=_HISTORY_ROLES[item.role], parts=[TextPart(item.content)]))

        parts: list[Part] = []
        if request.images:
            fetched = await asyncio.gather(*(self._image_part(image) for image in request.images))
            skipped = sum(1 for part in fetched if part is None)
            if skipped:
                logger.warning("request images skipped count=%s", skipped)
            parts.extend(part for part in fetched if part is not None)
        text = (request.message or "").strip() or _IMAGE_ONLY_PROMPT
        parts.append(TextPart(text))
        transcript.append(Message(role="user", parts=parts))
        return transcript

    async def correct_references(self, loop: ConversationLoop, text: str, run: RunContext) -> str:
        """Bounded self-correction; leftovers are stripped from the text."""

        candidate = text
        for _ in range(max(0, settings.reference_correction_max_attempts)):
            result = await self.validator.validate(candidate, run.caller_identity)
            if result.is_valid:
                return candidate
            run.correction_attempts += 1
            emit_counter("agent_reference_corrections")
            try:
                revised = await loop.correction_turn(candidate, result.correction_prompt or "")
            except UpstreamLLMError as exc:
                logger.warning("reference correction call failed request_id=%s error=%s", run.request_id, exc)
                break
            if revised:
                candidate = revised

        final = await self.validator.validate(candidate, run.caller_identity)
        if final.is_valid:
            return candidate
        logger.info(
            "stripping invalid references request_id=%s invalid=%s after_attempts=%s",
            run.request_id,
            final.invalid_ids,
            run.correction_attempts,
        )
        run.add_report({"stripped_references": final.invalid_ids})
        return strip_references(candidate, final.invalid_ids)

    def _metadata(self, run: RunContext, result: LoopResult) -> dict[str, Any]:
        return {
            "request_id": run.request_id,
            "model": run.model,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "turns": result.turns,
            "llm_calls": result.llm_calls,
            "tool_calls": [
                {"name": item.name, "arguments": item.arguments, "succeeded": item.succeeded} for item in result.tool_results
            ],
            "loop_state": result.state.value,
            "stop_reason": result.stop_reason,
            "correction_attempts": run.correction_attempts,
            "recovery_attempts": run.recovery_attempts,
            "fallback": run.fallback_reason,
            "duration_ms": int((time.time() - run.started_at) * 1000),
        }

    async def run(
        self,
        request: AgentRequest,
        sink: EventSink,
        *,
        request_id: str | None = None,
        stream_text: bool = True,
    ) -> AgentResponse:
        """Run the conversation and emit citation / embedded_data / done.

        Raises ``JournalAgentError`` subclasses; the sink is left open for the caller to close.
        """

        run = RunContext(
            request_id=request_id or new_request_id(),
            caller_identity=request.caller_identity,
            scope_identifier=request.scope_identifier,
            api_key=request.completion_key(),
            model=settings.llm_model,
        )
        try:
            response = await self._run(request, sink, run, stream_text=stream_text)
        except JournalAgentError as exc:
            emit_counter("agent_runs", labels={"outcome": exc.code})
            self._audit(run, outcome=exc.code)
            raise
        emit_counter("agent_runs", labels={"outcome": "success" if response.success else "fallback"})
        self._audit(run, outcome="success" if response.success else "fallback", metadata=response.metadata)
        return response

    async def _run(self, request: AgentRequest, sink: EventSink, run: RunContext, *, stream_text: bool) -> AgentResponse:
        if not run.api_key:
            raise ConfigurationError("no completion-service credential configured")

        tool_set = await self.registry.get_tools()
        transcript = await self.build_transcript(request)
        rules = load_agent_rules()
        loop = ConversationLoop(
            llm=self.llm,
            dispatcher=self.dispatcher,
            tool_set=tool_set,
            transcript=transcript,
            system_context=build_system_prompt(request),
            run=run,
            sink=sink,
            guard=LoopGuard(lambda name: tool_call_cap(rules, name)),
            recovery=EmptyResponseRecovery(
                max_attempts=settings.empty_response_max_attempts,
                base_delay_seconds=settings.empty_response_base_delay_seconds,
                safe_tools=rules.get("recovery_safe_tools") or [],
                sleep=self._sleep,
            ),
            max_turns=settings.max_turns,
            force_first_tool_call=not request.images,
            stream_text=stream_text,
        )
        result = await loop.run()

        if result.final_text:
            final_text = await self.correct_references(loop, result.final_text, run)
            if not final_text:
                run.fallback_reason = "invalid_references"
        else:
            final_text = ""
            run.fallback_reason = "empty_response" if result.state is LoopState.EMPTY_EXHAUSTED else result.state.value
        if run.fallback_reason:
            logger.warning("run ended without an answer request_id=%s reason=%s", run.request_id, run.fallback_reason)
            final_text = FALLBACK_MESSAGE

        citations = extract_citations(result.tool_results)
        embedded = {} if run.fallback_reason else await self.resolver.resolve(final_text, run.caller_identity)

        if settings.enable_identity_scan:
            try:
                ensure_caller_isolation(run.caller_identity, final_text, embedded)
            except IdentityLeakError:
                logger.error("identity scan rejected response request_id=%s caller=%s", run.request_id, run.caller_identity)
                emit_counter("agent_security_rejections")
                raise

        metadata = self._metadata(run, result)
        citation_dicts = [citation.model_dump() for citation in citations]
        if citation_dicts:
            await sink.emit(CITATION, {"citations": citation_dicts})
        if embedded:
            await sink.emit(EMBEDDED_DATA, embedded)
        success = run.fallback_reason is None
        final_html = render_html(final_text, citations)
        await sink.emit(
            DONE,
            {
                "success": success,
                "final_text": final_text,
                "final_html": final_html,
                "citations": citation_dicts,
                "metadata": metadata,
            },
        )
        return AgentResponse(
            success=success,
            final_text=final_text,
            final_html=final_html,
            citations=citations,
            embedded_data=embedded,
            metadata=metadata,
        )

    async def run_streaming(self, request: AgentRequest, sink: EventSink, *, request_id: str) -> None:
        """Background-task entry point: every exit path ends in exactly one ``close``."""

        try:
            await self.run(request, sink, request_id=request_id, stream_text=True)
        except JournalAgentError as exc:
            logger.warning("agent run failed request_id=%s code=%s error=%s", request_id, exc.code, exc)
            await sink.emit(ERROR, error_payload(exc))
        except Exception as exc:
            logger.exception("agent run crashed request_id=%s", request_id)
            await sink.emit(ERROR, {"code": "internal_error", "message": f"internal error: {type(exc).__name__}", "status": 500})
        finally:
            sink.close()

    def _audit(self, run: RunContext, *, outcome: str, metadata: dict[str, Any] | None = None) -> None:
        write_audit(
            {
                "request_id": run.request_id,
                "caller_identity": run.caller_identity,
                "scope_identifier": run.scope_identifier,
                "outcome": outcome,
                "correction_attempts": run.correction_attempts,
                "recovery_attempts": run.recovery_attempts,
                "fallback": run.fallback_reason,
                "metadata": metadata or {},
                "report": run.report_items,
            }
        )

    async def close(self) -> None:
        await self.store.close()


def build_orchestrator() -> AgentOrchestrator:
    store = create_store()
    gateway = GatewayClient(GatewaySessionManager())
    registry = ToolRegistry(gateway, build_local_tools(store))
    return AgentOrchestrator(llm=GeminiCompletionClient(), registry=registry, store=store)
