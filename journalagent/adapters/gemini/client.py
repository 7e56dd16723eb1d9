"""Completion client: one call = one turn of the conversation."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Awaitable, Callable, Protocol

from journalagent.adapters.gemini import upstream
from journalagent.adapters.gemini.mapper import build_payload, extract_sse_data, parse_response, read_candidate
from journalagent.config.settings import settings
from journalagent.core.transcript import Message, ModelReply, ToolCall, ToolSchema
from journalagent.util.logger import logger


TextSink = Callable[[str], Awaitable[None]]


@dataclass(slots=True)
class CompletionRequest:
    system_context: str
    messages: list[Message]
    tools: list[ToolSchema] = field(default_factory=list)
    tool_mode: str | None = None
    api_key: str = ""
    model: str = ""
    temperature: float | None = None
    max_tokens: int | None = None


class CompletionClient(Protocol):
    async def complete(self, request: CompletionRequest, on_text: TextSink | None = None) -> ModelReply: ...


class GeminiCompletionClient:
    """Calls ``generateContent``, or the SSE variant when a text sink is supplied."""

    def _payload(self, request: CompletionRequest) -> dict:
        return build_payload(
            system_context=request.system_context,
            messages=request.messages,
            tools=request.tools,
            tool_mode=request.tool_mode,
            temperature=settings.llm_temperature if request.temperature is None else request.temperature,
            max_tokens=request.max_tokens or settings.llm_max_output_tokens,
        )

    async def complete(self, request: CompletionRequest, on_text: TextSink | None = None) -> ModelReply:
        model = request.model or settings.llm_model
        payload = self._payload(request)
        if on_text is None:
            body = await upstream.post_generate(model, payload, request.api_key)
            reply = parse_response(body)
        else:
            reply = await self._complete_streaming(model, payload, request.api_key, on_text)
        logger.info(
            "llm turn done model=%s outcome=%s tool_calls=%s finish_reason=%s text_chars=%s",
            model,
            reply.outcome.value,
            [call.name for call in reply.tool_calls],
            reply.finish_reason,
            len(reply.text),
        )
        return reply

    async def _complete_streaming(self, model: str, payload: dict, api_key: str, on_text: TextSink) -> ModelReply:
        texts: list[str] = []
        calls: list[ToolCall] = []
        finish_reason: str | None = None
        async for line in upstream.stream_generate_lines(model, payload, api_key):
            chunk = extract_sse_data(line)
            if chunk is None:
                continue
            fragments, chunk_calls, chunk_finish = read_candidate(chunk)
            for fragment in fragments:
                if fragment:
                    texts.append(fragment)
                    await on_text(fragment)
            calls.extend(chunk_calls)
            if chunk_finish:
                finish_reason = chunk_finish
        return ModelReply(text="".join(texts), tool_calls=calls, finish_reason=finish_reason)
