"""
Conversation loop: alternates model turns and tool execution until the model answers in text.

    AWAIT_MODEL -> TEXT_FINAL
                -> SINGLE_TOOL | PARALLEL_TOOLS -> EXECUTING -> AWAIT_MODEL
                -> (empty reply) recovery -> AWAIT_MODEL | EMPTY_EXHAUSTED
    plus GUARD_STOPPED and BUDGET_EXHAUSTED as early exits.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum

from journalagent.adapters.gemini.client import CompletionClient, CompletionRequest
from journalagent.adapters.gemini.mapper import TOOL_MODE_AUTO, TOOL_MODE_FORCED
from journalagent.agent.loop_guard import LoopGuard
from journalagent.agent.recovery import EmptyResponseRecovery
from journalagent.core.context import RunContext
from journalagent.core.transcript import Message, ModelReply, Part, ToolCall, ToolResult, Transcript, TurnOutcome
from journalagent.observability.logging import log_event
from journalagent.observability.metrics import emit_counter
from journalagent.tools.dispatcher import ToolDispatcher
from journalagent.tools.registry import ToolSet
from journalagent.transport.sse import TEXT_CHUNK, TOOL_CALL, TOOL_RESULT, EventSink
from journalagent.util.logger import logger


_RESULT_PREVIEW_CHARS = 500


class LoopState(str, Enum):
    AWAIT_MODEL = "await_model"
    TEXT_FINAL = "text_final"
    SINGLE_TOOL = "single_tool"
    PARALLEL_TOOLS = "parallel_tools"
    EXECUTING = "executing"
    BUDGET_EXHAUSTED = "budget_exhausted"
    GUARD_STOPPED = "guard_stopped"
    EMPTY_EXHAUSTED = "empty_exhausted"


@dataclass(slots=True)
class LoopResult:
    state: LoopState
    final_text: str
    turns: int
    llm_calls: int
    tool_results: list[ToolResult] = field(default_factory=list)
    stop_reason: str | None = None
    recovery_attempts: int = 0


class ConversationLoop:
    """Owns the transcript and turn counter for exactly one run."""

    def __init__(
        self,
        *,
        llm: CompletionClient,
        dispatcher: ToolDispatcher,
        tool_set: ToolSet,
        transcript: Transcript,
        system_context: str,
        run: RunContext,
        sink: EventSink,
        guard: LoopGuard,
        recovery: EmptyResponseRecovery,
        max_turns: int,
        force_first_tool_call: bool = True,
        stream_text: bool = True,
    ) -> None:
        self._llm = llm
        self._dispatcher = dispatcher
        self._tool_set = tool_set
        self._transcript = transcript
        self._system_context = system_context
        self._run = run
        self._sink = sink
        self._guard = guard
        self._recovery = recovery
        self._max_turns = max(1, int(max_turns))
        self._force_first = force_first_tool_call
        self._stream_text = stream_text

        self.state = LoopState.AWAIT_MODEL
        self.states: list[LoopState] = []
        self.turns = 0
        self.llm_calls = 0
        self.last_text = ""
        self.tool_results: list[ToolResult] = []

    @property
    def transcript(self) -> Transcript:
        return self._transcript

    def _enter(self, state: LoopState) -> None:
        self.state = state
        self.states.append(state)

    async def _forward_text(self, fragment: str) -> None:
        await self._sink.emit(TEXT_CHUNK, {"text": fragment})

    async def _call_model(self, messages, tool_set: ToolSet, tool_mode: str | None) -> ModelReply:
        self.llm_calls += 1
        request = CompletionRequest(
            system_context=self._system_context,
            messages=list(messages),
            tools=list(tool_set.schemas),
            tool_mode=tool_mode if tool_set.schemas else None,
            api_key=self._run.api_key,
            model=self._run.model,
        )
        return await self._llm.complete(request, on_text=self._forward_text if self._stream_text else None)

    def _tool_mode(self) -> str:
        if self._force_first and self.llm_calls == 0:
            return TOOL_MODE_FORCED
        return TOOL_MODE_AUTO

    async def run(self) -> LoopResult:
        tool_set = self._tool_set
        pending_nudge: Message | None = None
        stop_reason: str | None = None

        while True:
            if self.turns >= self._max_turns:
                self._enter(LoopState.BUDGET_EXHAUSTED)
                stop_reason = f"turn budget ({self._max_turns}) exhausted"
                break

            self._enter(LoopState.AWAIT_MODEL)
            self.turns += 1
            mode = self._tool_mode()
            messages = self._transcript.extended(pending_nudge) if pending_nudge else self._transcript.messages
            reply = await self._call_model(messages, tool_set, mode)
            outcome = reply.outcome

            if outcome is TurnOutcome.EMPTY:
                plan = self._recovery.next_plan(tool_set, self.last_text or self._transcript.last_model_text())
                if plan is None:
                    self._enter(LoopState.EMPTY_EXHAUSTED)
                    stop_reason = "empty responses after all recovery attempts"
                    break
                logger.warning(
                    "empty model reply request_id=%s turn=%s recovery_attempt=%s strategy=%s tools=%s delay=%.2fs",
                    self._run.request_id,
                    self.turns,
                    plan.attempt,
                    plan.strategy.value,
                    len(plan.tool_set),
                    plan.delay_seconds,
                )
                emit_counter("agent_empty_recovery", labels={"strategy": plan.strategy.value})
                self._run.recovery_attempts = plan.attempt
                await self._recovery.wait(plan)
                pending_nudge = plan.nudge
                tool_set = plan.tool_set
                continue

            if pending_nudge is not None:
                self._transcript.append(pending_nudge)
                pending_nudge = None
            if reply.text.strip():
                self.last_text = reply.text.strip()

            if outcome is TurnOutcome.TEXT:
                self._enter(LoopState.TEXT_FINAL)
                break

            reason = self._guard.check_calls(reply.tool_calls)
            if reason:
                self._enter(LoopState.GUARD_STOPPED)
                stop_reason = reason
                logger.warning("loop guard stopped run request_id=%s reason=%s", self._run.request_id, reason)
                emit_counter("agent_loop_guard_stops")
                break

            self._enter(LoopState.SINGLE_TOOL if len(reply.tool_calls) == 1 else LoopState.PARALLEL_TOOLS)
            self._enter(LoopState.EXECUTING)
            results = await self._execute(reply.tool_calls, tool_set)
            self._guard.record_calls(reply.tool_calls)

            # 两组原子追加：先全部调用，再全部结果
            result_parts: list[Part] = [part for result in results for part in result.parts()]
            self._transcript.append(reply.to_message())
            self._transcript.append(Message(role="user", parts=result_parts))
            self.tool_results.extend(results)

        log_event(
            "conversation_loop_finished",
            request_id=self._run.request_id,
            state=self.state.value,
            turns=self.turns,
            llm_calls=self.llm_calls,
            tool_calls=len(self.tool_results),
            stop_reason=stop_reason,
        )
        return LoopResult(
            state=self.state,
            final_text=self.last_text,
            turns=self.turns,
            llm_calls=self.llm_calls,
            tool_results=list(self.tool_results),
            stop_reason=stop_reason,
            recovery_attempts=self._recovery.attempts,
        )

    async def _emit_result(self, result: ToolResult) -> None:
        output = result.output or ""
        await self._sink.emit(
            TOOL_RESULT,
            {
                "name": result.name,
                "succeeded": result.succeeded,
                "output": output[:_RESULT_PREVIEW_CHARS],
                "truncated": len(output) > _RESULT_PREVIEW_CHARS,
                "has_image": result.media is not None,
            },
        )

    async def _execute(self, calls: list[ToolCall], tool_set: ToolSet) -> list[ToolResult]:
        context = self._run.tool_context
        for call in calls:
            await self._sink.emit(TOOL_CALL, {"name": call.name, "arguments": call.arguments})

        if len(calls) == 1:
            result = await self._dispatcher.execute(calls[0], tool_set, context)
            await self._emit_result(result)
            return [result]

        async def run_one(index: int, call: ToolCall) -> tuple[int, ToolResult]:
            return index, await self._dispatcher.execute(call, tool_set, context)

        tasks = [asyncio.ensure_future(run_one(index, call)) for index, call in enumerate(calls)]
        ordered: list[ToolResult | None] = [None] * len(calls)
        try:
            for finished in asyncio.as_completed(tasks):
                index, result = await finished
                ordered[index] = result
                await self._emit_result(result)
        except BaseException:
            for task in tasks:
                task.cancel()
            raise
        return [result for result in ordered if result is not None]

    async def correction_turn(self, candidate: str, correction_prompt: str) -> str:
        """One tool-free turn asking the model to rewrite ``candidate``; returns the new text (may be empty)."""

        self._transcript.append(Message.model_text(candidate))
        self._transcript.append(Message.user_text(correction_prompt))
        reply = await self._call_model(self._transcript.messages, ToolSet(), None)
        return reply.text.strip()
