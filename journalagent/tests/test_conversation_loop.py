import asyncio

from journalagent.agent.loop import ConversationLoop, LoopState
from journalagent.agent.loop_guard import LoopGuard
from journalagent.agent.recovery import EmptyResponseRecovery
from journalagent.core.context import RunContext
from journalagent.core.transcript import Message, ModelReply, ToolCallPart, ToolResultPart, Transcript
from journalagent.tools.base import LocalTool
from journalagent.tools.dispatcher import ToolDispatcher
from journalagent.tools.registry import merge_tool_sets
from journalagent.transport.sse import TEXT_CHUNK, TOOL_CALL, TOOL_RESULT, CollectingSink

from conftest import ScriptedCompletionClient, calls_reply, echo_tool, text_reply


def _counting_tool(name: str, counter: list[str], delay: float = 0.0, fail: bool = False) -> LocalTool:
    base = echo_tool(name)

    async def handler(args, context):
        counter.append(name)
        if delay:
            await asyncio.sleep(delay)
        if fail:
            raise RuntimeError("provider timeout")
        return f"{name} result {args}"

    return LocalTool(base.schema, handler)


def _build(replies, tools, *, max_turns=15, force_first=True, cap=3):
    llm = ScriptedCompletionClient(replies)
    sink = CollectingSink()
    sleeps: list[float] = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    loop = ConversationLoop(
        llm=llm,
        dispatcher=ToolDispatcher(),
        tool_set=merge_tool_sets([], tools, None),
        transcript=Transcript([Message.user_text("How did my week go?")]),
        system_context="system",
        run=RunContext(request_id="r-loop", caller_identity="u-1", api_key="k", model="m"),
        sink=sink,
        guard=LoopGuard(lambda name: cap),
        recovery=EmptyResponseRecovery(
            max_attempts=3,
            base_delay_seconds=0.5,
            safe_tools=["search_web"],
            sleep=fake_sleep,
        ),
        max_turns=max_turns,
        force_first_tool_call=force_first,
    )
    return loop, llm, sink, sleeps


def test_plain_text_answer_takes_exactly_one_call():
    loop, llm, sink, _ = _build([text_reply("All good.")], [echo_tool("search_web")])
    result = asyncio.run(loop.run())
    assert result.state is LoopState.TEXT_FINAL
    assert result.final_text == "All good."
    assert result.llm_calls == 1
    assert loop.states == [LoopState.AWAIT_MODEL, LoopState.TEXT_FINAL]
    assert llm.requests[0].tool_mode == "ANY"
    assert sink.events == [(TEXT_CHUNK, {"text": "All good."})]


def test_images_allow_free_answer_on_first_call():
    loop, llm, _, _ = _build([text_reply("A bull flag.")], [echo_tool("search_web")], force_first=False)
    asyncio.run(loop.run())
    assert llm.requests[0].tool_mode == "AUTO"


def test_single_tool_then_answer_appends_call_and_result_groups():
    executed: list[str] = []
    tools = [_counting_tool("search_web", executed)]
    loop, llm, sink, _ = _build([calls_reply(("search_web", {"query": "cpi"})), text_reply("CPI rose.")], tools)
    result = asyncio.run(loop.run())

    assert result.state is LoopState.TEXT_FINAL
    assert executed == ["search_web"]
    assert LoopState.SINGLE_TOOL in loop.states
    messages = loop.transcript.messages
    assert [message.role for message in messages] == ["user", "model", "user"]
    assert isinstance(messages[1].parts[0], ToolCallPart)
    assert isinstance(messages[2].parts[0], ToolResultPart)
    assert llm.requests[1].tool_mode == "AUTO"
    assert [kind for kind, _ in sink.events][:2] == [TOOL_CALL, TOOL_RESULT]


def test_parallel_calls_one_failing_keep_call_order_in_transcript():
    executed: list[str] = []
    tools = [
        _counting_tool("get_crypto_price", executed, delay=0.02),
        _counting_tool("get_forex_price", executed, fail=True),
    ]
    replies = [
        calls_reply(("get_crypto_price", {"coin_id": "bitcoin"}), ("get_forex_price", {"base": "EUR", "quote": "USD"})),
        text_reply("Bitcoin is up; forex data was unavailable."),
    ]
    loop, _, sink, _ = _build(replies, tools)
    result = asyncio.run(loop.run())

    assert result.state is LoopState.TEXT_FINAL
    assert LoopState.PARALLEL_TOOLS in loop.states
    result_events = [payload["name"] for kind, payload in sink.events if kind == TOOL_RESULT]
    assert result_events == ["get_forex_price", "get_crypto_price"]
    call_turn, result_turn = loop.transcript.messages[1], loop.transcript.messages[2]
    assert [part.name for part in call_turn.parts] == ["get_crypto_price", "get_forex_price"]
    assert [part.name for part in result_turn.parts] == ["get_crypto_price", "get_forex_price"]
    assert [item.succeeded for item in result.tool_results] == [True, False]
    assert result_turn.parts[1].output.startswith("Tool execution error")


def test_immediate_repeat_stops_without_third_attempt():
    executed: list[str] = []
    tools = [_counting_tool("search_notes", executed)]
    same = ("search_notes", {"query": "fomo"})
    loop, llm, _, _ = _build([calls_reply(same), calls_reply(same), calls_reply(same)], tools)
    result = asyncio.run(loop.run())
    assert result.state is LoopState.GUARD_STOPPED
    assert executed == ["search_notes"]
    assert llm.requests and len(llm.requests) == 2
    assert "repeated call" in result.stop_reason


def test_per_tool_cap_stops_loop():
    executed: list[str] = []
    tools = [_counting_tool("search_web", executed)]
    replies = [calls_reply(("search_web", {"query": f"q{i}"})) for i in range(5)]
    loop, _, _, _ = _build(replies, tools, cap=3)
    result = asyncio.run(loop.run())
    assert result.state is LoopState.GUARD_STOPPED
    assert len(executed) == 3
    assert "cap (3)" in result.stop_reason


def test_turn_budget_exhaustion_keeps_text_seen_alongside_calls():
    executed: list[str] = []
    tools = [_counting_tool("search_web", executed)]
    replies = [
        calls_reply(("search_web", {"query": "a"}), text="Looking at the news first."),
        calls_reply(("search_web", {"query": "b"})),
        calls_reply(("search_web", {"query": "c"})),
    ]
    loop, _, _, _ = _build(replies, tools, max_turns=2, cap=10)
    result = asyncio.run(loop.run())
    assert result.state is LoopState.BUDGET_EXHAUSTED
    assert result.turns == 2
    assert result.final_text == "Looking at the news first."
    assert len(executed) == 2


def test_empty_replies_escalate_recovery_with_shrinking_tools():
    tools = [echo_tool("search_web"), echo_tool("generate_chart")]
    loop, llm, _, sleeps = _build([ModelReply(finish_reason="STOP"), ModelReply(), ModelReply(), text_reply("Here it is.")], tools)
    result = asyncio.run(loop.run())

    assert result.state is LoopState.TEXT_FINAL
    assert result.final_text == "Here it is."
    assert result.recovery_attempts == 3
    offered = [{schema.name for schema in request.tools} for request in llm.requests]
    assert offered[0] == {"search_web", "generate_chart"}
    assert offered[1] == offered[0]
    assert offered[2] == {"search_web"}
    assert offered[3] == set()
    assert all(later <= earlier for earlier, later in zip(offered[1:], offered[2:]))
    assert sleeps == [0.5, 1.0, 2.0]
    nudges = [message for message in loop.transcript.messages if "previous reply was empty" in message.text()]
    assert len(nudges) == 1


def test_recovery_exhaustion_ends_with_empty_text():
    loop, llm, _, sleeps = _build([], [echo_tool("search_web")])
    result = asyncio.run(loop.run())
    assert result.state is LoopState.EMPTY_EXHAUSTED
    assert result.final_text == ""
    assert len(llm.requests) == 4
    assert len(sleeps) == 3


def test_correction_turn_is_tool_free_and_sees_prompt():
    loop, llm, _, _ = _build([text_reply("Fixed answer.")], [echo_tool("search_web")])
    revised = asyncio.run(loop.correction_turn("draft with bad tag", "please fix"))
    assert revised == "Fixed answer."
    request = llm.requests[-1]
    assert request.tools == []
    assert request.tool_mode is None
    assert request.messages[-2].text() == "draft with bad tag"
    assert request.messages[-1].text() == "please fix"
