from __future__ import annotations

from typing import Any

import pytest

from journalagent.adapters.gemini.client import CompletionRequest
from journalagent.agent.orchestrator import AgentOrchestrator
from journalagent.config.settings import settings
from journalagent.core.transcript import ModelReply, ToolCall, ToolSchema
from journalagent.gateway.client import GatewayClient
from journalagent.gateway.session import GatewaySessionManager
from journalagent.storage.memory_store import MemoryEntityStore
from journalagent.tools.base import LocalTool, ToolOutput
from journalagent.tools.registry import ToolRegistry


class ScriptedCompletionClient:
    """Returns the scripted replies in order; an empty reply once the script runs out."""

    def __init__(self, replies: list[ModelReply | Exception] | None = None) -> None:
        self.replies = list(replies or [])
        self.requests: list[CompletionRequest] = []

    async def complete(self, request: CompletionRequest, on_text=None) -> ModelReply:
        self.requests.append(request)
        if not self.replies:
            return ModelReply()
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if on_text is not None and reply.text:
            await on_text(reply.text)
        return reply


def text_reply(text: str) -> ModelReply:
    return ModelReply(text=text, finish_reason="STOP")


def calls_reply(*calls: tuple[str, dict[str, Any]], text: str = "") -> ModelReply:
    return ModelReply(text=text, tool_calls=[ToolCall(name, args) for name, args in calls], finish_reason="STOP")


def echo_tool(name: str, output: str | None = None, *, fail: bool = False) -> LocalTool:
    schema = ToolSchema(name=name, description=f"{name} test tool", parameters={"type": "object", "properties": {}})

    async def handler(args: dict[str, Any], context) -> str | ToolOutput:
        if fail:
            raise RuntimeError(f"{name} exploded")
        return output if output is not None else f"{name} ok {sorted(args.items())}"

    return LocalTool(schema=schema, handler=handler)


@pytest.fixture(autouse=True)
def _test_settings(monkeypatch):
    monkeypatch.setattr(settings, "audit_log_path", "")
    monkeypatch.setattr(settings, "gateway_url", "")
    monkeypatch.setattr(settings, "llm_api_key", "server-key")
    monkeypatch.setattr(settings, "empty_response_base_delay_seconds", 0.0)
    monkeypatch.setattr(settings, "store_backend", "memory")


@pytest.fixture
def store() -> MemoryEntityStore:
    return MemoryEntityStore(
        {
            "trades": [
                {"id": "trade-1", "user_id": "u-1", "symbol": "EURUSD", "pnl": 120.5},
                {"id": "trade-2", "user_id": "u-1", "symbol": "BTCUSD", "pnl": -40.0},
                {"id": "trade-9", "user_id": "u-2", "symbol": "GBPUSD", "pnl": 10.0},
            ],
            "economic_events": [
                {"id": "evt-1", "name": "Non-Farm Payrolls", "currency": "USD"},
            ],
            "notes": [
                {
                    "id": "note-1",
                    "user_id": "u-1",
                    "title": "Plan",
                    "content": "Trade the London open",
                    "tags": ["GAME_PLAN"],
                    "by_assistant": False,
                    "is_archived": False,
                },
            ],
        }
    )


@pytest.fixture
def make_orchestrator(store):
    sleeps: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    def factory(replies: list[ModelReply | Exception], tools: list[LocalTool] | None = None):
        llm = ScriptedCompletionClient(replies)
        registry = ToolRegistry(GatewayClient(GatewaySessionManager()), tools or [])
        orchestrator = AgentOrchestrator(llm=llm, registry=registry, store=store, sleep=fake_sleep)
        orchestrator.sleeps = sleeps
        return orchestrator, llm

    return factory
