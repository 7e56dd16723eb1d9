import asyncio

import pytest

from journalagent.core.errors import DuplicateToolError, JournalAgentError
from journalagent.core.ttl_cache import TtlRef
from journalagent.tools.base import LocalHandler, RemoteHandler
from journalagent.tools.registry import ToolRegistry, ToolSet, sanitize_schema

from conftest import echo_tool


class StubGateway:
    def __init__(self, tools):
        self.tools = tools
        self.list_calls = 0

    async def list_tools(self):
        self.list_calls += 1
        return self.tools

    async def call_tool(self, name, arguments):
        return f"remote {name}", True


REMOTE_TOOLS = [
    {
        "name": "execute_sql",
        "description": "Run a read-only query",
        "inputSchema": {
            "type": "object",
            "$schema": "http://json-schema.org/draft-07/schema#",
            "additionalProperties": False,
            "properties": {
                "query": {"type": "string", "description": "SQL", "minLength": 1},
                "params": {"type": "array", "items": {"type": "string", "format": "uuid"}},
            },
            "required": ["query"],
        },
    },
    {"name": "apply_migration", "description": "Schema change", "inputSchema": {"type": "object"}},
    {"name": "list_tables", "inputSchema": {"type": "object", "properties": {}}},
]


def test_ttl_ref_expires_and_refreshes_once():
    now = [100.0]
    ref: TtlRef[str] = TtlRef(300, clock=lambda: now[0])
    loads = []

    async def loader():
        loads.append(now[0])
        await asyncio.sleep(0)
        return f"value-{len(loads)}"

    async def run_case():
        first = await asyncio.gather(*(ref.get_or_refresh(loader) for _ in range(5)))
        now[0] += 299
        cached = await ref.get_or_refresh(loader)
        now[0] += 1
        refreshed = await ref.get_or_refresh(loader)
        return first, cached, refreshed

    first, cached, refreshed = asyncio.run(run_case())
    assert first == ["value-1"] * 5
    assert cached == "value-1"
    assert refreshed == "value-2"
    assert len(loads) == 2


def test_ttl_ref_invalidate_if_only_clears_the_matching_value():
    ref: TtlRef[str] = TtlRef(300)
    ref.set("new")
    assert ref.invalidate_if("old") is False
    assert ref.get() == "new"
    assert ref.invalidate_if("new") is True
    assert ref.get() is None
    assert ref.invalidate_if("new") is False


def test_registry_filters_to_allowlist_and_sanitizes():
    gateway = StubGateway(REMOTE_TOOLS)
    registry = ToolRegistry(gateway, [echo_tool("search_web")], ttl_seconds=300)
    tool_set = asyncio.run(registry.get_tools())

    assert [schema.name for schema in tool_set.schemas] == ["execute_sql", "list_tables", "search_web"]
    assert isinstance(tool_set.handlers["execute_sql"], RemoteHandler)
    assert isinstance(tool_set.handlers["search_web"], LocalHandler)
    assert "apply_migration" not in tool_set.handlers
    params = tool_set.schemas[0].parameters
    assert params == {
        "type": "object",
        "properties": {
            "query": {"type": "string", "description": "SQL"},
            "params": {"type": "array", "items": {"type": "string"}},
        },
        "required": ["query"],
    }


def test_registry_serves_cache_within_ttl():
    gateway = StubGateway(REMOTE_TOOLS)
    registry = ToolRegistry(gateway, [], ttl_seconds=300)

    async def run_case():
        await registry.get_tools()
        await registry.get_tools()

    asyncio.run(run_case())
    assert gateway.list_calls == 1
    assert registry.refreshes == 1
    assert registry.cache_status().startswith("cached (2 tools")


def test_failed_discovery_serves_local_tools_without_caching():
    gateway = StubGateway(None)
    registry = ToolRegistry(gateway, [echo_tool("search_web")], ttl_seconds=300)

    async def run_case():
        first = await registry.get_tools()
        gateway.tools = REMOTE_TOOLS
        second = await registry.get_tools()
        return first, second

    first, second = asyncio.run(run_case())
    assert first.names == frozenset({"search_web"})
    assert "execute_sql" in second.names
    assert gateway.list_calls == 2


def test_remote_tool_shadowing_local_name_is_rejected():
    gateway = StubGateway([{"name": "execute_sql", "inputSchema": {"type": "object"}}])
    registry = ToolRegistry(gateway, [echo_tool("execute_sql")], ttl_seconds=300)
    with pytest.raises(DuplicateToolError):
        asyncio.run(registry.get_tools())


def test_refresh_without_a_tool_set_raises(monkeypatch):
    registry = ToolRegistry(StubGateway([]), [echo_tool("search_web")], ttl_seconds=300)

    async def no_tool_set():
        return None

    monkeypatch.setattr(registry, "_refresh", no_tool_set)
    with pytest.raises(JournalAgentError):
        asyncio.run(registry.get_tools())


def test_restricted_tool_set_drops_handlers_and_schemas():
    gateway = StubGateway(REMOTE_TOOLS)
    registry = ToolRegistry(gateway, [echo_tool("search_web"), echo_tool("search_notes")], ttl_seconds=300)
    tool_set = asyncio.run(registry.get_tools())
    reduced = tool_set.restricted_to({"search_web", "execute_sql"} - tool_set.remote_names)
    assert reduced.names == frozenset({"search_web"})
    assert set(reduced.handlers) == {"search_web"}
    assert len(ToolSet()) == 0


def test_sanitize_schema_keeps_only_supported_keys_recursively():
    schema = {
        "type": "object",
        "title": "Args",
        "properties": {"nested": {"type": "object", "default": {}, "properties": {"x": {"type": "integer", "maximum": 3}}}},
    }
    cleaned = sanitize_schema(schema, ["type", "properties"])
    assert cleaned == {"type": "object", "properties": {"nested": {"type": "object", "properties": {"x": {"type": "integer"}}}}}
