"""Merged local + remote tool set, cached process-wide with a TTL."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from journalagent.config.agent_rules import load_agent_rules
from journalagent.config.settings import settings
from journalagent.core.errors import DuplicateToolError, JournalAgentError
from journalagent.core.transcript import ToolSchema
from journalagent.core.ttl_cache import TtlRef
from journalagent.gateway.client import GatewayClient
from journalagent.observability.logging import log_event
from journalagent.tools.base import LocalHandler, LocalTool, RemoteHandler, ToolHandler
from journalagent.util.logger import logger


@dataclass(slots=True, frozen=True)
class ToolSet:
    """Schemas sent to the model plus the name -> handler map used to dispatch them."""

    schemas: tuple[ToolSchema, ...] = ()
    handlers: Mapping[str, ToolHandler] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def names(self) -> frozenset[str]:
        return frozenset(schema.name for schema in self.schemas)

    @property
    def remote_names(self) -> frozenset[str]:
        return frozenset(name for name, handler in self.handlers.items() if isinstance(handler, RemoteHandler))

    def restricted_to(self, names: Iterable[str]) -> "ToolSet":
        keep = set(names)
        return ToolSet(
            schemas=tuple(schema for schema in self.schemas if schema.name in keep),
            handlers=MappingProxyType({name: handler for name, handler in self.handlers.items() if name in keep}),
        )

    def __len__(self) -> int:
        return len(self.schemas)


def sanitize_schema(schema: Any, supported_keys: Iterable[str]) -> Any:
    """Recursively keep only the parameter-schema keywords the completion service accepts."""

    if not isinstance(schema, dict):
        return schema
    supported = tuple(supported_keys)
    cleaned: dict[str, Any] = {}
    for key in supported:
        if key not in schema:
            continue
        value = schema[key]
        if key == "properties" and isinstance(value, dict):
            cleaned[key] = {name: sanitize_schema(child, supported) for name, child in value.items()}
        elif key == "items" and isinstance(value, dict):
            cleaned[key] = sanitize_schema(value, supported)
        else:
            cleaned[key] = value
    return cleaned


def remote_tool_schema(raw: dict[str, Any], supported_keys: Iterable[str]) -> ToolSchema:
    input_schema = raw.get("inputSchema") if isinstance(raw.get("inputSchema"), dict) else {}
    parameters: dict[str, Any] = {"type": "object", "properties": input_schema.get("properties") or {}}
    if input_schema.get("required"):
        parameters["required"] = input_schema["required"]
    name = str(raw["name"])
    return ToolSchema(
        name=name,
        description=str(raw.get("description") or f"Remote tool: {name}"),
        parameters=sanitize_schema(parameters, supported_keys),
    )


def merge_tool_sets(
    remote_schemas: list[ToolSchema], local_tools: list[LocalTool], gateway: GatewayClient
) -> ToolSet:
    handlers: dict[str, ToolHandler] = {}
    schemas: list[ToolSchema] = []
    for tool in local_tools:
        if tool.name in handlers:
            raise DuplicateToolError(f"local tool registered twice: {tool.name}")
        handlers[tool.name] = LocalHandler(tool.handler)
    for schema in remote_schemas:
        if schema.name in handlers:
            raise DuplicateToolError(f"remote tool shadows an existing tool: {schema.name}")
        handlers[schema.name] = RemoteHandler(gateway)
        schemas.append(schema)
    schemas.extend(tool.schema for tool in local_tools)
    return ToolSet(schemas=tuple(schemas), handlers=MappingProxyType(handlers))


class ToolRegistry:
    def __init__(
        self,
        gateway: GatewayClient,
        local_tools: list[LocalTool],
        *,
        ttl_seconds: float | None = None,
    ) -> None:
        self._gateway = gateway
        self._local_tools = list(local_tools)
        ttl = settings.tool_cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._cache: TtlRef[ToolSet] = TtlRef(ttl)
        self.refreshes = 0
        self._degraded = False

    def cache_status(self) -> str:
        cached = self._cache.get()
        if cached is None:
            return "empty"
        return f"cached ({len(cached)} tools, age {int(self._cache.age_seconds() or 0)}s)"

    async def get_tools(self) -> ToolSet:
        tool_set = await self._cache.get_or_refresh(self._refresh)
        if tool_set is None:
            raise JournalAgentError("tool registry refresh produced no tool set")
        if self._degraded:
            # local-only fallback is served but not cached; the next request retries discovery
            self._cache.invalidate()
        return tool_set

    async def _refresh(self) -> ToolSet:
        self.refreshes += 1
        rules = load_agent_rules()
        allowlist = set(rules.get("gateway_tool_allowlist") or [])
        supported_keys = rules.get("schema_supported_keys") or ["type", "description", "enum", "properties", "items", "required"]

        discovered = await self._gateway.list_tools()
        self._degraded = discovered is None
        if discovered is None:
            logger.warning("remote tool discovery failed, continuing with local tools only")
            discovered = []
        remote = [remote_tool_schema(raw, supported_keys) for raw in discovered if raw.get("name") in allowlist]
        tool_set = merge_tool_sets(remote, self._local_tools, self._gateway)
        log_event(
            "tool_registry_refreshed",
            discovered=len(discovered),
            remote=len(remote),
            local=len(self._local_tools),
        )
        logger.info("tool registry refreshed remote=%s local=%s", [schema.name for schema in remote], len(self._local_tools))
        return tool_set
