"""Tool handler contract shared by local tools and the dispatcher."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Union

from journalagent.config.settings import settings
from journalagent.core.context import ToolContext
from journalagent.core.transcript import ToolSchema
from journalagent.util.http_client import SharedAsyncClient

if TYPE_CHECKING:
    from journalagent.gateway.client import GatewayClient


@dataclass(slots=True, frozen=True)
class ToolOutput:
    """Structured local tool result; ``inline_image_url`` asks the dispatcher to attach the image."""

    text: str
    inline_image_url: str | None = None
    succeeded: bool = True


LocalHandlerFn = Callable[[dict[str, Any], ToolContext], Awaitable[Union[str, ToolOutput]]]


@dataclass(slots=True, frozen=True)
class LocalTool:
    schema: ToolSchema
    handler: LocalHandlerFn

    @property
    def name(self) -> str:
        return self.schema.name


@dataclass(slots=True, frozen=True)
class LocalHandler:
    fn: LocalHandlerFn


@dataclass(slots=True, frozen=True)
class RemoteHandler:
    gateway: "GatewayClient"


ToolHandler = Union[LocalHandler, RemoteHandler]


tool_http_client = SharedAsyncClient("tools", timeout=lambda: settings.tool_http_timeout_seconds)


def str_arg(args: dict[str, Any], key: str, default: str = "") -> str:
    value = args.get(key)
    return value.strip() if isinstance(value, str) else default


def list_arg(args: dict[str, Any], key: str) -> list[Any] | None:
    value = args.get(key)
    return list(value) if isinstance(value, list) else None


def bool_arg(args: dict[str, Any], key: str, default: bool = False) -> bool:
    value = args.get(key)
    return value if isinstance(value, bool) else default
