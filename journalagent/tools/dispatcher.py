"""Routes one tool call to its local handler or the remote gateway."""

from __future__ import annotations

from journalagent.core.context import ToolContext
from journalagent.core.transcript import ToolCall, ToolResult
from journalagent.observability.metrics import emit_counter
from journalagent.tools.base import LocalHandler, RemoteHandler, ToolOutput
from journalagent.tools.media import ImageFetcher
from journalagent.tools.registry import ToolSet
from journalagent.util.logger import logger


class ToolDispatcher:
    def __init__(self, *, images: ImageFetcher | None = None) -> None:
        self._images = images or ImageFetcher()

    async def execute(self, call: ToolCall, tool_set: ToolSet, context: ToolContext) -> ToolResult:
        handler = tool_set.handlers.get(call.name)
        if isinstance(handler, LocalHandler):
            result = await self._run_local(call, handler, context)
        elif isinstance(handler, RemoteHandler):
            output, succeeded = await handler.gateway.call_tool(call.name, call.arguments)
            result = ToolResult(name=call.name, arguments=call.arguments, output=output, succeeded=succeeded)
        else:
            logger.warning("model requested unknown tool name=%s", call.name)
            result = ToolResult(
                name=call.name,
                arguments=call.arguments,
                output=f"Unknown tool: {call.name}. Use one of the declared tools.",
                succeeded=False,
            )
        emit_counter("agent_tool_calls", labels={"tool": call.name, "succeeded": result.succeeded})
        return result

    async def _run_local(self, call: ToolCall, handler: LocalHandler, context: ToolContext) -> ToolResult:
        try:
            raw = await handler.fn(call.arguments, context)
        except Exception as exc:
            logger.warning("local tool failed name=%s error=%s", call.name, exc, exc_info=True)
            return ToolResult(
                name=call.name,
                arguments=call.arguments,
                output=f"Tool execution error: {str(exc) or type(exc).__name__}",
                succeeded=False,
            )
        output = raw if isinstance(raw, ToolOutput) else ToolOutput(text=str(raw))
        result = ToolResult(name=call.name, arguments=call.arguments, output=output.text, succeeded=output.succeeded)
        if output.inline_image_url:
            result.media = await self._images.fetch(output.inline_image_url)
            if result.media is None:
                result.output = (
                    f"{output.text}\n\nNote: the image could not be loaded, so only this text description is available."
                )
        return result
