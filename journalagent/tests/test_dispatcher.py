import asyncio
import base64

import httpx

from journalagent.core.context import ToolContext
from journalagent.core.transcript import InlineMediaPart, ToolCall, ToolResultPart
from journalagent.tools.base import LocalTool, ToolOutput
from journalagent.tools.dispatcher import ToolDispatcher
from journalagent.tools.local.images import IMAGE_TOOLS
from journalagent.tools.media import ImageFetcher
from journalagent.tools.registry import merge_tool_sets
from journalagent.util.http_client import SharedAsyncClient

from conftest import echo_tool

CONTEXT = ToolContext(caller_identity="u-1", scope_identifier="cal-1")
PNG = b"\x89PNG\r\n\x1a\nfake"


class StubGateway:
    def __init__(self):
        self.calls = []

    async def call_tool(self, name, arguments):
        self.calls.append((name, arguments))
        return f"remote rows for {arguments['query']}", True


def _fetcher(handler) -> ImageFetcher:
    http = SharedAsyncClient("images-test", timeout=lambda: 5)
    http.install(httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    return ImageFetcher(http=http, max_bytes=1024)


def _image_response(request: httpx.Request) -> httpx.Response:
    if request.url.path.endswith("missing.png"):
        return httpx.Response(404)
    return httpx.Response(200, headers={"content-type": "image/png"}, content=PNG)


def test_local_handler_receives_caller_context():
    seen = []

    async def handler(args, context):
        seen.append(context)
        return "ok"

    tool = LocalTool(echo_tool("whoami").schema, handler)
    tool_set = merge_tool_sets([], [tool], StubGateway())
    result = asyncio.run(ToolDispatcher(images=_fetcher(_image_response)).execute(ToolCall("whoami", {}), tool_set, CONTEXT))
    assert result.output == "ok"
    assert seen == [CONTEXT]


def test_remote_tool_goes_through_gateway():
    gateway = StubGateway()
    schema = echo_tool("execute_sql").schema
    tool_set = merge_tool_sets([schema], [], gateway)
    result = asyncio.run(ToolDispatcher().execute(ToolCall("execute_sql", {"query": "select 1"}), tool_set, CONTEXT))
    assert result.succeeded is True
    assert result.output == "remote rows for select 1"
    assert gateway.calls == [("execute_sql", {"query": "select 1"})]


def test_failing_local_tool_becomes_error_result():
    tool_set = merge_tool_sets([], [echo_tool("boom", fail=True)], StubGateway())
    result = asyncio.run(ToolDispatcher().execute(ToolCall("boom", {}), tool_set, CONTEXT))
    assert result.succeeded is False
    assert result.output == "Tool execution error: boom exploded"


def test_unknown_tool_is_reported_not_forwarded():
    gateway = StubGateway()
    tool_set = merge_tool_sets([], [], gateway)
    result = asyncio.run(ToolDispatcher().execute(ToolCall("drop_tables", {}), tool_set, CONTEXT))
    assert result.succeeded is False
    assert "Unknown tool" in result.output
    assert gateway.calls == []


def test_image_marker_attaches_inline_part_before_result():
    tool_set = merge_tool_sets([], IMAGE_TOOLS, StubGateway())
    call = ToolCall("analyze_image", {"image_url": "https://charts.example.com/eurusd.png", "analysis_focus": "entry"})
    result = asyncio.run(ToolDispatcher(images=_fetcher(_image_response)).execute(call, tool_set, CONTEXT))
    parts = result.parts()
    assert isinstance(parts[0], InlineMediaPart)
    assert parts[0].mime_type == "image/png"
    assert isinstance(parts[1], ToolResultPart)
    assert "Focus on the entry" in parts[1].output


def test_unfetchable_image_keeps_text_with_note():
    tool_set = merge_tool_sets([], IMAGE_TOOLS, StubGateway())
    call = ToolCall("analyze_image", {"image_url": "https://charts.example.com/missing.png"})
    result = asyncio.run(ToolDispatcher(images=_fetcher(_image_response)).execute(call, tool_set, CONTEXT))
    assert result.media is None
    assert "could not be loaded" in result.output
    assert len(result.parts()) == 1


def test_oversized_image_download_stops_at_the_cap():
    sent = []

    async def chunks():
        for _ in range(100):
            sent.append(512)
            yield b"x" * 512

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, headers={"content-type": "image/png"}, content=chunks())

    part = asyncio.run(_fetcher(handler).fetch("https://charts.example.com/huge.png"))
    assert part is None
    assert len(sent) < 10


def test_image_within_cap_is_inlined():
    part = asyncio.run(_fetcher(_image_response).fetch("https://charts.example.com/ok.png"))
    assert part.mime_type == "image/png"
    assert base64.b64decode(part.data) == PNG


def test_structured_output_without_image_passes_through():
    async def handler(args, context):
        return ToolOutput("nothing found", succeeded=False)

    tool_set = merge_tool_sets([], [LocalTool(echo_tool("lookup").schema, handler)], StubGateway())
    result = asyncio.run(ToolDispatcher().execute(ToolCall("lookup", {}), tool_set, CONTEXT))
    assert result.succeeded is False
    assert result.media is None
