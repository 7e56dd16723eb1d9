"""Outbound event stream: one writer, closed exactly once."""

from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncGenerator, Protocol

from fastapi.responses import StreamingResponse

from journalagent.util.logger import logger


TEXT_CHUNK = "text_chunk"
TOOL_CALL = "tool_call"
TOOL_RESULT = "tool_result"
CITATION = "citation"
EMBEDDED_DATA = "embedded_data"
DONE = "done"
ERROR = "error"


def format_sse(event_type: str, payload: Any) -> bytes:
    data = json.dumps(payload, ensure_ascii=False, default=str)
    return f"event: {event_type}\ndata: {data}\n\n".encode("utf-8")


class EventSink(Protocol):
    async def emit(self, event_type: str, payload: dict[str, Any]) -> bool: ...

    def close(self) -> bool: ...


class SSEEmitter:
    """Queue-backed writer; ``stream()`` is what the HTTP response iterates.

    Once the consumer goes away (or the emitter is closed) further emits are dropped.
    """

    def __init__(self, request_id: str = "") -> None:
        self.request_id = request_id
        self._queue: asyncio.Queue[bytes | None] = asyncio.Queue()
        self._closed = False
        self._disconnected = False
        self.emitted: list[str] = []

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def disconnected(self) -> bool:
        return self._disconnected

    async def emit(self, event_type: str, payload: dict[str, Any]) -> bool:
        if self._closed or self._disconnected:
            return False
        self._queue.put_nowait(format_sse(event_type, payload))
        self.emitted.append(event_type)
        return True

    def close(self) -> bool:
        if self._closed:
            return False
        self._closed = True
        self._queue.put_nowait(None)
        logger.debug("event stream closed request_id=%s events=%s", self.request_id, len(self.emitted))
        return True

    async def stream(self) -> AsyncGenerator[bytes, None]:
        try:
            while True:
                item = await self._queue.get()
                if item is None:
                    break
                yield item
        finally:
            if not self._closed:
                self._disconnected = True
                logger.info("event stream consumer gone request_id=%s", self.request_id)


class CollectingSink:
    """In-memory sink for the non-streaming JSON mode."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def emit(self, event_type: str, payload: dict[str, Any]) -> bool:
        if self._closed:
            return False
        self.events.append((event_type, payload))
        return True

    def close(self) -> bool:
        if self._closed:
            return False
        self._closed = True
        return True

    def last(self, event_type: str) -> dict[str, Any] | None:
        for kind, payload in reversed(self.events):
            if kind == event_type:
                return payload
        return None


def build_streaming_response(emitter: SSEEmitter) -> StreamingResponse:
    return StreamingResponse(
        emitter.stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
