import asyncio
import json

from journalagent.transport.sse import DONE, TEXT_CHUNK, CollectingSink, SSEEmitter, build_streaming_response, format_sse


def test_format_sse_frames_event_and_json_data():
    frame = format_sse("text_chunk", {"text": "héllo"}).decode("utf-8")
    assert frame == 'event: text_chunk\ndata: {"text": "héllo"}\n\n'


def test_emitter_streams_until_closed_and_closes_once():
    emitter = SSEEmitter("r-1")

    async def run_case():
        await emitter.emit(TEXT_CHUNK, {"text": "a"})
        await emitter.emit(DONE, {"success": True})
        first_close = emitter.close()
        second_close = emitter.close()
        late = await emitter.emit(TEXT_CHUNK, {"text": "late"})
        frames = [frame async for frame in emitter.stream()]
        return first_close, second_close, late, frames

    first_close, second_close, late, frames = asyncio.run(run_case())
    assert (first_close, second_close, late) == (True, False, False)
    assert len(frames) == 2
    assert json.loads(frames[1].decode().split("data: ", 1)[1]) == {"success": True}
    assert emitter.emitted == [TEXT_CHUNK, DONE]


def test_consumer_disconnect_stops_further_emits():
    emitter = SSEEmitter("r-2")

    async def run_case():
        await emitter.emit(TEXT_CHUNK, {"text": "a"})
        stream = emitter.stream()
        await stream.__anext__()
        await stream.aclose()
        return await emitter.emit(TEXT_CHUNK, {"text": "b"})

    assert asyncio.run(run_case()) is False
    assert emitter.disconnected is True


def test_collecting_sink_keeps_events_in_order():
    sink = CollectingSink()

    async def run_case():
        await sink.emit("citation", {"citations": []})
        await sink.emit(DONE, {"success": True})

    asyncio.run(run_case())
    assert [kind for kind, _ in sink.events] == ["citation", DONE]
    assert sink.last(DONE) == {"success": True}
    assert sink.close() is True
    assert sink.close() is False


def test_streaming_response_headers():
    response = build_streaming_response(SSEEmitter("r-3"))
    assert response.media_type == "text/event-stream"
    assert response.headers["cache-control"] == "no-cache"
    assert response.headers["x-accel-buffering"] == "no"
