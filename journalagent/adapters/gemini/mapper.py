"""Transcript <-> Gemini wire format."""

from __future__ import annotations

import json
from typing import Any

from journalagent.core.transcript import (
    InlineMediaPart,
    Message,
    ModelReply,
    Part,
    TextPart,
    ToolCall,
    ToolCallPart,
    ToolResultPart,
    ToolSchema,
)


TOOL_MODE_FORCED = "ANY"
TOOL_MODE_AUTO = "AUTO"


def part_to_wire(part: Part) -> dict[str, Any]:
    if isinstance(part, TextPart):
        return {"text": part.text}
    if isinstance(part, InlineMediaPart):
        return {"inlineData": {"mimeType": part.mime_type, "data": part.data}}
    if isinstance(part, ToolCallPart):
        wire: dict[str, Any] = {"functionCall": {"name": part.name, "args": part.arguments}}
        if part.signature:
            wire["thoughtSignature"] = part.signature
        return wire
    if isinstance(part, ToolResultPart):
        return {"functionResponse": {"name": part.name, "response": {"result": part.output}}}
    raise TypeError(f"unsupported part type: {type(part).__name__}")


def messages_to_contents(messages: list[Message] | tuple[Message, ...]) -> list[dict[str, Any]]:
    contents: list[dict[str, Any]] = []
    for message in messages:
        if not message.parts:
            continue
        role = "model" if message.role == "model" else "user"
        contents.append({"role": role, "parts": [part_to_wire(part) for part in message.parts]})
    return contents


def build_payload(
    *,
    system_context: str,
    messages: list[Message] | tuple[Message, ...],
    tools: list[ToolSchema] | tuple[ToolSchema, ...],
    tool_mode: str | None,
    temperature: float,
    max_tokens: int,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "contents": messages_to_contents(messages),
        "generationConfig": {"temperature": temperature, "maxOutputTokens": max_tokens},
    }
    if system_context:
        payload["systemInstruction"] = {"parts": [{"text": system_context}]}
    if tools:
        payload["tools"] = [{"functionDeclarations": [schema.to_declaration() for schema in tools]}]
        payload["toolConfig"] = {"functionCallingConfig": {"mode": tool_mode or TOOL_MODE_AUTO}}
    return payload


def _coerce_args(raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str) and raw.strip():
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


def read_candidate(chunk: dict[str, Any]) -> tuple[list[str], list[ToolCall], str | None]:
    """Text fragments, tool calls and finish reason carried by one response (or stream chunk)."""

    candidates = chunk.get("candidates") or []
    if not candidates or not isinstance(candidates[0], dict):
        return [], [], None
    candidate = candidates[0]
    finish_reason = candidate.get("finishReason")
    parts = (candidate.get("content") or {}).get("parts") or []
    texts: list[str] = []
    calls: list[ToolCall] = []
    for part in parts:
        if not isinstance(part, dict) or part.get("thought"):
            continue
        if isinstance(part.get("text"), str):
            texts.append(part["text"])
        function_call = part.get("functionCall")
        if isinstance(function_call, dict) and function_call.get("name"):
            calls.append(
                ToolCall(
                    name=str(function_call["name"]),
                    arguments=_coerce_args(function_call.get("args")),
                    signature=part.get("thoughtSignature"),
                )
            )
    return texts, calls, finish_reason


def parse_response(body: dict[str, Any]) -> ModelReply:
    texts, calls, finish_reason = read_candidate(body)
    return ModelReply(text="".join(texts), tool_calls=calls, finish_reason=finish_reason)


def extract_sse_data(line: str) -> dict[str, Any] | None:
    stripped = line.strip()
    if not stripped.startswith("data:"):
        return None
    data = stripped[5:].strip()
    if not data or data == "[DONE]":
        return None
    try:
        parsed = json.loads(data)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None
