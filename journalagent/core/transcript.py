"""Conversation data model: parts, messages, tool schemas, calls and results."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union


@dataclass(slots=True, frozen=True)
class TextPart:
    text: str


@dataclass(slots=True, frozen=True)
class InlineMediaPart:
    mime_type: str
    data: str  # base64


@dataclass(slots=True, frozen=True)
class ToolCallPart:
    name: str
    arguments: dict[str, Any]
    signature: str | None = None


@dataclass(slots=True, frozen=True)
class ToolResultPart:
    name: str
    output: str


Part = Union[TextPart, InlineMediaPart, ToolCallPart, ToolResultPart]


@dataclass(slots=True)
class Message:
    role: str  # user | model
    parts: list[Part]

    @classmethod
    def user_text(cls, text: str) -> "Message":
        return cls(role="user", parts=[TextPart(text)])

    @classmethod
    def model_text(cls, text: str) -> "Message":
        return cls(role="model", parts=[TextPart(text)])

    def text(self) -> str:
        return "".join(part.text for part in self.parts if isinstance(part, TextPart))


class Transcript:
    """Append-only message list owned by one conversation run."""

    def __init__(self, messages: list[Message] | None = None) -> None:
        self._messages: list[Message] = list(messages or [])

    def append(self, message: Message) -> None:
        self._messages.append(message)

    def extended(self, *extra: Message) -> list[Message]:
        """Snapshot plus extra messages, without touching the transcript."""

        return [*self._messages, *extra]

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    def last_model_text(self) -> str:
        for message in reversed(self._messages):
            if message.role == "model":
                text = message.text().strip()
                if text:
                    return text
        return ""

    def __len__(self) -> int:
        return len(self._messages)


@dataclass(slots=True, frozen=True)
class ToolSchema:
    name: str
    description: str
    parameters: dict[str, Any]

    def to_declaration(self) -> dict[str, Any]:
        return {"name": self.name, "description": self.description, "parameters": self.parameters}


@dataclass(slots=True, frozen=True)
class ToolCall:
    name: str
    arguments: dict[str, Any]
    signature: str | None = None

    def key(self) -> str:
        return make_call_key(self.name, self.arguments)


def make_call_key(name: str, arguments: dict[str, Any]) -> str:
    return f"{name}:{json.dumps(arguments or {}, sort_keys=True, default=str)}"


@dataclass(slots=True)
class ToolResult:
    name: str
    arguments: dict[str, Any]
    output: str
    succeeded: bool = True
    media: InlineMediaPart | None = None

    def parts(self) -> list[Part]:
        """Image (when present) goes before the textual result."""

        result_part = ToolResultPart(name=self.name, output=self.output)
        if self.media is not None:
            return [self.media, result_part]
        return [result_part]


class TurnOutcome(str, Enum):
    TEXT = "text"
    TOOL_CALLS = "tool_calls"
    TEXT_AND_TOOL_CALLS = "text_and_tool_calls"
    EMPTY = "empty"


@dataclass(slots=True)
class ModelReply:
    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    finish_reason: str | None = None

    @property
    def outcome(self) -> TurnOutcome:
        has_text = bool(self.text.strip())
        if self.tool_calls and has_text:
            return TurnOutcome.TEXT_AND_TOOL_CALLS
        if self.tool_calls:
            return TurnOutcome.TOOL_CALLS
        if has_text:
            return TurnOutcome.TEXT
        return TurnOutcome.EMPTY

    def to_message(self) -> Message:
        parts: list[Part] = []
        if self.text.strip():
            parts.append(TextPart(self.text))
        parts.extend(ToolCallPart(call.name, call.arguments, call.signature) for call in self.tool_calls)
        return Message(role="model", parts=parts)
