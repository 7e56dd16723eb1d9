"""
Loop guard for the tool-calling conversation.

Stops the loop when the model repeats its previous call verbatim, or when one
tool name would exceed its per-conversation call cap.
"""

from __future__ import annotations

from collections import Counter
from typing import Callable

from journalagent.core.transcript import ToolCall


class LoopGuard:
    """Check a batch BEFORE executing it, record it AFTER.

        reason = guard.check_calls(reply.tool_calls)
        if reason:
            break
        ...execute...
        guard.record_calls(reply.tool_calls)
    """

    def __init__(self, cap_for: Callable[[str], int]) -> None:
        self._cap_for = cap_for
        self._counts: Counter[str] = Counter()
        self._last_key: str | None = None

    def check_calls(self, calls: list[ToolCall]) -> str | None:
        if not calls:
            return None
        previous = self._last_key
        for call in calls:
            key = call.key()
            if key == previous:
                return f"repeated call to {call.name} with identical arguments"
            previous = key

        batch = Counter(call.name for call in calls)
        for name, count in batch.items():
            cap = self._cap_for(name)
            if self._counts[name] + count > cap:
                return f"{name} call cap ({cap}) reached"
        return None

    def record_calls(self, calls: list[ToolCall]) -> None:
        self._counts.update(call.name for call in calls)
        if calls:
            self._last_key = calls[-1].key()
