"""Per-run runtime context."""

from __future__ import annotations

from dataclasses import dataclass, field
from time import time


@dataclass(slots=True, frozen=True)
class ToolContext:
    """What every local tool receives; scoping to the caller happens inside the tool."""

    caller_identity: str
    scope_identifier: str | None = None


@dataclass(slots=True)
class RunContext:
    request_id: str
    caller_identity: str
    scope_identifier: str | None = None
    api_key: str = ""
    model: str = ""
    started_at: float = field(default_factory=time)
    correction_attempts: int = 0
    recovery_attempts: int = 0
    fallback_reason: str | None = None
    report_items: list[dict] = field(default_factory=list)

    @property
    def tool_context(self) -> ToolContext:
        return ToolContext(caller_identity=self.caller_identity, scope_identifier=self.scope_identifier)

    def add_report(self, item: dict) -> None:
        self.report_items.append(item)
