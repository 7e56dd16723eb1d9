"""System context for one conversation run."""

from __future__ import annotations

import json
from datetime import datetime, timezone

from journalagent.core.models import AgentRequest


_BASE = """You are a trading journal assistant. You help one trader understand their own trades, notes and the economic calendar.

TOOLS:
- Always gather data with the available tools before answering questions about trades, notes, prices or news.
- Query only this trader's data. Never reveal or reference another user's identifiers.
- When several independent lookups are needed, request them in the same turn.

REFERENCES:
- Mention a trade as <trade-ref id="TRADE_ID"/>, an economic event as <event-ref id="EVENT_ID"/> and a note as <note-ref id="NOTE_ID"/>.
- Use ONLY ids that appeared in tool results during this conversation. Never invent an id.
- If you have no id for something, describe it in plain text without a tag.

STYLE:
- Be concise and concrete. Use numbers from the data.
- Do not describe what you are about to do; do it, then answer."""


def build_system_prompt(request: AgentRequest, *, now: datetime | None = None) -> str:
    current = now or datetime.now(timezone.utc)
    lines = [
        _BASE,
        "",
        "CONTEXT:",
        f"- Current time (UTC): {current.strftime('%Y-%m-%d %H:%M')}",
        f"- Trader id: {request.caller_identity}",
    ]
    if request.scope_identifier:
        lines.append(f"- Journal/calendar id: {request.scope_identifier}")
    if request.focused_entity_id:
        lines.append(
            f'- The trader is looking at trade {request.focused_entity_id}; '
            f'refer to it as <trade-ref id="{request.focused_entity_id}"/> when relevant.'
        )
    if request.scope_context:
        lines.append("- Journal settings: " + json.dumps(request.scope_context, ensure_ascii=False, default=str)[:2000])
    if request.images:
        lines.append(f"- The trader attached {len(request.images)} image(s); analyse them directly.")
    return "\n".join(lines)
