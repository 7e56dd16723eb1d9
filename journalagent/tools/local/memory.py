"""Sectioned long-term memory note that grows by merging new insights."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any

from journalagent.core.context import ToolContext
from journalagent.core.errors import StoreError
from journalagent.core.transcript import ToolSchema
from journalagent.storage.base import EntityStore
from journalagent.tools.base import LocalTool, ToolOutput, bool_arg, list_arg, str_arg
from journalagent.tools.local.notes import MEMORY_TAG, NOTES_TABLE
from journalagent.util.logger import logger


MEMORY_SECTIONS = (
    "TRADER_PROFILE",
    "PERFORMANCE_PATTERNS",
    "STRATEGY_PREFERENCES",
    "PSYCHOLOGICAL_PATTERNS",
    "LESSONS_LEARNED",
    "ACTIVE_FOCUS",
)
REPLACEABLE_SECTION = "ACTIVE_FOCUS"
EMPTY_PLACEHOLDER = "(No data yet)"
MEMORY_SOFT_LIMIT_CHARS = 8000
DUPLICATE_THRESHOLD = 0.8

_SECTION_HEADER = re.compile(r"^## (" + "|".join(MEMORY_SECTIONS) + r")\s*$", re.MULTILINE)
_DATE_TAG = re.compile(r"\[\d{4}-\d{2}\]")
_CONFIDENCE_TAG = re.compile(r"\[(?:high|med|low)\]", re.IGNORECASE)

UPDATE_MEMORY = ToolSchema(
    name="update_memory",
    description=(
        "Add insights to your persistent memory about this trader. New bullets are MERGED into the "
        "section; only ACTIVE_FOCUS may be replaced. Format each insight as "
        '"[Pattern/Rule]: [Evidence] [Confidence: High/Med/Low] [YYYY-MM]".'
    ),
    parameters={
        "type": "object",
        "properties": {
            "section": {"type": "string", "enum": list(MEMORY_SECTIONS), "description": "Section to update"},
            "new_insights": {
                "type": "array",
                "items": {"type": "string"},
                "description": "New bullet points to add to the section",
            },
            "replace_section": {
                "type": "boolean",
                "description": "Replace the whole section. Only honoured for ACTIVE_FOCUS.",
            },
        },
        "required": ["section", "new_insights"],
    },
)


def parse_memory(content: str) -> dict[str, list[str]]:
    sections: dict[str, list[str]] = {name: [] for name in MEMORY_SECTIONS}
    if not content or not content.strip():
        return sections
    pieces = _SECTION_HEADER.split(content)
    # pieces = [preamble, NAME, body, NAME, body, ...]
    for index in range(1, len(pieces), 2):
        body = pieces[index + 1] if index + 1 < len(pieces) else ""
        bullets = [
            line.strip()[2:].strip()
            for line in body.splitlines()
            if line.strip().startswith("- ")
        ]
        sections[pieces[index]] = [bullet for bullet in bullets if bullet and bullet != EMPTY_PLACEHOLDER]
    if len(content) > 50 and not any(sections.values()):
        logger.warning("memory note parsed without any bullets chars=%s", len(content))
    return sections


def render_memory(sections: dict[str, list[str]]) -> str:
    blocks = []
    for name in MEMORY_SECTIONS:
        items = sections.get(name) or []
        body = "\n".join(f"- {item}" for item in items) if items else f"- {EMPTY_PLACEHOLDER}"
        blocks.append(f"## {name}\n{body}\n")
    return "\n".join(blocks).strip()


def _normalized_words(insight: str) -> set[str]:
    text = _CONFIDENCE_TAG.sub("", _DATE_TAG.sub("", insight.lower())).strip()
    return set(text.split())


def deduplicate_insights(insights: list[str]) -> list[str]:
    """Drop insights whose word set overlaps an earlier one by more than the threshold (Jaccard)."""

    kept: list[str] = []
    seen: list[set[str]] = []
    for insight in insights:
        words = _normalized_words(insight)
        duplicate = False
        for previous in seen:
            union = words | previous
            if union and len(words & previous) / len(union) > DUPLICATE_THRESHOLD:
                duplicate = True
                break
        if not duplicate:
            seen.append(words)
            kept.append(insight)
    return kept


def merge_section(existing: list[str], new_insights: list[str], *, section: str, replace: bool) -> list[str]:
    if replace and section == REPLACEABLE_SECTION:
        return list(new_insights)
    if replace:
        logger.warning("memory replace requested for %s, merging instead", section)
    return deduplicate_insights([*existing, *new_insights])


class MemoryTool:
    def __init__(self, store: EntityStore) -> None:
        self._store = store

    async def update_memory(self, args: dict[str, Any], context: ToolContext) -> ToolOutput:
        section = str_arg(args, "section")
        if section not in MEMORY_SECTIONS:
            return ToolOutput(f"Unknown memory section: {section or '<empty>'}", succeeded=False)
        new_insights = [str(item).strip() for item in (list_arg(args, "new_insights") or []) if str(item).strip()]
        if not new_insights:
            return ToolOutput("new_insights must contain at least one insight.", succeeded=False)
        replace = bool_arg(args, "replace_section")

        eq: dict[str, Any] = {"user_id": context.caller_identity}
        if context.scope_identifier:
            eq["calendar_id"] = context.scope_identifier
        now = datetime.now(tz=timezone.utc).isoformat()
        try:
            rows = await self._store.select(
                NOTES_TABLE, columns=["id", "content"], eq=eq, contains=("tags", [MEMORY_TAG]), limit=1
            )
            if not rows:
                sections = {name: [] for name in MEMORY_SECTIONS}
                sections[section] = deduplicate_insights(new_insights)
                await self._store.insert(
                    NOTES_TABLE,
                    {
                        "user_id": context.caller_identity,
                        "calendar_id": context.scope_identifier,
                        "title": "Memory",
                        "content": render_memory(sections),
                        "tags": [MEMORY_TAG],
                        "by_assistant": True,
                        "is_archived": False,
                        "is_pinned": True,
                        "created_at": now,
                        "updated_at": now,
                    },
                )
                return ToolOutput(f"Memory initialized with {len(sections[section])} insight(s) in {section}.")

            sections = parse_memory(str(rows[0].get("content") or ""))
            before = len(sections[section])
            sections[section] = merge_section(sections[section], new_insights, section=section, replace=replace)
            content = render_memory(sections)
            if len(content) > MEMORY_SOFT_LIMIT_CHARS:
                logger.warning("memory note above soft limit chars=%s", len(content))
            await self._store.update(NOTES_TABLE, {"id": rows[0]["id"]}, {"content": content, "updated_at": now})
        except StoreError as exc:
            return ToolOutput(f"Failed to update memory: {exc}", succeeded=False)

        total = len(sections[section])
        if replace and section == REPLACEABLE_SECTION:
            return ToolOutput(f"Memory updated: Replaced {section} with {total} insight(s).")
        return ToolOutput(f"Memory updated: Added {total - before} insight(s) in {section}. Total: {total} insights in section.")

    def tools(self) -> list[LocalTool]:
        return [LocalTool(UPDATE_MEMORY, self.update_memory)]
