"""Caller-scoped note management and the per-caller tag glossary."""

from __future__ import annotations

import random
from datetime import datetime, timezone
from typing import Any

from journalagent.core.context import ToolContext
from journalagent.core.errors import StoreError
from journalagent.core.transcript import ToolSchema
from journalagent.storage.base import EntityStore, Row
from journalagent.tools.base import LocalTool, ToolOutput, bool_arg, list_arg, str_arg
from journalagent.util.logger import logger


NOTES_TABLE = "notes"
TAG_DEFINITIONS_TABLE = "tag_definitions"
MEMORY_TAG = "AGENT_MEMORY"
NOTE_TAGS = ["STRATEGY", "GAME_PLAN", "INSIGHT", "LESSON_LEARNED", "RISK_MANAGEMENT", "PSYCHOLOGY", "GENERAL"]
WEEKDAYS = ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]
ASSISTANT_COLORS = [
    "red", "pink", "purple", "deepPurple", "indigo", "blue", "lightBlue", "cyan", "teal", "green",
    "lightGreen", "lime", "yellow", "amber", "orange", "deepOrange", "brown", "grey", "blueGrey",
]
SEARCH_RESULT_LIMIT = 20
NOTE_PREVIEW_CHARS = 500

_REMINDER_PROPERTIES: dict[str, Any] = {
    "reminder_type": {"type": "string", "enum": ["none", "once", "weekly"], "description": "Reminder type"},
    "reminder_date": {"type": "string", "description": "ISO date (YYYY-MM-DD) for a one-time reminder"},
    "reminder_days": {
        "type": "array",
        "items": {"type": "string", "enum": WEEKDAYS},
        "description": "Weekdays for a weekly reminder",
    },
}
_TAGS_PROPERTY = {"type": "array", "items": {"type": "string"}, "description": f"Tags. Available: {', '.join(NOTE_TAGS)}"}

CREATE_NOTE = ToolSchema(
    name="create_note",
    description=(
        "Create a note in the user's trading calendar (strategies, insights, lessons, game plans). "
        f"Cannot create {MEMORY_TAG} notes; use update_memory for memory."
    ),
    parameters={
        "type": "object",
        "properties": {
            "title": {"type": "string", "description": "Concise note title"},
            "content": {"type": "string", "description": "Plain text content, no HTML"},
            "tags": _TAGS_PROPERTY,
            "color": {"type": "string", "description": "Optional background color name"},
            **_REMINDER_PROPERTIES,
        },
        "required": ["title", "content"],
    },
)

UPDATE_NOTE = ToolSchema(
    name="update_note",
    description=f"Update a note the assistant created earlier. {MEMORY_TAG} notes are managed by update_memory only.",
    parameters={
        "type": "object",
        "properties": {
            "note_id": {"type": "string", "description": "ID of the note to update"},
            "title": {"type": "string", "description": "New title, only when changing"},
            "content": {"type": "string", "description": "New plain text content, only when changing"},
            "tags": _TAGS_PROPERTY,
            **_REMINDER_PROPERTIES,
        },
        "required": ["note_id"],
    },
)

DELETE_NOTE = ToolSchema(
    name="delete_note",
    description="Delete a note the assistant created earlier.",
    parameters={
        "type": "object",
        "properties": {"note_id": {"type": "string", "description": "ID of the note to delete"}},
        "required": ["note_id"],
    },
)

SEARCH_NOTES = ToolSchema(
    name="search_notes",
    description=(
        "Search the user's notes by text and/or tags (notes must carry ALL given tags). "
        f'Search with tags ["{MEMORY_TAG}"] at the start of a session to load persistent memory.'
    ),
    parameters={
        "type": "object",
        "properties": {
            "search_query": {"type": "string", "description": "Text to match in title or content"},
            "tags": {"type": "array", "items": {"type": "string"}, "description": "Required tags"},
            "include_archived": {"type": "boolean", "description": "Include archived notes (default false)"},
        },
    },
)

GET_TAG_DEFINITION = ToolSchema(
    name="get_tag_definition",
    description="Look up the user's own definition of a custom trading tag.",
    parameters={
        "type": "object",
        "properties": {"tag_name": {"type": "string", "description": "Exact tag name"}},
        "required": ["tag_name"],
    },
)

SAVE_TAG_DEFINITION = ToolSchema(
    name="save_tag_definition",
    description="Save or replace the definition of a trading tag. Only after the user explicitly agreed.",
    parameters={
        "type": "object",
        "properties": {
            "tag_name": {"type": "string", "description": "Exact tag name"},
            "definition": {"type": "string", "description": "Meaning of the tag"},
        },
        "required": ["tag_name", "definition"],
    },
)


def _now_iso() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


def _reminder_fields(args: dict[str, Any]) -> Row:
    reminder_type = str_arg(args, "reminder_type")
    if not reminder_type:
        return {}
    if reminder_type == "none":
        return {"reminder_type": "none", "is_reminder_active": False, "reminder_date": None, "reminder_days": []}
    fields: Row = {"reminder_type": reminder_type, "is_reminder_active": True}
    if reminder_type == "once" and str_arg(args, "reminder_date"):
        fields.update(reminder_date=str_arg(args, "reminder_date"), reminder_days=[])
    elif reminder_type == "weekly":
        days = [day for day in (list_arg(args, "reminder_days") or []) if day in WEEKDAYS]
        if days:
            fields.update(reminder_days=days, reminder_date=None)
    return fields


def _format_note(row: Row) -> str:
    content = str(row.get("content") or "")
    if len(content) > NOTE_PREVIEW_CHARS:
        content = content[:NOTE_PREVIEW_CHARS] + "..."
    tags = ", ".join(row.get("tags") or []) or "none"
    author = "assistant" if row.get("by_assistant") else "user"
    return f'- <note-ref id="{row.get("id")}"/> "{row.get("title", "")}" [tags: {tags}] [by {author}]\n  {content}'


class NoteTools:
    def __init__(self, store: EntityStore) -> None:
        self._store = store

    async def _owned_note(self, note_id: str, context: ToolContext) -> Row | None:
        rows = await self._store.select(
            NOTES_TABLE,
            columns=["id", "title", "tags", "by_assistant"],
            eq={"id": note_id, "user_id": context.caller_identity},
            limit=1,
        )
        return rows[0] if rows else None

    async def create_note(self, args: dict[str, Any], context: ToolContext) -> ToolOutput:
        title = str_arg(args, "title")
        content = str_arg(args, "content")
        if not title or not content:
            return ToolOutput("Both title and content are required.", succeeded=False)
        tags = [str(tag) for tag in (list_arg(args, "tags") or [])]
        if MEMORY_TAG in tags:
            return ToolOutput(
                f"Cannot create {MEMORY_TAG} notes with create_note. Use update_memory instead; "
                "it creates the memory note when needed and merges new insights.",
                succeeded=False,
            )
        now = _now_iso()
        row: Row = {
            "user_id": context.caller_identity,
            "calendar_id": context.scope_identifier,
            "title": title,
            "content": content,
            "tags": tags,
            "by_assistant": True,
            "is_archived": False,
            "is_pinned": False,
            "color": str_arg(args, "color") or random.choice(ASSISTANT_COLORS),
            "reminder_type": "none",
            "is_reminder_active": False,
            "created_at": now,
            "updated_at": now,
        }
        row.update(_reminder_fields(args))
        try:
            created = await self._store.insert(NOTES_TABLE, row)
        except StoreError as exc:
            return ToolOutput(f"Failed to create note: {exc}", succeeded=False)
        logger.info("note created id=%s", created.get("id"))
        return ToolOutput(f'Note "{title}" created successfully! <note-ref id="{created.get("id")}"/>')

    async def update_note(self, args: dict[str, Any], context: ToolContext) -> ToolOutput:
        note_id = str_arg(args, "note_id")
        if not note_id:
            return ToolOutput("note_id is required", succeeded=False)
        try:
            existing = await self._owned_note(note_id, context)
        except StoreError as exc:
            return ToolOutput(f"Failed to find note: {exc}", succeeded=False)
        if existing is None:
            return ToolOutput(f"Note not found with ID: {note_id}", succeeded=False)
        if MEMORY_TAG in (existing.get("tags") or []):
            return ToolOutput(f"Cannot update {MEMORY_TAG} notes with update_note. Use update_memory instead.", succeeded=False)
        if not existing.get("by_assistant"):
            return ToolOutput("Permission denied: only assistant-created notes can be updated.", succeeded=False)

        values: Row = {"updated_at": _now_iso()}
        for key in ("title", "content"):
            if isinstance(args.get(key), str):
                values[key] = args[key]
        tags = list_arg(args, "tags")
        if tags is not None:
            tags = [str(tag) for tag in tags]
            if MEMORY_TAG in tags:
                return ToolOutput(f"Cannot add the {MEMORY_TAG} tag with update_note.", succeeded=False)
            values["tags"] = tags
        values.update(_reminder_fields(args))
        try:
            await self._store.update(
                NOTES_TABLE, {"id": note_id, "user_id": context.caller_identity, "by_assistant": True}, values
            )
        except StoreError as exc:
            return ToolOutput(f"Failed to update note: {exc}", succeeded=False)
        return ToolOutput(f'Note "{existing.get("title", "")}" updated successfully!')

    async def delete_note(self, args: dict[str, Any], context: ToolContext) -> ToolOutput:
        note_id = str_arg(args, "note_id")
        if not note_id:
            return ToolOutput("note_id is required", succeeded=False)
        try:
            existing = await self._owned_note(note_id, context)
        except StoreError as exc:
            return ToolOutput(f"Failed to find note: {exc}", succeeded=False)
        if existing is None:
            return ToolOutput(f"Note not found with ID: {note_id}", succeeded=False)
        if not existing.get("by_assistant"):
            return ToolOutput("Permission denied: only assistant-created notes can be deleted.", succeeded=False)
        try:
            await self._store.delete(NOTES_TABLE, {"id": note_id, "user_id": context.caller_identity, "by_assistant": True})
        except StoreError as exc:
            return ToolOutput(f"Failed to delete note: {exc}", succeeded=False)
        return ToolOutput(f'Note "{existing.get("title", "")}" deleted successfully!')

    async def search_notes(self, args: dict[str, Any], context: ToolContext) -> ToolOutput:
        eq: Row = {"user_id": context.caller_identity}
        if context.scope_identifier:
            eq["calendar_id"] = context.scope_identifier
        if not bool_arg(args, "include_archived"):
            eq["is_archived"] = False
        tags = [str(tag) for tag in (list_arg(args, "tags") or [])]
        query = str_arg(args, "search_query")
        try:
            rows = await self._store.select(
                NOTES_TABLE,
                eq=eq,
                contains=("tags", tags) if tags else None,
                search=(["title", "content"], query) if query else None,
                order="updated_at.desc",
                limit=SEARCH_RESULT_LIMIT,
            )
        except StoreError as exc:
            return ToolOutput(f"Failed to search notes: {exc}", succeeded=False)
        if not rows:
            return ToolOutput("No notes found matching the criteria.")
        return ToolOutput(f"Found {len(rows)} note(s):\n\n" + "\n\n".join(_format_note(row) for row in rows))

    async def get_tag_definition(self, args: dict[str, Any], context: ToolContext) -> ToolOutput:
        tag_name = str_arg(args, "tag_name")
        if not tag_name:
            return ToolOutput("tag_name is required", succeeded=False)
        try:
            rows = await self._store.select(
                TAG_DEFINITIONS_TABLE,
                columns=["tag_name", "definition"],
                eq={"user_id": context.caller_identity, "tag_name": tag_name},
                limit=1,
            )
        except StoreError as exc:
            return ToolOutput(f"Error looking up tag definition: {exc}", succeeded=False)
        if not rows:
            return ToolOutput(f'No definition found for tag "{tag_name}".')
        return ToolOutput(f'Definition for "{tag_name}": {rows[0].get("definition", "")}')

    async def save_tag_definition(self, args: dict[str, Any], context: ToolContext) -> ToolOutput:
        tag_name = str_arg(args, "tag_name")
        definition = str_arg(args, "definition")
        if not tag_name or not definition:
            return ToolOutput("tag_name and definition are required", succeeded=False)
        try:
            await self._store.upsert(
                TAG_DEFINITIONS_TABLE,
                {"user_id": context.caller_identity, "tag_name": tag_name, "definition": definition, "updated_at": _now_iso()},
                on_conflict=["user_id", "tag_name"],
            )
        except StoreError as exc:
            return ToolOutput(f"Error saving tag definition: {exc}", succeeded=False)
        return ToolOutput(f'Successfully saved definition for tag "{tag_name}".')

    def tools(self) -> list[LocalTool]:
        return [
            LocalTool(CREATE_NOTE, self.create_note),
            LocalTool(UPDATE_NOTE, self.update_note),
            LocalTool(DELETE_NOTE, self.delete_note),
            LocalTool(SEARCH_NOTES, self.search_notes),
            LocalTool(GET_TAG_DEFINITION, self.get_tag_definition),
            LocalTool(SAVE_TAG_DEFINITION, self.save_tag_definition),
        ]
