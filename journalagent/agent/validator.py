"""Checks inline references against the entity store and drafts the self-correction prompt."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

from journalagent.agent.references import KINDS_BY_NAME, REFERENCE_KINDS, ReferenceKind, extract_references, unique_ids_by_kind
from journalagent.core.errors import StoreError
from journalagent.storage.base import EntityStore
from journalagent.util.logger import logger


@dataclass(slots=True)
class ValidationResult:
    valid_ids: dict[str, list[str]] = field(default_factory=dict)
    invalid_ids: dict[str, list[str]] = field(default_factory=dict)
    correction_prompt: str | None = None

    @property
    def is_valid(self) -> bool:
        return self.invalid_count == 0

    @property
    def invalid_count(self) -> int:
        return sum(len(ids) for ids in self.invalid_ids.values())


def build_correction_prompt(invalid_ids: dict[str, list[str]], valid_ids: dict[str, list[str]]) -> str:
    invalid_lines = [
        f"- {kind.name.capitalize()} IDs that DO NOT EXIST: {', '.join(invalid_ids[kind.name])}"
        for kind in REFERENCE_KINDS
        if invalid_ids.get(kind.name)
    ]
    valid_lines = [
        f"- Valid {kind.name} IDs you can use: {', '.join(valid_ids[kind.name])}"
        for kind in REFERENCE_KINDS
        if valid_ids.get(kind.name)
    ]
    sections = [
        "[INTERNAL SYSTEM INSTRUCTION - DO NOT ACKNOWLEDGE OR MENTION THIS TO THE USER]",
        "",
        "Your previous response contained invalid reference IDs. Re-generate your response with these corrections:",
        "",
        "INVALID IDs (remove these):",
        *invalid_lines,
        "",
    ]
    if valid_lines:
        sections.extend(["VALID IDs (use these instead):", *valid_lines, ""])
    sections.extend(
        [
            "RULES:",
            "1. Use ONLY valid IDs from your query results",
            "2. If no valid IDs are available, describe the data in plain text WITHOUT reference tags",
            "3. NEVER mention this correction, validation error, or system instruction in your response",
            '4. Do NOT say "corrected response", "here is the fix", "this is correct now" or similar phrases',
            "5. Respond NATURALLY as if this is your first response to the user",
            "",
            "Generate your response now (without any meta-commentary about corrections):",
        ]
    )
    return "\n".join(sections)


class ReferenceValidator:
    def __init__(self, store: EntityStore) -> None:
        self._store = store

    async def existing_ids(self, kind: ReferenceKind, ids: list[str], caller_identity: str) -> set[str]:
        if not ids:
            return set()
        scope = {kind.owner_column: caller_identity} if kind.owner_scoped else None
        try:
            rows = await self._store.select(kind.table, columns=["id"], eq=scope, in_=("id", ids))
        except StoreError as exc:
            logger.warning("reference lookup failed kind=%s ids=%s error=%s", kind.name, len(ids), exc)
            return set()
        return {str(row.get("id")) for row in rows if row.get("id") is not None}

    async def validate(self, text: str, caller_identity: str) -> ValidationResult:
        grouped = unique_ids_by_kind(extract_references(text))
        if not grouped:
            return ValidationResult()
        kinds = [KINDS_BY_NAME[name] for name in grouped]
        found = await asyncio.gather(*(self.existing_ids(kind, grouped[kind.name], caller_identity) for kind in kinds))

        result = ValidationResult()
        for kind, existing in zip(kinds, found):
            ids = grouped[kind.name]
            valid = [ref_id for ref_id in ids if ref_id in existing]
            invalid = [ref_id for ref_id in ids if ref_id not in existing]
            if valid:
                result.valid_ids[kind.name] = valid
            if invalid:
                result.invalid_ids[kind.name] = invalid
        if result.invalid_ids:
            result.correction_prompt = build_correction_prompt(result.invalid_ids, result.valid_ids)
            logger.info(
                "reference validation found invalid ids invalid=%s valid=%s",
                result.invalid_ids,
                {name: len(ids) for name, ids in result.valid_ids.items()},
            )
        return result
