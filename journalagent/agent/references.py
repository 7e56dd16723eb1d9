"""Inline entity references in model text: ``<trade-ref id="..."/>`` and friends.

Pure parsing only; nothing here touches the network.
"""

from __future__ import annotations

import re
from dataclasses import dataclass


@dataclass(slots=True, frozen=True)
class ReferenceKind:
    name: str
    table: str
    owner_scoped: bool
    legacy_prefix: str | None = None
    owner_column: str = "user_id"

    @property
    def tag(self) -> str:
        return f"{self.name}-ref"

    @property
    def payload_key(self) -> str:
        return f"{self.name}s"


TRADE = ReferenceKind(name="trade", table="trades", owner_scoped=True, legacy_prefix="trade_id")
EVENT = ReferenceKind(name="event", table="economic_events", owner_scoped=False, legacy_prefix="event_id")
NOTE = ReferenceKind(name="note", table="notes", owner_scoped=True)

REFERENCE_KINDS: tuple[ReferenceKind, ...] = (TRADE, EVENT, NOTE)
KINDS_BY_NAME = {kind.name: kind for kind in REFERENCE_KINDS}

_ID = r"([a-zA-Z0-9_-]+)"
_TAG_PATTERNS = {
    kind.name: re.compile(
        rf'<{kind.tag}\s+id="{_ID}"(?:\s*/)?>(?:</{kind.tag}>)?',
        re.IGNORECASE,
    )
    for kind in REFERENCE_KINDS
}
_LEGACY_PATTERN = re.compile(
    r"(" + "|".join(kind.legacy_prefix for kind in REFERENCE_KINDS if kind.legacy_prefix) + r"):" + _ID,
    re.IGNORECASE,
)
_LEGACY_KIND = {kind.legacy_prefix: kind.name for kind in REFERENCE_KINDS if kind.legacy_prefix}


@dataclass(slots=True, frozen=True)
class InlineReference:
    kind: str
    id: str
    position: int
    raw: str


def extract_references(text: str) -> list[InlineReference]:
    """Every reference occurrence in text order, tags and legacy form alike."""

    if not text:
        return []
    found: list[InlineReference] = []
    for kind_name, pattern in _TAG_PATTERNS.items():
        for match in pattern.finditer(text):
            found.append(InlineReference(kind=kind_name, id=match.group(1), position=match.start(), raw=match.group(0)))
    for match in _LEGACY_PATTERN.finditer(text):
        found.append(
            InlineReference(
                kind=_LEGACY_KIND[match.group(1).lower()],
                id=match.group(2),
                position=match.start(),
                raw=match.group(0),
            )
        )
    found.sort(key=lambda item: item.position)
    return found


def unique_ids_by_kind(references: list[InlineReference]) -> dict[str, list[str]]:
    """Deduplicated ids per kind, first-seen order kept."""

    grouped: dict[str, list[str]] = {}
    for reference in references:
        ids = grouped.setdefault(reference.kind, [])
        if reference.id not in ids:
            ids.append(reference.id)
    return grouped


def strip_references(text: str, invalid: dict[str, list[str]]) -> str:
    """Remove every occurrence whose (kind, id) is listed, matching the exact source text.

    One leading space or tab goes with each removed tag so sentences do not end up double spaced.
    """

    doomed = {(kind, ref_id) for kind, ids in invalid.items() for ref_id in ids}
    if not doomed:
        return text
    raws = {reference.raw for reference in extract_references(text) if (reference.kind, reference.id) in doomed}
    stripped = text
    for raw in sorted(raws, key=len, reverse=True):
        boundary = "" if raw.endswith(">") else r"(?![a-zA-Z0-9_-])"
        stripped = re.sub(r"[ \t]?" + re.escape(raw) + boundary, "", stripped)
    return stripped.strip()
