"""Source links found in tool output, surfaced to the client as citations."""

from __future__ import annotations

import re
from urllib.parse import urlparse

from journalagent.core.models import Citation
from journalagent.core.transcript import ToolResult


_URL_RE = re.compile(r"https?://[^\s<>\"'\])]+")
_TRAILING = ".,;:!?"
# generated artefacts rather than sources
_SKIPPED_TOOLS = frozenset({"generate_chart", "analyze_image"})


def extract_citations(results: list[ToolResult]) -> list[Citation]:
    citations: list[Citation] = []
    seen: set[str] = set()
    for result in results:
        if not result.succeeded or result.name in _SKIPPED_TOOLS:
            continue
        for match in _URL_RE.finditer(result.output or ""):
            url = match.group(0).rstrip(_TRAILING)
            if url in seen:
                continue
            host = urlparse(url).hostname or ""
            if not host:
                continue
            seen.add(url)
            citations.append(
                Citation(
                    id=f"citation-{len(citations) + 1}",
                    title=host.removeprefix("www."),
                    url=url,
                    tool_name=result.name,
                )
            )
    return citations
