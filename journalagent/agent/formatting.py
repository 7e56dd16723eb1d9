"""Markdown-ish final answer to HTML, with citation links appended to the last paragraph."""

from __future__ import annotations

import html
import re

from journalagent.core.models import Citation


_BOLD = re.compile(r"\*\*(.+?)\*\*")
_ITALIC = re.compile(r"\*(.+?)\*")
_HEADER = re.compile(r"^(#{1,3}) (.+)$")
_LIST_ITEM = re.compile(r"^[-*] (.+)$")


def _inline(line: str) -> str:
    return _ITALIC.sub(r"<em>\1</em>", _BOLD.sub(r"<strong>\1</strong>", line))


def _citation_link(number: int, citation: Citation) -> str:
    return (
        f'<sup><a href="{html.escape(citation.url, quote=True)}" target="_blank" '
        f'rel="noopener noreferrer" title="{html.escape(citation.title, quote=True)}">[{number}]</a></sup>'
    )


def render_html(text: str, citations: list[Citation]) -> str:
    """Escape first, then build headers, lists and paragraphs with bold/italic inside.

    Inline reference tags come out escaped; clients render those from ``final_text``.
    """

    if not text or not text.strip():
        return ""
    blocks: list[str] = []
    paragraph: list[str] = []
    items: list[str] = []

    def flush() -> None:
        if paragraph:
            blocks.append("<p>" + "<br>".join(paragraph) + "</p>")
            paragraph.clear()
        if items:
            blocks.append("<ul>" + "".join(f"<li>{item}</li>" for item in items) + "</ul>")
            items.clear()

    for raw in html.escape(text.strip(), quote=True).split("\n"):
        line = raw.rstrip()
        header = _HEADER.match(line)
        item = _LIST_ITEM.match(line)
        if not line.strip():
            flush()
        elif header:
            flush()
            level = len(header.group(1))
            blocks.append(f"<h{level}>{_inline(header.group(2))}</h{level}>")
        elif item:
            if paragraph:
                flush()
            items.append(_inline(item.group(1)))
        else:
            if items:
                flush()
            paragraph.append(_inline(line))
    flush()

    rendered = "".join(blocks)
    if citations:
        links = "".join(_citation_link(number, citation) for number, citation in enumerate(citations, start=1))
        if rendered.endswith("</p>"):
            rendered = rendered[: -len("</p>")] + links + "</p>"
        else:
            rendered += f"<p>{links}</p>"
    return rendered
