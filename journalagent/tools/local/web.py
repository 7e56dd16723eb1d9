"""Web search and page scraping through the Serper API."""

from __future__ import annotations

from typing import Any
from urllib.parse import urlparse

import httpx

from journalagent.config.settings import settings
from journalagent.core.context import ToolContext
from journalagent.core.transcript import ToolSchema
from journalagent.tools.base import LocalTool, ToolOutput, str_arg, tool_http_client
from journalagent.util.http_client import describe_http_error


SCRAPE_MAX_CHARS = 3000

SEARCH_WEB = ToolSchema(
    name="search_web",
    description=(
        "Search the web for market news, analysis and trading information. "
        "Follow up with scrape_url to read a specific result in full."
    ),
    parameters={
        "type": "object",
        "properties": {
            "query": {"type": "string", "description": "Search query"},
            "type": {"type": "string", "description": 'Type: "search" or "news"', "enum": ["search", "news"]},
        },
        "required": ["query"],
    },
)

SCRAPE_URL = ToolSchema(
    name="scrape_url",
    description="Extract the readable content of a URL, e.g. a full article found with search_web.",
    parameters={
        "type": "object",
        "properties": {"url": {"type": "string", "description": "The URL to scrape"}},
        "required": ["url"],
    },
)


async def _serper_post(path: str, body: dict[str, Any]) -> httpx.Response:
    client = await tool_http_client.get()
    return await client.post(
        f"{settings.serper_base_url.rstrip('/')}/{path}",
        json=body,
        headers={"X-API-KEY": settings.serper_api_key, "Content-Type": "application/json"},
    )


def _format_entries(title: str, entries: list[dict[str, Any]]) -> list[str]:
    lines = [title]
    for entry in entries[:5]:
        snippet = entry.get("snippet") or entry.get("description") or ""
        lines.append(f"\n- {entry.get('title', '')}\n  {snippet}\n  {entry.get('link', '')}")
    return lines


async def search_web(args: dict[str, Any], context: ToolContext) -> ToolOutput:
    query = str_arg(args, "query")
    if not query:
        return ToolOutput("A non-empty query is required.", succeeded=False)
    if not settings.serper_api_key:
        return ToolOutput("Web search not configured", succeeded=False)
    search_type = "news" if str_arg(args, "type") == "news" else "search"
    try:
        response = await _serper_post(search_type, {"q": query, "gl": "us", "hl": "en", "num": 10})
    except httpx.HTTPError as exc:
        return ToolOutput(f"Search error: {describe_http_error(exc)}", succeeded=False)
    if response.status_code >= 400:
        return ToolOutput(f"Search failed: {response.status_code}", succeeded=False)

    data = response.json()
    organic = data.get("organic") or []
    news = data.get("news") or []
    knowledge = data.get("knowledgeGraph") or {}
    if not organic and not news and not (knowledge.get("title") or knowledge.get("description")):
        return ToolOutput(f'NO RESULTS FOUND for query: "{query}". Try different search terms or rely on market knowledge.')

    lines = [f'Search results for: "{query}"\n']
    if organic:
        lines.extend(_format_entries("Top Results:", organic))
    if news:
        lines.extend(_format_entries("News Results:", news))
    if knowledge.get("title") or knowledge.get("description"):
        lines.append(f"\n{knowledge.get('title', '')}\n{knowledge.get('description', '')}")
    return ToolOutput("\n".join(lines))


async def scrape_url(args: dict[str, Any], context: ToolContext) -> ToolOutput:
    if not settings.serper_api_key:
        return ToolOutput("URL scraping not configured", succeeded=False)
    url = str_arg(args, "url")
    parsed = urlparse(url)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        return ToolOutput("Invalid URL format", succeeded=False)
    try:
        response = await _serper_post("scrape", {"url": url})
    except httpx.HTTPError as exc:
        return ToolOutput(f"URL scraping error: {describe_http_error(exc)}", succeeded=False)
    if response.status_code >= 400:
        return ToolOutput(f"Scraping failed: {response.status_code}", succeeded=False)

    data = response.json()
    parts = [f"Content from: {url}\n"]
    title = (data.get("metadata") or {}).get("title")
    if title:
        parts.append(f"Title: {title}\n")
    text = data.get("text") or ""
    if text:
        if len(text) > SCRAPE_MAX_CHARS:
            text = text[:SCRAPE_MAX_CHARS] + "..."
        parts.append(f"Content:\n{text}")
    if len(parts) == 1:
        return ToolOutput(f"No content extracted from {url}")
    return ToolOutput("\n".join(parts))


WEB_TOOLS = [
    LocalTool(SEARCH_WEB, search_web),
    LocalTool(SCRAPE_URL, scrape_url),
]
