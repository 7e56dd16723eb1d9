import asyncio
from urllib.parse import unquote

import httpx
import pytest

from journalagent.config.settings import settings
from journalagent.core.context import ToolContext
from journalagent.tools import base as tools_base
from journalagent.tools.local.catalog import build_local_tools
from journalagent.tools.local.charts import generate_chart
from journalagent.tools.local.images import analyze_image
from journalagent.tools.local.market import get_crypto_price, get_forex_price
from journalagent.tools.local.memory import (
    EMPTY_PLACEHOLDER,
    MemoryTool,
    deduplicate_insights,
    parse_memory,
    render_memory,
)
from journalagent.tools.local.notes import MEMORY_TAG, NoteTools
from journalagent.tools.local.web import SCRAPE_MAX_CHARS, scrape_url, search_web

CONTEXT = ToolContext(caller_identity="u-1")
OTHER = ToolContext(caller_identity="u-2")


@pytest.fixture
def provider(monkeypatch):
    """Routes the shared tool HTTP client to a per-test handler."""

    def install(handler):
        monkeypatch.setattr(
            tools_base.tool_http_client, "_client", httpx.AsyncClient(transport=httpx.MockTransport(handler))
        )

    return install


def test_catalog_names_are_unique(store):
    names = [tool.name for tool in build_local_tools(store)]
    assert len(names) == len(set(names))
    assert {"search_web", "update_memory", "analyze_image", "save_tag_definition"} <= set(names)


def test_search_web_formats_top_results(provider, monkeypatch):
    monkeypatch.setattr(settings, "serper_api_key", "serper-key")
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        organic = [{"title": f"R{i}", "snippet": "s", "link": f"https://news.example.com/{i}"} for i in range(8)]
        return httpx.Response(200, json={"organic": organic})

    provider(handler)
    output = asyncio.run(search_web({"query": "fed decision", "type": "news"}, CONTEXT))
    assert seen[0].url.path == "/news"
    assert seen[0].headers["x-api-key"] == "serper-key"
    assert output.text.count("https://news.example.com/") == 5
    assert output.succeeded is True


def test_search_web_without_key_fails_softly(monkeypatch):
    monkeypatch.setattr(settings, "serper_api_key", "")
    output = asyncio.run(search_web({"query": "x"}, CONTEXT))
    assert output.succeeded is False


def test_scrape_url_caps_content(provider, monkeypatch):
    monkeypatch.setattr(settings, "serper_api_key", "serper-key")
    provider(lambda request: httpx.Response(200, json={"text": "a" * 5000, "metadata": {"title": "Long read"}}))
    output = asyncio.run(scrape_url({"url": "https://example.com/article"}, CONTEXT))
    assert "Title: Long read" in output.text
    assert output.text.count("a") >= SCRAPE_MAX_CHARS
    assert output.text.endswith("...")
    assert asyncio.run(scrape_url({"url": "ftp://example.com"}, CONTEXT)).succeeded is False


def test_crypto_price_reports_market_data(provider):
    provider(
        lambda request: httpx.Response(
            200,
            json={"bitcoin": {"usd": 64250.5, "usd_24h_change": 2.5, "usd_24h_vol": 3.2e10, "usd_market_cap": 1.27e12}},
        )
    )
    output = asyncio.run(get_crypto_price({"coin_id": "Bitcoin"}, CONTEXT))
    assert "Price: $64,250.50" in output.text
    assert "24h Change: 2.50%" in output.text
    assert "Market Cap: $1270.00B" in output.text


def test_crypto_price_unknown_coin(provider):
    provider(lambda request: httpx.Response(200, json={}))
    output = asyncio.run(get_crypto_price({"coin_id": "nocoin"}, CONTEXT))
    assert output.succeeded is False


def test_forex_price(provider):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["from"] == "EUR"
        return httpx.Response(200, json={"date": "2026-10-16", "rates": {"USD": 1.0834}})

    provider(handler)
    output = asyncio.run(get_forex_price({"base_currency": "eur", "quote_currency": "usd"}, CONTEXT))
    assert "1 EUR = 1.08340 USD" in output.text
    assert asyncio.run(get_forex_price({"base_currency": "EURO", "quote_currency": "USD"}, CONTEXT)).succeeded is False


def test_generate_chart_returns_marker():
    args = {
        "chart_type": "line",
        "title": "Equity",
        "labels": ["Mon", "Tue"],
        "datasets": [{"label": "PnL", "data": [1, 3]}],
    }
    output = asyncio.run(generate_chart(args, CONTEXT))
    assert output.text.startswith("Chart generated successfully!")
    marker = output.text.split("[CHART_IMAGE:", 1)[1].rstrip("]")
    assert marker.startswith(settings.quickchart_base_url)
    assert '"text":"Equity"' in unquote(marker)
    assert asyncio.run(generate_chart({**args, "chart_type": "pie"}, CONTEXT)).succeeded is False


def test_analyze_image_skips_stock_photos():
    output = asyncio.run(analyze_image({"image_url": "https://images.unsplash.com/photo.jpg"}, CONTEXT))
    assert output.inline_image_url is None
    assert "stock/placeholder" in output.text


def test_notes_are_scoped_to_the_caller(store):
    notes = NoteTools(store)

    async def run_case():
        created = await notes.create_note({"title": "Risk rule", "content": "Max 1% per trade", "tags": ["RISK_MANAGEMENT"]}, CONTEXT)
        mine = await notes.search_notes({"search_query": "1%"}, CONTEXT)
        theirs = await notes.search_notes({"search_query": "1%"}, OTHER)
        return created, mine, theirs

    created, mine, theirs = asyncio.run(run_case())
    assert '<note-ref id="' in created.text
    assert "Risk rule" in mine.text
    assert theirs.text == "No notes found matching the criteria."


def test_user_notes_cannot_be_changed_by_assistant(store):
    notes = NoteTools(store)
    updated = asyncio.run(notes.update_note({"note_id": "note-1", "title": "Hijacked"}, CONTEXT))
    deleted = asyncio.run(notes.delete_note({"note_id": "note-1"}, CONTEXT))
    other = asyncio.run(notes.delete_note({"note_id": "note-1"}, OTHER))
    assert updated.succeeded is False and "Permission denied" in updated.text
    assert deleted.succeeded is False
    assert other.text == "Note not found with ID: note-1"
    assert store.rows("notes")[0]["title"] == "Plan"


def test_memory_tag_is_reserved_for_update_memory(store):
    output = asyncio.run(NoteTools(store).create_note({"title": "m", "content": "c", "tags": [MEMORY_TAG]}, CONTEXT))
    assert output.succeeded is False


def test_tag_definitions_round_trip_per_caller(store):
    notes = NoteTools(store)

    async def run_case():
        await notes.save_tag_definition({"tag_name": "A+", "definition": "Perfect setup"}, CONTEXT)
        await notes.save_tag_definition({"tag_name": "A+", "definition": "Textbook setup"}, CONTEXT)
        mine = await notes.get_tag_definition({"tag_name": "A+"}, CONTEXT)
        theirs = await notes.get_tag_definition({"tag_name": "A+"}, OTHER)
        return mine, theirs

    mine, theirs = asyncio.run(run_case())
    assert mine.text == 'Definition for "A+": Textbook setup'
    assert theirs.text.startswith("No definition found")
    assert len(store.rows("tag_definitions")) == 1


def test_memory_render_and_parse():
    sections = parse_memory(render_memory({"TRADER_PROFILE": ["Scalper on EURUSD"]}))
    assert sections["TRADER_PROFILE"] == ["Scalper on EURUSD"]
    assert sections["LESSONS_LEARNED"] == []
    assert f"- {EMPTY_PLACEHOLDER}" in render_memory({})


def test_near_duplicate_insights_are_dropped():
    insights = [
        "Overtrades after two losses in a row [High] [2026-09]",
        "overtrades after two losses in a row [Low] [2026-10]",
        "Best results during the London session [Med] [2026-10]",
    ]
    assert deduplicate_insights(insights) == [insights[0], insights[2]]


def test_update_memory_creates_then_merges(store):
    memory = MemoryTool(store)

    async def run_case():
        first = await memory.update_memory({"section": "LESSONS_LEARNED", "new_insights": ["Respect the stop"]}, CONTEXT)
        second = await memory.update_memory(
            {"section": "LESSONS_LEARNED", "new_insights": ["respect the stop", "Size down after a loss"]}, CONTEXT
        )
        focus = await memory.update_memory(
            {"section": "ACTIVE_FOCUS", "new_insights": ["Only A+ setups"], "replace_section": True}, CONTEXT
        )
        return first, second, focus

    first, second, focus = asyncio.run(run_case())
    assert first.text.startswith("Memory initialized")
    assert "Added 1 insight(s)" in second.text
    assert focus.text == "Memory updated: Replaced ACTIVE_FOCUS with 1 insight(s)."
    memory_rows = [row for row in store.rows("notes") if MEMORY_TAG in (row.get("tags") or [])]
    assert len(memory_rows) == 1
    sections = parse_memory(memory_rows[0]["content"])
    assert sections["LESSONS_LEARNED"] == ["Respect the stop", "Size down after a loss"]
    assert sections["ACTIVE_FOCUS"] == ["Only A+ setups"]
