"""Chart screenshot analysis: hands the image to the model as an inline part."""

from __future__ import annotations

from typing import Any

from journalagent.core.context import ToolContext
from journalagent.core.transcript import ToolSchema
from journalagent.tools.base import LocalTool, ToolOutput, str_arg


STOCK_IMAGE_MARKERS = ("unsplash.com", "pexels.com", "pixabay.com", "stock", "placeholder")

FOCUS_PROMPTS = {
    "entry": "Focus on the entry: was it well timed, what price action preceded it, was there confluence?",
    "exit": "Focus on the exit: was it optimal, was profit left on the table, was the stop placed sensibly?",
    "patterns": "Focus on chart patterns: flags, wedges, head and shoulders, trend lines or channels.",
    "levels": "Focus on support and resistance: key horizontal levels, trend lines and decision points.",
    "overview": "Give a general analysis: entry/exit quality, patterns, key levels and notable observations.",
}

ANALYZE_IMAGE = ToolSchema(
    name="analyze_image",
    description="Look at a trade chart image (e.g. from trade.images[].url) to assess entries, exits, patterns and levels.",
    parameters={
        "type": "object",
        "properties": {
            "image_url": {"type": "string", "description": "URL of the chart image"},
            "analysis_focus": {"type": "string", "enum": list(FOCUS_PROMPTS), "description": "What to focus on"},
            "trade_context": {"type": "string", "description": 'Optional context, e.g. "Long EUR/USD, won 2R"'},
        },
        "required": ["image_url"],
    },
)


def is_stock_image(url: str) -> bool:
    lowered = url.lower()
    return any(marker in lowered for marker in STOCK_IMAGE_MARKERS)


async def analyze_image(args: dict[str, Any], context: ToolContext) -> ToolOutput:
    image_url = str_arg(args, "image_url")
    if not image_url:
        return ToolOutput("image_url is required", succeeded=False)
    if is_stock_image(image_url):
        return ToolOutput(
            f"This appears to be a stock/placeholder image ({image_url[:30]}...), not a trade chart. Skipping analysis."
        )
    focus = FOCUS_PROMPTS.get(str_arg(args, "analysis_focus", "overview"), FOCUS_PROMPTS["overview"])
    trade_context = str_arg(args, "trade_context")
    context_note = f' Trade context: "{trade_context}".' if trade_context else ""
    return ToolOutput(
        text=(
            "IMAGE LOADED SUCCESSFULLY. You are now viewing the chart image above.\n"
            f"{focus}{context_note}\n"
            "Describe what you SEE in 3-5 bullet points: candlesticks, indicators, levels, patterns, "
            "entry/exit markers, annotations."
        ),
        inline_image_url=image_url,
    )


IMAGE_TOOLS = [LocalTool(ANALYZE_IMAGE, analyze_image)]
