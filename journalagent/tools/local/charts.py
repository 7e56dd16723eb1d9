"""Line/bar charts rendered by QuickChart and returned as a chart marker."""

from __future__ import annotations

import json
from typing import Any
from urllib.parse import quote

from journalagent.config.settings import settings
from journalagent.core.context import ToolContext
from journalagent.core.transcript import ToolSchema
from journalagent.tools.base import LocalTool, ToolOutput, list_arg, str_arg


CHART_TYPES = ("line", "bar")

GENERATE_CHART = ToolSchema(
    name="generate_chart",
    description=(
        "Generate a chart image from data (equity curves, P&L over time, performance metrics). "
        "The returned [CHART_IMAGE:url] marker must be included verbatim in the answer."
    ),
    parameters={
        "type": "object",
        "properties": {
            "chart_type": {"type": "string", "description": "Type of chart", "enum": list(CHART_TYPES)},
            "title": {"type": "string", "description": "Chart title"},
            "x_label": {"type": "string", "description": "X-axis label"},
            "y_label": {"type": "string", "description": "Y-axis label"},
            "labels": {"type": "array", "description": "X-axis labels", "items": {"type": "string"}},
            "datasets": {
                "type": "array",
                "description": "Dataset objects: {label: string, data: number[], color: string}",
                "items": {"type": "object"},
            },
        },
        "required": ["chart_type", "title", "labels", "datasets"],
    },
)


def chart_config(chart_type: str, title: str, x_label: str, y_label: str, labels: list, datasets: list) -> dict[str, Any]:
    def axis(label: str) -> list[dict[str, Any]]:
        return [{"scaleLabel": {"display": bool(label), "labelString": label}}]

    return {
        "type": chart_type,
        "data": {"labels": labels, "datasets": datasets},
        "options": {
            "title": {"display": True, "text": title, "fontSize": 16},
            "scales": {"xAxes": axis(x_label), "yAxes": axis(y_label)},
            "legend": {"display": True, "position": "bottom"},
        },
    }


def chart_url(config: dict[str, Any]) -> str:
    encoded = quote(json.dumps(config, separators=(",", ":")), safe="")
    return f"{settings.quickchart_base_url}?c={encoded}&width=800&height=400&format=png"


async def generate_chart(args: dict[str, Any], context: ToolContext) -> ToolOutput:
    chart_type = str_arg(args, "chart_type", "line")
    if chart_type not in CHART_TYPES:
        return ToolOutput('Invalid chart type. Use "line" or "bar".', succeeded=False)
    title = str_arg(args, "title", "Chart") or "Chart"
    labels = list_arg(args, "labels") or []
    datasets = list_arg(args, "datasets") or []
    if not datasets:
        return ToolOutput("At least one dataset is required.", succeeded=False)
    config = chart_config(chart_type, title, str_arg(args, "x_label"), str_arg(args, "y_label"), labels, datasets)
    return ToolOutput(f"Chart generated successfully!\n\n**{title}**\n\n[CHART_IMAGE:{chart_url(config)}]")


CHART_TOOLS = [LocalTool(GENERATE_CHART, generate_chart)]
