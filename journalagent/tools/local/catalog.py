"""The fixed local tool set."""

from __future__ import annotations

from journalagent.storage.base import EntityStore
from journalagent.tools.base import LocalTool
from journalagent.tools.local.charts import CHART_TOOLS
from journalagent.tools.local.images import IMAGE_TOOLS
from journalagent.tools.local.market import MARKET_TOOLS
from journalagent.tools.local.memory import MemoryTool
from journalagent.tools.local.notes import NoteTools
from journalagent.tools.local.web import WEB_TOOLS


def build_local_tools(store: EntityStore) -> list[LocalTool]:
    return [
        *WEB_TOOLS,
        *MARKET_TOOLS,
        *CHART_TOOLS,
        *NoteTools(store).tools(),
        *MemoryTool(store).tools(),
        *IMAGE_TOOLS,
    ]
