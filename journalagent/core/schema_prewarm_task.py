"""Background task that keeps the tool-schema cache warm."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from journalagent.config.settings import settings
from journalagent.util.logger import logger


class SchemaPrewarmTask:
    """Owns the periodic tool-list refresh so first requests skip discovery latency."""

    def __init__(self, *, refresh_func: Callable[[], Awaitable[object]]) -> None:
        self._refresh_func = refresh_func
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._run_loop(), name="journalagent-schema-prewarm")
        logger.info("schema prewarm task started")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        finally:
            self._task = None
        logger.info("schema prewarm task stopped")

    async def _run_loop(self) -> None:
        interval = max(5, int(settings.schema_prewarm_interval_seconds))
        while True:
            try:
                await self._refresh_func()
                logger.debug("schema prewarm refreshed")
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # pragma: no cover - operational guard
                logger.warning("schema prewarm failed: %s", exc)
            await asyncio.sleep(interval)
