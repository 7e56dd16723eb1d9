"""Counters for the agent run: tool calls, recoveries, corrections, rejections."""

from __future__ import annotations

from collections import Counter
from threading import Lock

from journalagent.util.logger import logger


_COUNTERS: Counter[str] = Counter()
_COUNTERS_LOCK = Lock()


def _counter_key(name: str, labels: dict | None) -> str:
    if not labels:
        return name
    rendered = ",".join(f"{key}={labels[key]}" for key in sorted(labels))
    return f"{name}{{{rendered}}}"


def emit_counter(name: str, value: int = 1, labels: dict | None = None) -> None:
    with _COUNTERS_LOCK:
        _COUNTERS[_counter_key(name, labels)] += value
    logger.info("metric counter name=%s value=%s labels=%s", name, value, labels or {})
