"""Agent rule loader (tool allow-list, recovery subset, call caps) with mtime-based cache."""

from __future__ import annotations

from copy import deepcopy
from pathlib import Path
from threading import Lock
from typing import Any

import yaml

from journalagent.config.settings import settings
from journalagent.util.logger import logger


_DEFAULT_RULES: dict[str, Any] = {
    "gateway_tool_allowlist": [
        "execute_sql",
        "list_tables",
    ],
    "recovery_safe_tools": [
        "search_web",
        "get_crypto_price",
        "get_forex_price",
        "search_notes",
    ],
    "schema_supported_keys": ["type", "description", "enum", "properties", "items", "required"],
    "tool_call_caps": {
        "default": 3,
        "execute_sql": 8,
    },
}

_CACHE_LOCK = Lock()
_CACHE_PATH = ""
_CACHE_MTIME_NS = -1
_CACHE_RULES: dict[str, Any] | None = None


def _resolve_rules_file(path: str) -> Path:
    candidate = Path(path)
    if candidate.is_absolute():
        return candidate
    app_root = Path(__file__).resolve().parents[2]
    candidates = [Path.cwd() / candidate, app_root / candidate]
    for item in candidates:
        if item.exists():
            return item.resolve()
    return candidates[-1].resolve()


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            base[key] = _deep_merge(dict(base[key]), value)
        else:
            base[key] = value
    return base


def load_agent_rules(path: str | None = None) -> dict[str, Any]:
    global _CACHE_PATH, _CACHE_MTIME_NS, _CACHE_RULES

    rules_path = _resolve_rules_file(path or settings.agent_rules_path)
    path_key = str(rules_path.resolve())
    mtime_ns = rules_path.stat().st_mtime_ns if rules_path.exists() else -1

    with _CACHE_LOCK:
        if _CACHE_RULES is not None and _CACHE_PATH == path_key and _CACHE_MTIME_NS == mtime_ns:
            return deepcopy(_CACHE_RULES)

        rules = deepcopy(_DEFAULT_RULES)
        if rules_path.exists():
            try:
                raw = yaml.safe_load(rules_path.read_text(encoding="utf-8")) or {}
            except yaml.YAMLError as exc:
                logger.warning("agent rules unreadable, using defaults path=%s error=%s", rules_path, exc)
                raw = {}
            if not isinstance(raw, dict):
                logger.warning("agent rules file must be a mapping, using defaults path=%s", rules_path)
                raw = {}
            rules = _deep_merge(rules, raw)
            logger.info("agent rules loaded path=%s", rules_path)
        else:
            logger.info("agent rules file not found, using defaults path=%s", rules_path)

        _CACHE_PATH = path_key
        _CACHE_MTIME_NS = mtime_ns
        _CACHE_RULES = rules
        return deepcopy(rules)


def tool_call_cap(rules: dict[str, Any], tool_name: str) -> int:
    caps = rules.get("tool_call_caps") or {}
    value = caps.get(tool_name, caps.get("default", 3))
    try:
        return max(1, int(value))
    except (TypeError, ValueError):
        return 3
