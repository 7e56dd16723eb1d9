"""Unified logger for the whole project."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from journalagent.config.settings import settings


MAX_BYTES = 10 * 1024 * 1024
BACKUP_COUNT = 10
_LEVELS = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}


def _normalize_level(raw: str) -> int:
    return _LEVELS.get(str(raw or "INFO").strip().upper(), logging.INFO)


def _attach_file_handler(target: logging.Logger, level: int, formatter: logging.Formatter) -> None:
    log_dir = Path(settings.log_dir or "logs")
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            log_dir / (settings.log_file_name or "journalagent.log"),
            maxBytes=MAX_BYTES,
            backupCount=BACKUP_COUNT,
            encoding="utf-8",
        )
    except (OSError, PermissionError):
        # 日志目录不可写时仅输出到 stderr
        return
    handler.setLevel(level)
    handler.setFormatter(formatter)
    target.addHandler(handler)


def _build_logger() -> logging.Logger:
    configured_logger = logging.getLogger("journalagent")
    if configured_logger.handlers:
        return configured_logger

    resolved_level = _normalize_level(settings.log_level)
    configured_logger.setLevel(resolved_level)

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(resolved_level)
    stream_handler.setFormatter(formatter)
    configured_logger.addHandler(stream_handler)
    _attach_file_handler(configured_logger, resolved_level, formatter)

    configured_logger.propagate = False
    return configured_logger


logger = _build_logger()
