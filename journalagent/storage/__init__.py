"""Storage backend selection helpers."""

from __future__ import annotations

from journalagent.config.settings import settings
from journalagent.storage.base import EntityStore
from journalagent.storage.memory_store import MemoryEntityStore
from journalagent.storage.rest_store import RestEntityStore
from journalagent.util.logger import logger


def create_store() -> EntityStore:
    backend = settings.store_backend.strip().lower()
    if backend == "rest":
        if not settings.store_url.strip() or not settings.store_service_key.strip():
            logger.warning("store_backend=rest without store_url/store_service_key, using memory store")
            return MemoryEntityStore()
        return RestEntityStore(base_url=settings.store_url, service_key=settings.store_service_key)
    return MemoryEntityStore()
