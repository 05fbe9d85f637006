from __future__ import annotations

import logging

from shared.config import Settings, settings as default_settings

from .base import Store
from .memory import MemoryStore


logger = logging.getLogger(__name__)


def build_store(cfg: Settings | None = None) -> Store:
    cfg = cfg or default_settings
    if cfg.STORE_BACKEND == "sql":
        from .sql import SqlDocumentStore

        logger.info("using sql document store")
        return SqlDocumentStore()
    logger.info("using in-memory document store")
    return MemoryStore()
