"""Durable history stores.

Backends:
    - memory:  no durable store, the bounded in-memory history is the only copy.
    - mongodb: MongoHistoryStore (motor), selected automatically by MONGODB_URI.
    - duckdb:  DuckDBHistoryStore, embedded file or ":memory:".
"""
import logging
from typing import Optional

from relay.config import AppConfig

from .base import HistoryStore, StoreError
from .mirror import DurableMirror

logger = logging.getLogger(__name__)


def build_store(config: AppConfig) -> Optional[HistoryStore]:
    """Create the store selected by ``store.backend``, or None for memory only."""
    backend = config.store.backend
    if backend == "mongodb":
        uri = config.secrets.mongodb.uri
        if not uri:
            logger.warning("[DB] store.backend=mongodb but no MongoDB URI configured; using memory only.")
            return None
        from .mongo import MongoHistoryStore
        return MongoHistoryStore(
            uri,
            database=config.store.database,
            collection=config.store.collection,
        )
    if backend == "duckdb":
        from .duckdb_store import DuckDBHistoryStore
        return DuckDBHistoryStore(db_path=config.store.duckdb_path)
    logger.info("[DB] No durable store configured, using in-memory history only.")
    return None


__all__ = ["DurableMirror", "HistoryStore", "StoreError", "build_store"]
