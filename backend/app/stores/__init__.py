"""Record stores for projects and profiles."""

from __future__ import annotations

from app.config import Settings
from app.stores.base import ProfileStore, ProjectStore, RecordStore
from app.stores.memory import InMemoryStore

__all__ = ["InMemoryStore", "ProfileStore", "ProjectStore", "RecordStore", "build_store"]


def build_store(cfg: Settings) -> RecordStore:
    """PostgreSQL when USE_DATABASE is on, otherwise an in-memory store."""
    if cfg.use_database:
        from app.stores.postgres import PostgresStore

        return PostgresStore.from_url(cfg.database_url)
    return InMemoryStore()
