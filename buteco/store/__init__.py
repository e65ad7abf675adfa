from buteco.config import Settings
from buteco.store.base import EntityStore
from buteco.store.sqlite import SqliteStore

__all__ = ["EntityStore", "SqliteStore", "open_store"]


def open_store(settings: Settings) -> EntityStore:
    """build the configured backend (called once, at the composition root)"""
    if settings.backend == "mongo":
        from buteco.store.mongo import MongoStore
        return MongoStore.from_url(settings.database_url, settings.database_name)
    return SqliteStore(settings.db_path)
