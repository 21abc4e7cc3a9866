from docqueue.config.settings import Settings
from docqueue.persistence.base import BaseKeyValueStore
from docqueue.persistence.json_file_store import JsonFileStore
from docqueue.persistence.memory_store import InMemoryStore
from docqueue.persistence.postgres_store import PostgresKeyValueStore


class StoreFactory:
    """Creates the configured checkpoint backend."""

    BACKENDS = ("file", "memory", "postgres")

    @classmethod
    def create(cls, settings: Settings) -> BaseKeyValueStore:
        backend = settings.store_backend.lower()
        if backend == "file":
            return JsonFileStore(settings.store_path)
        if backend == "memory":
            return InMemoryStore()
        if backend == "postgres":
            store = PostgresKeyValueStore()
            store.ensure_schema()
            return store
        raise ValueError(
            f"Unknown store backend '{backend}'. Choose from: {list(cls.BACKENDS)}"
        )
