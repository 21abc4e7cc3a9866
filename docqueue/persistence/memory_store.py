import copy
import threading
from typing import Any

from docqueue.persistence.base import BaseKeyValueStore


class InMemoryStore(BaseKeyValueStore):
    """Process-local store. Records are deep-copied in and out."""

    def __init__(self) -> None:
        self._records: dict[str, Any] = {}
        self._lock = threading.Lock()

    def persist(self, key: str, record: Any) -> None:
        with self._lock:
            self._records[key] = copy.deepcopy(record)

    def load(self, key: str) -> Any | None:
        with self._lock:
            return copy.deepcopy(self._records.get(key))

    def delete(self, key: str) -> None:
        with self._lock:
            self._records.pop(key, None)

    def keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            return sorted(k for k in self._records if k.startswith(prefix))
