from abc import ABC, abstractmethod
from typing import Any


class BaseKeyValueStore(ABC):
    """Contract for durable key/value backends holding queue checkpoints."""

    @abstractmethod
    def persist(self, key: str, record: Any) -> None:
        """Write (or overwrite) the JSON-safe record stored under ``key``.

        Raises:
            StoreError: if the write fails.
        """

    @abstractmethod
    def load(self, key: str) -> Any | None:
        """Return the record stored under ``key``, or None if there is none.

        Raises:
            StoreError: if the backend cannot be read or the record cannot be decoded.
        """

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove ``key``. Missing keys are ignored."""

    @abstractmethod
    def keys(self, prefix: str = "") -> list[str]:
        """List stored keys starting with ``prefix``."""
