import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Any
from urllib.parse import quote, unquote

from docqueue.persistence.base import BaseKeyValueStore
from docqueue.persistence.exceptions import StoreError

_SUFFIX = ".json"


class JsonFileStore(BaseKeyValueStore):
    """One JSON file per key under a local directory.

    Writes go to a temp file that is renamed over the target, so a crash
    leaves either the old or the new record, never a torn one.
    """

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)
        self._root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def persist(self, key: str, record: Any) -> None:
        target = self._path_for(key)
        try:
            payload = json.dumps(record, ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            raise StoreError(f"Record for {key} is not JSON serializable: {exc}") from exc
        with self._lock:
            try:
                fd, tmp_name = tempfile.mkstemp(dir=self._root, suffix=".tmp")
            except OSError as exc:
                raise StoreError(f"Failed to write {target}: {exc}") from exc
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write(payload)
                os.replace(tmp_name, target)
            except OSError as exc:
                Path(tmp_name).unlink(missing_ok=True)
                raise StoreError(f"Failed to write {target}: {exc}") from exc

    def load(self, key: str) -> Any | None:
        path = self._path_for(key)
        with self._lock:
            try:
                raw = path.read_text(encoding="utf-8")
            except FileNotFoundError:
                return None
            except OSError as exc:
                raise StoreError(f"Failed to read {path}: {exc}") from exc
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise StoreError(f"Record {key} is not valid JSON: {exc}") from exc

    def delete(self, key: str) -> None:
        path = self._path_for(key)
        with self._lock:
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                raise StoreError(f"Failed to delete {path}: {exc}") from exc

    def keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            names = [p.name[: -len(_SUFFIX)] for p in self._root.glob(f"*{_SUFFIX}")]
        return sorted(k for k in (unquote(n) for n in names) if k.startswith(prefix))

    def _path_for(self, key: str) -> Path:
        return self._root / f"{quote(key, safe='')}{_SUFFIX}"
