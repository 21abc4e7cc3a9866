from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from docqueue.logging.logger import Log
from docqueue.persistence.base import BaseKeyValueStore
from docqueue.queue.models import TERMINAL_BATCH_STATUSES, Batch, ItemStatus
from docqueue.queue.records import batch_to_record, build_batch_from_record
from docqueue.queue.state import evaluate_batch, reset_item_for_recovery, transition_item

BATCH_KEY_PREFIX = "batch_queue_"
PENDING_NOTIFICATIONS_KEY = "offline_notifications"


class CheckpointStore:
    """Crash-safety layer between the scheduler and a key/value backend.

    Writes are best-effort: a failed checkpoint is logged and the scheduler
    carries on.
    """

    def __init__(
        self,
        store: BaseKeyValueStore,
        retention: timedelta,
        clock: Callable[[], datetime],
    ) -> None:
        self._store = store
        self._retention = retention
        self._clock = clock

    @staticmethod
    def key_for(batch: Batch) -> str:
        return f"{BATCH_KEY_PREFIX}{batch.key}"

    def checkpoint(self, batch: Batch) -> bool:
        """Write the batch record. Returns False if the write failed."""
        try:
            self._store.persist(self.key_for(batch), batch_to_record(batch))
        except Exception as exc:
            Log.error(f"Checkpoint of batch {batch.id} failed: {exc}")
            return False
        return True

    def delete(self, batch: Batch) -> None:
        try:
            self._store.delete(self.key_for(batch))
        except Exception as exc:
            Log.error(f"Could not delete checkpoint of batch {batch.id}: {exc}")

    def load_all(self) -> list[Batch]:
        """Reload every unfinished batch, downgrading interrupted items to queued.

        Unreadable records are skipped one by one. Terminal records past the
        retention window are deleted. A batch that was cancelled while items
        were in flight comes back cancelled, with those items cancelled too.
        """
        try:
            keys = self._store.keys(BATCH_KEY_PREFIX)
        except Exception as exc:
            Log.error(f"Could not list persisted batches: {exc}")
            return []

        restored: list[Batch] = []
        for key in keys:
            batch = self._load_one(key)
            if batch is None:
                continue
            if batch.status in TERMINAL_BATCH_STATUSES:
                if self.is_expired(batch):
                    self._delete_key(key)
                continue
            downgraded = [item for item in batch.items if reset_item_for_recovery(item)]
            finished = batch.cancel_requested and self._finish_cancelled(batch)
            if downgraded and not finished:
                Log.warning(
                    f"Batch {batch.id}: {len(downgraded)} interrupted item(s) returned to queue"
                )
            if downgraded or finished:
                self.checkpoint(batch)
            restored.append(batch)

        restored.sort(key=lambda b: b.created_at)
        Log.info(f"Restored {len(restored)} unfinished batch(es) from {len(keys)} record(s)")
        return restored

    def is_expired(self, batch: Batch) -> bool:
        if batch.status not in TERMINAL_BATCH_STATUSES or batch.completed_at is None:
            return False
        return batch.completed_at + self._retention <= self._clock()

    def load_pending_notifications(self) -> list[dict[str, Any]]:
        try:
            pending = self._store.load(PENDING_NOTIFICATIONS_KEY)
        except Exception as exc:
            Log.error(f"Could not read pending notifications: {exc}")
            return []
        return pending if isinstance(pending, list) else []

    def save_pending_notifications(self, pending: list[dict[str, Any]]) -> None:
        try:
            self._store.persist(PENDING_NOTIFICATIONS_KEY, pending)
        except Exception as exc:
            Log.error(f"Could not store pending notifications: {exc}")

    def clear_pending_notifications(self) -> bool:
        """Drop the pending list. Returns False if the backend refused."""
        try:
            self._store.delete(PENDING_NOTIFICATIONS_KEY)
        except Exception as exc:
            Log.error(f"Could not clear pending notifications: {exc}")
            return False
        return True

    def _finish_cancelled(self, batch: Batch) -> bool:
        """Cancel what is left of a cancel-requested batch. True if it ended."""
        now = self._clock()
        for item in batch.items:
            if item.status == ItemStatus.QUEUED:
                transition_item(item, ItemStatus.CANCELLED, now)
        if not evaluate_batch(batch, now):
            return False
        Log.info(f"Batch {batch.id} was cancelled before shutdown, restored as cancelled")
        return True

    def _load_one(self, key: str) -> Batch | None:
        try:
            record = self._store.load(key)
            if record is None:
                return None
            return build_batch_from_record(record)
        except Exception as exc:
            Log.warning(f"Skipping unreadable batch record {key}: {exc}")
            return None

    def _delete_key(self, key: str) -> None:
        try:
            self._store.delete(key)
        except Exception as exc:
            Log.error(f"Could not delete record {key}: {exc}")
