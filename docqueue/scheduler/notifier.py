import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from docqueue.logging.logger import Log
from docqueue.persistence.checkpoints import CheckpointStore
from docqueue.queue.models import Batch, BatchSummary, Notification


class BaseNotificationChannel(ABC):
    """Where completion notices go, and whether anyone is watching."""

    @abstractmethod
    def is_consumer_active(self) -> bool:
        """True when the consumer is in the foreground."""

    @abstractmethod
    def notify_user(self, message: str, level: str) -> None:
        """Fire-and-forget delivery. ``level`` is 'success' or 'warning'."""

    def set_active(self, active: bool) -> None:
        """Record a presence change reported by lifecycle hooks.

        Channels that read presence from elsewhere can ignore this.
        """


class LogNotificationChannel(BaseNotificationChannel):
    """Delivers notices to the log. Presence is toggled by lifecycle hooks."""

    def __init__(self, active: bool = True) -> None:
        self._active = threading.Event()
        self.set_active(active)

    def set_active(self, active: bool) -> None:
        if active:
            self._active.set()
        else:
            self._active.clear()

    def is_consumer_active(self) -> bool:
        return self._active.is_set()

    def notify_user(self, message: str, level: str) -> None:
        if level == "warning":
            Log.warning(message)
        else:
            Log.info(message)


def summarize(batch: Batch) -> BatchSummary:
    end = batch.completed_at or batch.created_at
    return BatchSummary(
        total=batch.total,
        succeeded=batch.succeeded,
        failed=batch.failed,
        duration_seconds=max((end - batch.created_at).total_seconds(), 0.0),
    )


class CompletionNotifier:
    """Emit a summary when a batch completes, or keep it until the consumer is back."""

    def __init__(self, channel: BaseNotificationChannel, checkpoints: CheckpointStore) -> None:
        self._channel = channel
        self._checkpoints = checkpoints
        self._lock = threading.Lock()

    def on_batch_completed(self, batch: Batch, now: datetime) -> Notification | None:
        """Called once when ``batch`` enters ``completed``."""
        summary = summarize(batch)
        Log.info(
            f"Batch {batch.id} completed: {summary.succeeded}/{summary.total} succeeded, "
            f"{summary.failed} failed in {summary.duration_text}"
        )
        if not batch.options.notify_on_complete:
            return None

        notification = Notification(batch_id=batch.id, summary=summary, created_at=now)
        if self._is_consumer_active():
            self._deliver(
                f"Batch processing complete! {summary.succeeded}/{summary.total} "
                "files processed successfully.",
                summary.level,
            )
        else:
            self._defer(notification)
        return notification

    def flush_pending(self) -> int:
        """Deliver and clear every deferred notice. Returns how many were delivered."""
        with self._lock:
            pending = self._checkpoints.load_pending_notifications()
            if pending and not self._checkpoints.clear_pending_notifications():
                Log.warning(
                    f"Keeping {len(pending)} deferred notification(s) for the next resume"
                )
                return 0
        delivered = 0
        for entry in pending:
            if not isinstance(entry, dict):
                Log.warning(f"Dropping malformed deferred notification: {entry!r}")
                continue
            summary = entry.get("summary") or {}
            self._deliver(
                f"Batch {entry.get('batch_id')} completed while you were away! "
                f"{summary.get('succeeded', 0)}/{summary.get('total', 0)} files processed.",
                "warning" if summary.get("failed", 0) > 0 else "success",
            )
            delivered += 1
        if delivered:
            Log.info(f"Flushed {delivered} deferred notification(s)")
        return delivered

    def _defer(self, notification: Notification) -> None:
        with self._lock:
            pending = self._checkpoints.load_pending_notifications()
            pending.append(_notification_to_record(notification))
            self._checkpoints.save_pending_notifications(pending)
        Log.info(f"Consumer inactive, deferred notification for batch {notification.batch_id}")

    def _is_consumer_active(self) -> bool:
        try:
            return self._channel.is_consumer_active()
        except Exception as exc:
            Log.warning(f"Presence check failed, deferring notification: {exc}")
            return False

    def _deliver(self, message: str, level: str) -> None:
        try:
            self._channel.notify_user(message, level)
        except Exception as exc:
            Log.error(f"Notification delivery failed: {exc}")


def _notification_to_record(notification: Notification) -> dict[str, Any]:
    summary = notification.summary
    return {
        "batch_id": notification.batch_id,
        "summary": {
            "total": summary.total,
            "succeeded": summary.succeeded,
            "failed": summary.failed,
            "duration_seconds": summary.duration_seconds,
            "duration": summary.duration_text,
        },
        "timestamp": notification.created_at.isoformat(),
    }
