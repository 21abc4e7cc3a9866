import dataclasses
import threading
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from typing import Any

from docqueue.config.settings import Settings
from docqueue.executor.base import BaseResultSink, BaseTaskExecutor
from docqueue.logging.logger import Log
from docqueue.persistence.base import BaseKeyValueStore
from docqueue.persistence.checkpoints import CheckpointStore
from docqueue.queue.models import (
    Batch,
    BatchItem,
    BatchOptions,
    BatchStatus,
    BatchStatusView,
    ItemStatus,
    ItemStatusView,
    QueueStatistics,
    SubmissionReceipt,
    SubmittedFile,
    TaskResult,
    generate_batch_id,
)
from docqueue.queue.registry import BatchRegistry
from docqueue.queue.state import evaluate_batch, reset_item_for_retry, transition_item
from docqueue.scheduler.notifier import BaseNotificationChannel, CompletionNotifier
from docqueue.scheduler.retry import RetryController

TimerFactory = Callable[..., Any]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Scheduler:
    """Owns the batch registry and drives queued items through the executor.

    Every registry mutation happens under one lock. Executor calls run on a
    thread pool sized to the concurrency ceiling and report back through
    ``_on_task_finished``. Progress is event driven (submit, item finished,
    backoff elapsed, resume); the periodic tick from the worker loop is only
    a safety net.
    """

    def __init__(
        self,
        executor: BaseTaskExecutor,
        checkpoints: CheckpointStore,
        notifier: CompletionNotifier,
        settings: Settings,
        result_sink: BaseResultSink | None = None,
        clock: Callable[[], datetime] = utcnow,
        timer_factory: TimerFactory = threading.Timer,
    ) -> None:
        self._executor = executor
        self._checkpoints = checkpoints
        self._notifier = notifier
        self._result_sink = result_sink
        self._clock = clock
        self._timer_factory = timer_factory
        self._ceiling = settings.max_concurrent_items
        self._seconds_per_file = settings.estimated_seconds_per_file
        self._retry = RetryController(
            settings.max_item_attempts, settings.retry_base_delay_seconds
        )
        self._registry = BatchRegistry()
        self._lock = threading.RLock()
        self._changed = threading.Condition(self._lock)
        self._timers: dict[str, Any] = {}
        self._pool: ThreadPoolExecutor | None = None
        self._running = False

    @property
    def notifier(self) -> CompletionNotifier:
        return self._notifier

    @property
    def ceiling(self) -> int:
        return self._ceiling

    # -- lifecycle -------------------------------------------------------

    def restore(self) -> int:
        """Seed the registry from persisted checkpoints. Call before start()."""
        batches = self._checkpoints.load_all()
        with self._lock:
            for batch in batches:
                self._registry.add(batch)
        return len(batches)

    def start(self) -> None:
        with self._lock:
            if self._running:
                return
            self._pool = ThreadPoolExecutor(
                max_workers=self._ceiling, thread_name_prefix="docqueue-task"
            )
            self._running = True
        Log.info(f"Scheduler started (ceiling={self._ceiling})")
        self.tick()

    def shutdown(self, wait: bool = True) -> None:
        """Stop dispatching, drop armed backoff timers and checkpoint everything.

        Items still in flight when ``wait`` is False are recovered as queued on
        the next start.
        """
        with self._lock:
            self._running = False
            for timer in self._timers.values():
                timer.cancel()
            self._timers.clear()
            pool, self._pool = self._pool, None
            self._changed.notify_all()
        if pool is not None:
            pool.shutdown(wait=wait, cancel_futures=True)
        self.checkpoint_all()
        Log.info("Scheduler stopped")

    def checkpoint_all(self) -> None:
        with self._lock:
            for batch in self._registry:
                self._checkpoints.checkpoint(batch)

    # -- caller API ------------------------------------------------------

    def submit(
        self,
        files: Sequence[SubmittedFile],
        category: str,
        options: BatchOptions | None = None,
    ) -> SubmissionReceipt:
        if not category:
            raise ValueError("category must be a non-empty string")
        options = options or BatchOptions()
        now = self._clock()
        batch = Batch(
            id=generate_batch_id(),
            category=category,
            created_at=now,
            options=options,
        )
        batch.items = [
            BatchItem(batch_id=batch.id, index=i, file=f) for i, f in enumerate(files)
        ]
        with self._lock:
            self._registry.add(batch)
            self._settle(batch, now)
        Log.info(
            f"Batch {batch.id} created with {batch.total} file(s) "
            f"(category={category}, priority={options.priority.value})"
        )
        self.tick()
        return SubmissionReceipt(
            batch_id=batch.id,
            total_files=batch.total,
            estimated_seconds=batch.total * self._seconds_per_file,
        )

    def get_status(self, batch_id: str) -> BatchStatusView | None:
        with self._lock:
            batch = self._registry.find(batch_id)
            return self._view(batch) if batch is not None else None

    def list_active_batches(self) -> list[BatchStatusView]:
        """Unfinished batches, newest first."""
        with self._lock:
            views = [self._view(b) for b in self._registry if not b.is_terminal()]
        return sorted(views, key=lambda v: v.created_at, reverse=True)

    def cancel(self, batch_id: str) -> bool:
        """Cancel every queued item. In-flight items run to completion."""
        with self._lock:
            batch = self._registry.find(batch_id)
            if batch is None or batch.is_terminal():
                Log.warning(f"Batch {batch_id} not found or already finished, nothing to cancel")
                return False
            now = self._clock()
            batch.cancel_requested = True
            cancelled = 0
            for item in batch.items:
                if item.status == ItemStatus.QUEUED:
                    transition_item(item, ItemStatus.CANCELLED, now)
                    cancelled += 1
            self._settle(batch, now)
        Log.info(f"Batch {batch_id} cancelled ({cancelled} queued item(s) dropped)")
        return True

    def retry_failed(self, batch_id: str) -> bool:
        """Requeue every failed item of a batch with a fresh attempt budget."""
        with self._lock:
            batch = self._registry.find(batch_id)
            if batch is None:
                Log.warning(f"Batch {batch_id} not found, nothing to retry")
                return False
            failed_items = [i for i in batch.items if i.status == ItemStatus.FAILED]
            if not failed_items:
                return False
            for item in failed_items:
                reset_item_for_retry(item)
            batch.failed -= len(failed_items)
            batch.processed -= len(failed_items)
            batch.cancel_requested = False
            batch.status = BatchStatus.PROCESSING
            batch.completed_at = None
            self._checkpoints.checkpoint(batch)
        Log.info(f"Batch {batch_id}: {len(failed_items)} failed item(s) requeued")
        self.tick()
        return True

    def get_statistics(self) -> QueueStatistics:
        with self._lock:
            batches = list(self._registry)
        return QueueStatistics(
            total_batches=len(batches),
            active_batches=sum(1 for b in batches if not b.is_terminal()),
            completed_batches=sum(1 for b in batches if b.status == BatchStatus.COMPLETED),
            total_files=sum(b.total for b in batches),
            processed_files=sum(b.processed for b in batches),
            succeeded_files=sum(b.succeeded for b in batches),
            failed_files=sum(b.failed for b in batches),
        )

    def purge_expired(self) -> int:
        """Drop terminal batches older than the retention window."""
        with self._lock:
            expired = [b for b in self._registry if self._checkpoints.is_expired(b)]
            for batch in expired:
                self._registry.remove(batch)
                self._checkpoints.delete(batch)
        for batch in expired:
            Log.info(f"Cleaned up finished batch {batch.key}")
        return len(expired)

    def wait_until_idle(self, timeout: float | None = None) -> bool:
        """Block until nothing is running, retrying, or waiting to be dispatched."""
        with self._changed:
            return self._changed.wait_for(self._is_idle, timeout)

    # -- dispatch loop ---------------------------------------------------

    def tick(self) -> int:
        """Fill free concurrency slots. Safe to call at any time, from any thread."""
        dispatched = 0
        with self._lock:
            if not self._running:
                return 0
            while self._ceiling - self._registry.count_items(ItemStatus.PROCESSING) > 0:
                candidate = self._registry.next_eligible_item()
                if candidate is None:
                    break
                self._dispatch(*candidate)
                dispatched += 1
        return dispatched

    def _dispatch(self, batch: Batch, item: BatchItem) -> None:
        assert self._pool is not None
        now = self._clock()
        transition_item(item, ItemStatus.PROCESSING, now)
        evaluate_batch(batch, now)
        self._checkpoints.checkpoint(batch)
        Log.info(f"Dispatching {item.id} ({item.file.name}), attempt {item.attempts + 1}")
        self._pool.submit(self._run_task, batch.key, item.index, item.file)

    def _run_task(self, batch_key: str, index: int, file: SubmittedFile) -> None:
        try:
            result = self._execute(file)
            if result.success and result.data is not None:
                self._persist_result(batch_key, index, result.data)
            self._on_task_finished(batch_key, index, result)
        except Exception as exc:
            Log.exception(f"Unexpected error finishing {batch_key}#{index}: {exc}")

    def _execute(self, file: SubmittedFile) -> TaskResult:
        try:
            result = self._executor.execute(file)
        except Exception as exc:
            return TaskResult.failure(str(exc) or type(exc).__name__)
        if not isinstance(result, TaskResult):
            return TaskResult.failure(f"Executor returned {type(result).__name__}")
        return result

    def _persist_result(self, batch_key: str, index: int, data: dict[str, Any]) -> None:
        if self._result_sink is None:
            return
        with self._lock:
            batch = self._registry.get(batch_key)
            if batch is None or not batch.options.auto_persist_results:
                return
            category = batch.category
            item = dataclasses.replace(_find_item(batch, index), result=data)
        try:
            self._result_sink.save(category, item, data)
        except Exception as exc:
            Log.error(f"Auto-save of {item.id} failed: {exc}")

    def _on_task_finished(self, batch_key: str, index: int, result: TaskResult) -> None:
        with self._lock:
            batch = self._registry.get(batch_key)
            if batch is None:
                Log.warning(f"Result for {batch_key}#{index} arrived after the batch was purged")
                return
            item = _find_item(batch, index)
            if item.status != ItemStatus.PROCESSING:
                Log.warning(f"Ignoring result for {item.id} in state {item.status.value}")
                return
            now = self._clock()
            decision = self._retry.on_result(batch, item, result, now)
            if decision.status == ItemStatus.RETRYING:
                self._arm_backoff(batch, item, decision.backoff_seconds)
            self._settle(batch, now)
        self.tick()

    def _arm_backoff(self, batch: Batch, item: BatchItem, delay: float) -> None:
        timer = self._timer_factory(
            delay, self._on_backoff_elapsed, args=(batch.key, item.index)
        )
        timer.daemon = True
        self._timers[item.id] = timer
        timer.start()

    def _on_backoff_elapsed(self, batch_key: str, index: int) -> None:
        with self._lock:
            batch = self._registry.get(batch_key)
            if batch is None:
                return
            item = _find_item(batch, index)
            self._timers.pop(item.id, None)
            if item.status != ItemStatus.RETRYING:
                return
            now = self._clock()
            transition_item(item, ItemStatus.QUEUED, now)
            if batch.cancel_requested:
                transition_item(item, ItemStatus.CANCELLED, now)
            self._settle(batch, now)
        self.tick()

    def _settle(self, batch: Batch, now: datetime) -> None:
        """Re-evaluate, checkpoint and, on a terminal edge, notify. Lock held."""
        became_terminal = evaluate_batch(batch, now)
        self._checkpoints.checkpoint(batch)
        if became_terminal:
            if batch.status == BatchStatus.COMPLETED:
                self._notifier.on_batch_completed(batch, now)
            else:
                Log.info(f"Batch {batch.id} finished as cancelled")
        self._changed.notify_all()

    def _is_idle(self) -> bool:
        if self._registry.count_items(ItemStatus.PROCESSING):
            return False
        if not self._running:
            return True
        if self._registry.count_items(ItemStatus.RETRYING):
            return False
        return self._registry.next_eligible_item() is None

    def _view(self, batch: Batch) -> BatchStatusView:
        remaining = batch.count(ItemStatus.QUEUED) + batch.count(ItemStatus.RETRYING)
        return BatchStatusView(
            batch_id=batch.id,
            category=batch.category,
            status=batch.status,
            priority=batch.priority,
            progress_percent=round(batch.processed / batch.total * 100) if batch.total else 0,
            total=batch.total,
            processed=batch.processed,
            succeeded=batch.succeeded,
            failed=batch.failed,
            items=[
                ItemStatusView(
                    id=item.id,
                    name=item.file.name,
                    status=item.status,
                    attempts=item.attempts,
                    error=item.error,
                )
                for item in batch.items
            ],
            estimated_remaining_seconds=remaining * self._seconds_per_file,
            created_at=batch.created_at,
            completed_at=batch.completed_at,
        )


def _find_item(batch: Batch, index: int) -> BatchItem:
    for item in batch.items:
        if item.index == index:
            return item
    raise KeyError(f"Batch {batch.id} has no item {index}")


def build_scheduler(
    settings: Settings,
    executor: BaseTaskExecutor,
    store: BaseKeyValueStore,
    channel: BaseNotificationChannel,
    result_sink: BaseResultSink | None = None,
) -> Scheduler:
    """Wire checkpoints, notifier and scheduler from settings."""
    checkpoints = CheckpointStore(
        store,
        retention=timedelta(hours=settings.completed_batch_retention_hours),
        clock=utcnow,
    )
    notifier = CompletionNotifier(channel, checkpoints)
    return Scheduler(executor, checkpoints, notifier, settings, result_sink=result_sink)
