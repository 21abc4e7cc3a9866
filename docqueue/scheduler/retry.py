from dataclasses import dataclass
from datetime import datetime

from docqueue.logging.logger import Log
from docqueue.queue.models import Batch, BatchItem, ItemStatus, TaskResult
from docqueue.queue.state import transition_item


@dataclass(frozen=True)
class RetryDecision:
    status: ItemStatus
    backoff_seconds: float = 0.0


class RetryController:
    """Apply a task result to its item: complete, schedule a retry, or fail.

    Every failure is retryable until the attempt ceiling is reached.
    """

    def __init__(self, max_attempts: int, base_delay_seconds: float) -> None:
        self._max_attempts = max_attempts
        self._base_delay_seconds = base_delay_seconds

    def on_result(
        self, batch: Batch, item: BatchItem, result: TaskResult, now: datetime
    ) -> RetryDecision:
        if result.success:
            transition_item(item, ItemStatus.COMPLETED, now)
            item.result = result.data
            item.error = None
            batch.succeeded += 1
            batch.processed += 1
            Log.info(f"Item {item.id} ({item.file.name}) completed")
            return RetryDecision(ItemStatus.COMPLETED)
        return self._handle_failure(batch, item, result.error or "Extraction failed", now)

    def _handle_failure(
        self, batch: Batch, item: BatchItem, error: str, now: datetime
    ) -> RetryDecision:
        item.attempts += 1
        item.error = error
        Log.error(f"Item {item.id} ({item.file.name}) failed: {error}")
        if item.attempts >= self._max_attempts:
            transition_item(item, ItemStatus.FAILED, now)
            batch.failed += 1
            batch.processed += 1
            Log.error(f"Item {item.id} permanently failed after {item.attempts} attempts")
            return RetryDecision(ItemStatus.FAILED)

        transition_item(item, ItemStatus.RETRYING, now)
        delay = self._base_delay_seconds * item.attempts
        Log.warning(
            f"Item {item.id} will be retried in {delay:g}s "
            f"(attempt {item.attempts} of {self._max_attempts})"
        )
        return RetryDecision(ItemStatus.RETRYING, delay)
