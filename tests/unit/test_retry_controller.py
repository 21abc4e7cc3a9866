from datetime import datetime, timezone

import pytest

from docqueue.queue.exceptions import InvalidTransitionError
from docqueue.queue.models import Batch, BatchItem, ItemStatus, SubmittedFile, TaskResult
from docqueue.scheduler.retry import RetryController

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _make_pair(attempts: int = 0) -> tuple[Batch, BatchItem]:
    batch = Batch(id="b1", category="purchase_order", created_at=NOW)
    item = BatchItem(
        batch_id="b1",
        index=0,
        file=SubmittedFile(name="po.pdf"),
        status=ItemStatus.PROCESSING,
        attempts=attempts,
        started_at=NOW,
    )
    batch.items = [item]
    return batch, item


class TestSuccess:
    def test_completes_and_attaches_result(self) -> None:
        controller = RetryController(max_attempts=3, base_delay_seconds=5.0)
        batch, item = _make_pair()

        decision = controller.on_result(batch, item, TaskResult.ok({"total": 10}), NOW)

        assert decision.status == ItemStatus.COMPLETED
        assert item.status == ItemStatus.COMPLETED
        assert item.result == {"total": 10}
        assert (batch.processed, batch.succeeded, batch.failed) == (1, 1, 0)

    def test_does_not_count_an_attempt(self) -> None:
        controller = RetryController(max_attempts=3, base_delay_seconds=5.0)
        batch, item = _make_pair()
        controller.on_result(batch, item, TaskResult.ok(), NOW)
        assert item.attempts == 0


class TestFailureBelowMax:
    def test_schedules_retry_with_growing_backoff(self) -> None:
        controller = RetryController(max_attempts=3, base_delay_seconds=5.0)
        batch, item = _make_pair(attempts=1)

        decision = controller.on_result(batch, item, TaskResult.failure("timeout"), NOW)

        assert decision.status == ItemStatus.RETRYING
        assert decision.backoff_seconds == 10.0
        assert item.status == ItemStatus.RETRYING
        assert item.attempts == 2
        assert batch.processed == 0

    def test_first_failure_waits_one_base_delay(self) -> None:
        controller = RetryController(max_attempts=3, base_delay_seconds=5.0)
        batch, item = _make_pair()
        decision = controller.on_result(batch, item, TaskResult.failure("boom"), NOW)
        assert decision.backoff_seconds == 5.0

    def test_missing_error_message_gets_default(self) -> None:
        controller = RetryController(max_attempts=3, base_delay_seconds=5.0)
        batch, item = _make_pair()
        controller.on_result(batch, item, TaskResult(success=False), NOW)
        assert item.error == "Extraction failed"


class TestFailureAtMax:
    def test_marks_failed_on_last_attempt(self) -> None:
        controller = RetryController(max_attempts=3, base_delay_seconds=5.0)
        batch, item = _make_pair(attempts=2)

        decision = controller.on_result(batch, item, TaskResult.failure("boom"), NOW)

        assert decision.status == ItemStatus.FAILED
        assert item.status == ItemStatus.FAILED
        assert item.attempts == 3
        assert item.error == "boom"
        assert (batch.processed, batch.succeeded, batch.failed) == (1, 0, 1)

    def test_single_attempt_ceiling_fails_immediately(self) -> None:
        controller = RetryController(max_attempts=1, base_delay_seconds=5.0)
        batch, item = _make_pair()
        decision = controller.on_result(batch, item, TaskResult.failure("boom"), NOW)
        assert decision.status == ItemStatus.FAILED
        assert item.attempts == 1


class TestGuards:
    def test_rejects_item_not_processing(self) -> None:
        controller = RetryController(max_attempts=3, base_delay_seconds=5.0)
        batch, item = _make_pair()
        item.status = ItemStatus.QUEUED
        with pytest.raises(InvalidTransitionError):
            controller.on_result(batch, item, TaskResult.ok(), NOW)
