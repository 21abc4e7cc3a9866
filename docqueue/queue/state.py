"""Item and batch state machines."""

from datetime import datetime

from docqueue.queue.exceptions import InvalidTransitionError
from docqueue.queue.models import (
    TERMINAL_ITEM_STATUSES,
    Batch,
    BatchItem,
    BatchStatus,
    ItemStatus,
)

ITEM_TRANSITIONS: dict[ItemStatus, frozenset[ItemStatus]] = {
    ItemStatus.QUEUED: frozenset({ItemStatus.PROCESSING, ItemStatus.CANCELLED}),
    ItemStatus.PROCESSING: frozenset(
        {ItemStatus.COMPLETED, ItemStatus.RETRYING, ItemStatus.FAILED}
    ),
    ItemStatus.RETRYING: frozenset({ItemStatus.QUEUED}),
    ItemStatus.COMPLETED: frozenset(),
    ItemStatus.FAILED: frozenset(),
    ItemStatus.CANCELLED: frozenset(),
}


def transition_item(item: BatchItem, target: ItemStatus, now: datetime) -> None:
    """Move an item to ``target``, stamping start/finish times.

    Raises:
        InvalidTransitionError: if the edge is not in ITEM_TRANSITIONS.
    """
    if target not in ITEM_TRANSITIONS[item.status]:
        raise InvalidTransitionError(
            f"Item {item.id}: {item.status.value} -> {target.value} is not allowed"
        )
    item.status = target
    if target == ItemStatus.PROCESSING:
        item.started_at = now
        item.completed_at = None
    elif target in TERMINAL_ITEM_STATUSES:
        item.completed_at = now


def reset_item_for_recovery(item: BatchItem) -> bool:
    """Force an interrupted item back to queued. Returns True if it changed.

    Work in flight at shutdown is lost, and so are armed backoff timers.
    """
    if item.status not in (ItemStatus.PROCESSING, ItemStatus.RETRYING):
        return False
    item.status = ItemStatus.QUEUED
    item.started_at = None
    return True


def reset_item_for_retry(item: BatchItem) -> None:
    """Manual retry of a terminally failed item."""
    if item.status != ItemStatus.FAILED:
        raise InvalidTransitionError(
            f"Item {item.id}: only failed items can be retried, got {item.status.value}"
        )
    item.status = ItemStatus.QUEUED
    item.attempts = 0
    item.error = None
    item.started_at = None
    item.completed_at = None


def evaluate_batch(batch: Batch, now: datetime) -> bool:
    """Recompute batch status after an item transition.

    Returns True exactly when the batch has just become terminal.
    """
    if batch.is_terminal():
        return False
    if all(item.status in TERMINAL_ITEM_STATUSES for item in batch.items):
        batch.status = BatchStatus.CANCELLED if batch.cancel_requested else BatchStatus.COMPLETED
        batch.completed_at = now
        return True
    if any(item.status != ItemStatus.QUEUED for item in batch.items):
        batch.status = BatchStatus.PROCESSING
    return False
