from collections.abc import Iterator

from docqueue.queue.models import (
    PRIORITY_SCAN_ORDER,
    Batch,
    BatchItem,
    ItemStatus,
)


class BatchRegistry:
    """In-memory map of every known batch, keyed by ``<category>_<batch_id>``.

    Not synchronized on its own: the scheduler holds its lock around every call.
    Insertion order is submission order.
    """

    def __init__(self) -> None:
        self._batches: dict[str, Batch] = {}

    def __len__(self) -> int:
        return len(self._batches)

    def __iter__(self) -> Iterator[Batch]:
        return iter(list(self._batches.values()))

    def add(self, batch: Batch) -> None:
        self._batches[batch.key] = batch

    def remove(self, batch: Batch) -> None:
        self._batches.pop(batch.key, None)

    def get(self, key: str) -> Batch | None:
        return self._batches.get(key)

    def find(self, batch_id: str) -> Batch | None:
        """Look a batch up by its bare id."""
        for batch in self._batches.values():
            if batch.id == batch_id:
                return batch
        return None

    def count_items(self, status: ItemStatus) -> int:
        return sum(batch.count(status) for batch in self._batches.values())

    def next_eligible_item(self) -> tuple[Batch, BatchItem] | None:
        """First queued item by priority class, then submission order, then index."""
        for priority in PRIORITY_SCAN_ORDER:
            for batch in self._batches.values():
                if batch.priority != priority:
                    continue
                if batch.is_terminal() or batch.cancel_requested:
                    continue
                item = batch.next_queued_item()
                if item is not None:
                    return batch, item
        return None
