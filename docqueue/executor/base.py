from abc import ABC, abstractmethod
from typing import Any

from docqueue.queue.models import BatchItem, SubmittedFile, TaskResult


class BaseTaskExecutor(ABC):
    """Contract for the extraction call the queue drives.

    Implementations own their timeout. A timeout, an exception, or a
    ``TaskResult(success=False)`` are all the same failure to the queue.
    """

    @abstractmethod
    def execute(self, file: SubmittedFile) -> TaskResult:
        """Process one file.

        Args:
            file: The submitted file. ``content`` may be None for items
                recovered after a restart; use ``file.read_bytes()``.

        Returns:
            TaskResult with ``data`` on success or ``error`` on failure.
        """


class BaseResultSink(ABC):
    """Receives successful results of batches submitted with auto-persist on.

    Called at least once per successful item, possibly more after a crash,
    so implementations must be idempotent or check for duplicates.
    """

    @abstractmethod
    def save(self, category: str, item: BatchItem, data: dict[str, Any]) -> None:
        """Store the extracted data for one item."""
