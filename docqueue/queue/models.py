import mimetypes
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any


class Priority(str, Enum):
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


# Dispatch scan order. No aging: a steady high stream starves lower classes.
PRIORITY_SCAN_ORDER: tuple[Priority, ...] = (Priority.HIGH, Priority.NORMAL, Priority.LOW)


class ItemStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    RETRYING = "retrying"
    FAILED = "failed"
    CANCELLED = "cancelled"


class BatchStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_ITEM_STATUSES = frozenset(
    {ItemStatus.COMPLETED, ItemStatus.FAILED, ItemStatus.CANCELLED}
)
TERMINAL_BATCH_STATUSES = frozenset({BatchStatus.COMPLETED, BatchStatus.CANCELLED})


@dataclass(frozen=True)
class BatchOptions:
    """Caller-supplied per-batch configuration."""

    priority: Priority = Priority.NORMAL
    notify_on_complete: bool = True
    auto_persist_results: bool = True

    def __post_init__(self) -> None:
        # Accept plain strings ("high") from callers and persisted records.
        object.__setattr__(self, "priority", Priority(self.priority))


@dataclass(frozen=True)
class SubmittedFile:
    """One document handed to the queue.

    ``content`` is the in-memory payload and is never persisted. ``path`` is
    the durable source reference a recovered item is re-read from.
    """

    name: str
    size: int = 0
    mime_type: str = "application/octet-stream"
    path: str | None = None
    content: bytes | None = field(default=None, repr=False)

    @classmethod
    def from_path(cls, path: str | Path) -> "SubmittedFile":
        file_path = Path(path)
        mime_type, _ = mimetypes.guess_type(file_path.name)
        return cls(
            name=file_path.name,
            size=file_path.stat().st_size,
            mime_type=mime_type or "application/octet-stream",
            path=str(file_path),
        )

    def read_bytes(self) -> bytes:
        """Return the in-memory content, falling back to the source path."""
        if self.content is not None:
            return self.content
        if self.path is None:
            raise FileNotFoundError(f"No content or source path for {self.name}")
        return Path(self.path).read_bytes()


@dataclass(frozen=True)
class TaskResult:
    """Outcome of one Task Executor invocation."""

    success: bool
    data: dict[str, Any] | None = None
    error: str | None = None

    @classmethod
    def ok(cls, data: dict[str, Any] | None = None) -> "TaskResult":
        return cls(success=True, data=data)

    @classmethod
    def failure(cls, error: str) -> "TaskResult":
        return cls(success=False, error=error)


@dataclass
class BatchItem:
    """One file inside a batch and its processing state."""

    batch_id: str
    index: int
    file: SubmittedFile
    status: ItemStatus = ItemStatus.QUEUED
    attempts: int = 0
    error: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    result: dict[str, Any] | None = None

    @property
    def id(self) -> str:
        return f"{self.batch_id}_file_{self.index}"


@dataclass
class Batch:
    """A group of submitted files processed as one unit."""

    id: str
    category: str
    created_at: datetime
    options: BatchOptions = field(default_factory=BatchOptions)
    status: BatchStatus = BatchStatus.QUEUED
    items: list[BatchItem] = field(default_factory=list)
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    completed_at: datetime | None = None
    cancel_requested: bool = False

    @property
    def key(self) -> str:
        """Registry key: category plus batch id."""
        return f"{self.category}_{self.id}"

    @property
    def total(self) -> int:
        return len(self.items)

    @property
    def priority(self) -> Priority:
        return self.options.priority

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_BATCH_STATUSES

    def count(self, status: ItemStatus) -> int:
        return sum(1 for item in self.items if item.status == status)

    def next_queued_item(self) -> BatchItem | None:
        for item in self.items:
            if item.status == ItemStatus.QUEUED:
                return item
        return None


@dataclass(frozen=True)
class BatchSummary:
    """Aggregate outcome of a finished batch."""

    total: int
    succeeded: int
    failed: int
    duration_seconds: float

    @property
    def duration_text(self) -> str:
        minutes, seconds = divmod(int(self.duration_seconds), 60)
        return f"{minutes}m {seconds}s"

    @property
    def level(self) -> str:
        return "warning" if self.failed > 0 else "success"


@dataclass(frozen=True)
class Notification:
    """A completion notice, delivered now or kept until the consumer returns."""

    batch_id: str
    summary: BatchSummary
    created_at: datetime


@dataclass(frozen=True)
class SubmissionReceipt:
    batch_id: str
    total_files: int
    estimated_seconds: int


@dataclass(frozen=True)
class ItemStatusView:
    id: str
    name: str
    status: ItemStatus
    attempts: int
    error: str | None


@dataclass(frozen=True)
class BatchStatusView:
    """Read-only snapshot of a batch handed to callers."""

    batch_id: str
    category: str
    status: BatchStatus
    priority: Priority
    progress_percent: int
    total: int
    processed: int
    succeeded: int
    failed: int
    items: list[ItemStatusView]
    estimated_remaining_seconds: int
    created_at: datetime
    completed_at: datetime | None


@dataclass(frozen=True)
class QueueStatistics:
    total_batches: int
    active_batches: int
    completed_batches: int
    total_files: int
    processed_files: int
    succeeded_files: int
    failed_files: int


def generate_batch_id() -> str:
    return f"batch_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"
