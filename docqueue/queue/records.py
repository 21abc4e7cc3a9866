"""Persisted Record shape: a JSON-safe projection of a batch and its items.

The in-memory file content is never written. Parsing enforces the shape and
raises CorruptRecordError on anything unexpected.
"""

from datetime import datetime
from typing import Any

from docqueue.queue.exceptions import CorruptRecordError
from docqueue.queue.models import (
    Batch,
    BatchItem,
    BatchOptions,
    BatchStatus,
    ItemStatus,
    SubmittedFile,
)

RECORD_VERSION = 1


def batch_to_record(batch: Batch) -> dict[str, Any]:
    return {
        "version": RECORD_VERSION,
        "id": batch.id,
        "category": batch.category,
        "status": batch.status.value,
        "created_at": batch.created_at.isoformat(),
        "completed_at": _format_dt(batch.completed_at),
        "cancel_requested": batch.cancel_requested,
        "options": {
            "priority": batch.options.priority.value,
            "notify_on_complete": batch.options.notify_on_complete,
            "auto_persist_results": batch.options.auto_persist_results,
        },
        "counts": {
            "total": batch.total,
            "processed": batch.processed,
            "succeeded": batch.succeeded,
            "failed": batch.failed,
        },
        "items": [_item_to_record(item) for item in batch.items],
    }


def _item_to_record(item: BatchItem) -> dict[str, Any]:
    return {
        "id": item.id,
        "index": item.index,
        "name": item.file.name,
        "size": item.file.size,
        "mime_type": item.file.mime_type,
        "path": item.file.path,
        "status": item.status.value,
        "attempts": item.attempts,
        "error": item.error,
        "started_at": _format_dt(item.started_at),
        "completed_at": _format_dt(item.completed_at),
        "result": item.result,
    }


def build_batch_from_record(data: Any) -> Batch:
    """Rebuild a batch from a persisted record.

    Raises:
        CorruptRecordError: on any missing field, bad type or broken counter.
    """
    if not isinstance(data, dict):
        raise CorruptRecordError("Record must be an object")
    batch_id = _require_str(data, "id")
    options = _build_options(data.get("options"))
    batch = Batch(
        id=batch_id,
        category=_require_str(data, "category"),
        created_at=_parse_dt(data.get("created_at"), "created_at", required=True),
        options=options,
        status=_parse_enum(BatchStatus, data.get("status"), "status"),
        completed_at=_parse_dt(data.get("completed_at"), "completed_at"),
        cancel_requested=bool(data.get("cancel_requested", False)),
    )
    raw_items = data.get("items")
    if not isinstance(raw_items, list):
        raise CorruptRecordError(f"Batch {batch_id}: 'items' must be a list")
    batch.items = [_build_item(batch_id, raw, i) for i, raw in enumerate(raw_items)]
    _apply_counts(batch, data.get("counts"))
    return batch


def _build_options(raw: Any) -> BatchOptions:
    if not isinstance(raw, dict):
        raise CorruptRecordError("'options' must be an object")
    try:
        return BatchOptions(
            priority=raw.get("priority", "normal"),
            notify_on_complete=bool(raw.get("notify_on_complete", True)),
            auto_persist_results=bool(raw.get("auto_persist_results", True)),
        )
    except ValueError as exc:
        raise CorruptRecordError(f"Invalid options: {exc}") from exc


def _build_item(batch_id: str, raw: Any, position: int) -> BatchItem:
    if not isinstance(raw, dict):
        raise CorruptRecordError(f"Item at position {position} must be an object")
    index = raw.get("index")
    if not isinstance(index, int) or isinstance(index, bool):
        raise CorruptRecordError(f"Item at position {position}: 'index' must be an int")
    attempts = raw.get("attempts", 0)
    if not isinstance(attempts, int) or attempts < 0:
        raise CorruptRecordError(f"Item {index}: 'attempts' must be a non-negative int")
    size = raw.get("size", 0)
    if not isinstance(size, int):
        raise CorruptRecordError(f"Item {index}: 'size' must be an int")
    result = raw.get("result")
    if result is not None and not isinstance(result, dict):
        raise CorruptRecordError(f"Item {index}: 'result' must be an object or null")
    path = raw.get("path")
    if path is not None and not isinstance(path, str):
        raise CorruptRecordError(f"Item {index}: 'path' must be a string or null")
    return BatchItem(
        batch_id=batch_id,
        index=index,
        file=SubmittedFile(
            name=_require_str(raw, "name"),
            size=size,
            mime_type=raw.get("mime_type") or "application/octet-stream",
            path=path,
        ),
        status=_parse_enum(ItemStatus, raw.get("status"), f"items[{index}].status"),
        attempts=attempts,
        error=raw.get("error"),
        started_at=_parse_dt(raw.get("started_at"), "started_at"),
        completed_at=_parse_dt(raw.get("completed_at"), "completed_at"),
        result=result,
    )


def _apply_counts(batch: Batch, raw: Any) -> None:
    if not isinstance(raw, dict):
        raise CorruptRecordError(f"Batch {batch.id}: 'counts' must be an object")
    for name in ("processed", "succeeded", "failed"):
        value = raw.get(name)
        if not isinstance(value, int) or value < 0:
            raise CorruptRecordError(f"Batch {batch.id}: count '{name}' must be a non-negative int")
        setattr(batch, name, value)
    if batch.processed != batch.succeeded + batch.failed or batch.processed > batch.total:
        raise CorruptRecordError(f"Batch {batch.id}: inconsistent counters {raw!r}")


def _require_str(data: dict[str, Any], name: str) -> str:
    value = data.get(name)
    if not value or not isinstance(value, str):
        raise CorruptRecordError(f"'{name}' must be a non-empty string")
    return value


def _parse_enum(enum_cls: Any, raw: Any, name: str) -> Any:
    try:
        return enum_cls(raw)
    except ValueError as exc:
        raise CorruptRecordError(f"'{name}' has unknown value {raw!r}") from exc


def _parse_dt(raw: Any, name: str, required: bool = False) -> datetime | None:
    if raw is None:
        if required:
            raise CorruptRecordError(f"'{name}' is required")
        return None
    if not isinstance(raw, str):
        raise CorruptRecordError(f"'{name}' must be an ISO timestamp")
    try:
        return datetime.fromisoformat(raw)
    except ValueError as exc:
        raise CorruptRecordError(f"'{name}' is not an ISO timestamp: {raw!r}") from exc


def _format_dt(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
