class QueueError(Exception):
    """Base exception for batch queue errors."""


class InvalidTransitionError(QueueError):
    """Raised when an item or batch is moved along an edge its state machine lacks."""


class CorruptRecordError(QueueError):
    """Raised when a persisted batch record cannot be turned back into a batch."""
