from docqueue.logging.logger import Log
from docqueue.scheduler.notifier import BaseNotificationChannel
from docqueue.scheduler.scheduler import Scheduler


class LifecycleHooks:
    """React to environment signals: resume, background, terminate."""

    def __init__(self, scheduler: Scheduler, channel: BaseNotificationChannel) -> None:
        self._scheduler = scheduler
        self._channel = channel

    def on_resume(self) -> int:
        """Consumer is back: deliver deferred notices and restart dispatch."""
        self._channel.set_active(True)
        delivered = self._scheduler.notifier.flush_pending()
        dispatched = self._scheduler.tick()
        Log.info(f"Resumed: {delivered} notification(s) delivered, {dispatched} item(s) dispatched")
        return delivered

    def on_background(self) -> None:
        self._channel.set_active(False)
        Log.info("Consumer went to background, completion notices will be deferred")

    def on_terminate(self) -> None:
        """Force a checkpoint of every batch before the process goes away."""
        Log.info("Termination signal received, checkpointing all batches")
        self._scheduler.checkpoint_all()
