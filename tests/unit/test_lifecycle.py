from unittest.mock import MagicMock

from docqueue.scheduler.lifecycle import LifecycleHooks
from docqueue.scheduler.notifier import LogNotificationChannel


def _make_hooks() -> tuple[LifecycleHooks, MagicMock, LogNotificationChannel]:
    scheduler = MagicMock()
    scheduler.notifier.flush_pending.return_value = 2
    scheduler.tick.return_value = 1
    channel = LogNotificationChannel(active=False)
    return LifecycleHooks(scheduler, channel), scheduler, channel


class TestLifecycleHooks:
    def test_resume_marks_active_and_flushes(self) -> None:
        hooks, scheduler, channel = _make_hooks()

        delivered = hooks.on_resume()

        assert delivered == 2
        assert channel.is_consumer_active() is True
        scheduler.notifier.flush_pending.assert_called_once()
        scheduler.tick.assert_called_once()

    def test_background_marks_inactive(self) -> None:
        hooks, _scheduler, channel = _make_hooks()
        channel.set_active(True)

        hooks.on_background()

        assert channel.is_consumer_active() is False

    def test_terminate_checkpoints_everything(self) -> None:
        hooks, scheduler, _channel = _make_hooks()

        hooks.on_terminate()

        scheduler.checkpoint_all.assert_called_once()
