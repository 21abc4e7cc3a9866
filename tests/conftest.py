import threading
import time
from collections.abc import Callable, Generator
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from docqueue.config.settings import Settings
from docqueue.executor.base import BaseResultSink, BaseTaskExecutor
from docqueue.persistence.checkpoints import CheckpointStore
from docqueue.persistence.memory_store import InMemoryStore
from docqueue.queue.models import SubmittedFile, TaskResult
from docqueue.scheduler.notifier import BaseNotificationChannel, CompletionNotifier
from docqueue.scheduler.scheduler import Scheduler


class RecordingChannel(BaseNotificationChannel):
    """Notification channel that remembers what it delivered."""

    def __init__(self, active: bool = True) -> None:
        self.active = active
        self.messages: list[tuple[str, str]] = []

    def is_consumer_active(self) -> bool:
        return self.active

    def notify_user(self, message: str, level: str) -> None:
        self.messages.append((message, level))

    def set_active(self, active: bool) -> None:
        self.active = active


class ScriptedExecutor(BaseTaskExecutor):
    """Executor whose behavior per file name is scripted by the test.

    ``failures`` maps a file name to how many calls fail before one succeeds.
    Tracks call order and the highest number of overlapping calls.
    """

    def __init__(
        self,
        delay: float = 0.0,
        failures: dict[str, int] | None = None,
        gate: threading.Event | None = None,
    ) -> None:
        self._delay = delay
        self._failures = dict(failures or {})
        self._gate = gate
        self._lock = threading.Lock()
        self._running = 0
        self.max_running = 0
        self.calls: list[str] = []

    def execute(self, file: SubmittedFile) -> TaskResult:
        with self._lock:
            self.calls.append(file.name)
            self._running += 1
            self.max_running = max(self.max_running, self._running)
            remaining = self._failures.get(file.name, 0)
            if remaining:
                self._failures[file.name] = remaining - 1
        try:
            if self._gate is not None:
                self._gate.wait(timeout=5)
            if self._delay:
                time.sleep(self._delay)
            if remaining:
                raise RuntimeError(f"extraction of {file.name} failed")
            return TaskResult.ok({"name": file.name})
        finally:
            with self._lock:
                self._running -= 1


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


def _make_files(*names: str) -> list[SubmittedFile]:
    return [
        SubmittedFile(name=n, size=10, mime_type="application/pdf", content=b"%PDF")
        for n in names
    ]


@pytest.fixture()
def make_files() -> Callable[..., list[SubmittedFile]]:
    return _make_files


@pytest.fixture()
def make_executor() -> Callable[..., ScriptedExecutor]:
    return ScriptedExecutor


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        max_concurrent_items=3,
        max_item_attempts=3,
        retry_base_delay_seconds=0.0,
        store_backend="memory",
    )


@pytest.fixture()
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def checkpoints(store: InMemoryStore, clock: FakeClock) -> CheckpointStore:
    return CheckpointStore(store, retention=timedelta(hours=24), clock=clock)


@pytest.fixture()
def channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture()
def scheduler_factory(
    settings: Settings,
    checkpoints: CheckpointStore,
    channel: RecordingChannel,
    clock: FakeClock,
) -> Generator[Callable[..., Scheduler], None, None]:
    created: list[Scheduler] = []

    def _make(
        executor: BaseTaskExecutor,
        result_sink: BaseResultSink | None = None,
        timer_factory: Any = threading.Timer,
        **overrides: Any,
    ) -> Scheduler:
        effective = settings.model_copy(update=overrides)
        scheduler = Scheduler(
            executor,
            checkpoints,
            CompletionNotifier(channel, checkpoints),
            effective,
            result_sink=result_sink,
            clock=clock,
            timer_factory=timer_factory,
        )
        created.append(scheduler)
        return scheduler

    yield _make
    for scheduler in created:
        scheduler.shutdown(wait=True)
