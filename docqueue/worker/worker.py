import threading
import time
from collections.abc import Callable

from docqueue.config.settings import Settings
from docqueue.logging.logger import Log
from docqueue.scheduler.lifecycle import LifecycleHooks
from docqueue.scheduler.scheduler import Scheduler


class Worker:
    """Safety-net loop: tick -> sweep expired batches -> sleep."""

    def __init__(
        self,
        scheduler: Scheduler,
        hooks: LifecycleHooks,
        settings: Settings,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._scheduler = scheduler
        self._hooks = hooks
        self._settings = settings
        self._monotonic = monotonic
        self._stop = threading.Event()
        self._last_sweep: float | None = None

    def run(self, max_cycles: int | None = None, drain: bool = False) -> None:
        """Loop until stopped or interrupted.

        With ``drain`` the loop ends once the scheduler is idle. ``max_cycles``
        bounds the number of iterations (for testing).
        """
        Log.info(
            f"Worker started, ticking every {self._settings.safety_tick_interval_seconds}s"
        )
        cycles = 0
        try:
            while not self._stop.is_set():
                self._cycle()
                cycles += 1
                if max_cycles is not None and cycles >= max_cycles:
                    break
                interval = self._settings.safety_tick_interval_seconds
                if drain:
                    if self._scheduler.wait_until_idle(timeout=interval):
                        Log.info("Queue drained")
                        break
                else:
                    self._stop.wait(interval)
        except KeyboardInterrupt:
            Log.info("Worker shutting down gracefully")
        finally:
            self._hooks.on_terminate()

    def stop(self) -> None:
        self._stop.set()

    def _cycle(self) -> None:
        """One safety-net pass. Errors are logged and retried next cycle."""
        try:
            dispatched = self._scheduler.tick()
            if dispatched:
                Log.debug(f"Safety tick dispatched {dispatched} item(s)")
            if self._sweep_due():
                self._scheduler.purge_expired()
        except Exception as exc:
            Log.warning(f"Worker cycle failed, will retry: {exc}")

    def _sweep_due(self) -> bool:
        now = self._monotonic()
        if self._last_sweep is None or now - self._last_sweep >= self._settings.cleanup_interval_seconds:
            self._last_sweep = now
            return True
        return False
