import argparse
import signal
from collections.abc import Sequence

from docqueue.config.settings import Settings
from docqueue.database.connection import close_pool, init_pool
from docqueue.executor.loader import load_result_sink, load_task_executor
from docqueue.logging.logger import Log
from docqueue.persistence.factory import StoreFactory
from docqueue.queue.models import BatchOptions, Priority, SubmittedFile
from docqueue.scheduler.lifecycle import LifecycleHooks
from docqueue.scheduler.notifier import LogNotificationChannel
from docqueue.scheduler.scheduler import build_scheduler
from docqueue.worker.worker import Worker


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="docqueue",
        description="Queue documents for background extraction and run the scheduler.",
    )
    parser.add_argument("paths", nargs="*", help="files to submit as one batch")
    parser.add_argument("--category", default="purchase_order")
    parser.add_argument(
        "--priority",
        choices=[p.value for p in Priority],
        default=Priority.NORMAL.value,
    )
    parser.add_argument("--no-notify", action="store_true")
    parser.add_argument("--no-auto-persist", action="store_true")
    parser.add_argument(
        "--drain", action="store_true", help="exit once every batch has finished"
    )
    return parser.parse_args(argv)


def _install_signal_handlers(worker: Worker, hooks: LifecycleHooks) -> None:
    def _terminate(signum: int, _frame: object) -> None:
        Log.info(f"Received signal {signum}")
        worker.stop()

    signal.signal(signal.SIGTERM, _terminate)
    if hasattr(signal, "SIGUSR1"):
        signal.signal(signal.SIGUSR1, lambda *_: hooks.on_resume())
        signal.signal(signal.SIGUSR2, lambda *_: hooks.on_background())


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point: restore -> start scheduler -> submit -> run worker loop."""
    args = _parse_args(argv)
    settings = Settings()
    Log.configure(settings.log_level)
    use_postgres = settings.store_backend.lower() == "postgres"
    if use_postgres:
        init_pool(settings)

    try:
        channel = LogNotificationChannel()
        scheduler = build_scheduler(
            settings,
            executor=load_task_executor(settings.task_executor),
            store=StoreFactory.create(settings),
            channel=channel,
            result_sink=load_result_sink(settings.result_sink),
        )
        hooks = LifecycleHooks(scheduler, channel)
        worker = Worker(scheduler, hooks, settings)
        _install_signal_handlers(worker, hooks)

        scheduler.restore()
        scheduler.start()
        if args.paths:
            receipt = scheduler.submit(
                [SubmittedFile.from_path(p) for p in args.paths],
                args.category,
                BatchOptions(
                    priority=Priority(args.priority),
                    notify_on_complete=not args.no_notify,
                    auto_persist_results=not args.no_auto_persist,
                ),
            )
            Log.info(
                f"Submitted batch {receipt.batch_id}: {receipt.total_files} file(s), "
                f"~{receipt.estimated_seconds}s"
            )
        try:
            worker.run(drain=args.drain)
        finally:
            scheduler.shutdown(wait=args.drain)
    finally:
        if use_postgres:
            close_pool()


if __name__ == "__main__":
    main()
