"""Resolve executors and result sinks from ``module:attribute`` settings."""

import importlib
from collections.abc import Callable
from typing import Any

from docqueue.executor.base import BaseResultSink, BaseTaskExecutor
from docqueue.queue.models import SubmittedFile, TaskResult


class FunctionTaskExecutor(BaseTaskExecutor):
    """Adapts a plain ``fn(file) -> TaskResult | dict`` callable."""

    def __init__(self, fn: Callable[[SubmittedFile], Any]) -> None:
        self._fn = fn

    def execute(self, file: SubmittedFile) -> TaskResult:
        outcome = self._fn(file)
        if isinstance(outcome, TaskResult):
            return outcome
        if outcome is None or isinstance(outcome, dict):
            return TaskResult.ok(outcome)
        raise TypeError(
            f"Executor function returned {type(outcome).__name__}, "
            "expected TaskResult, dict or None"
        )


def import_object(path: str) -> Any:
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Expected 'module:attribute', got '{path}'")
    module = importlib.import_module(module_name)
    try:
        return getattr(module, attr)
    except AttributeError as exc:
        raise ValueError(f"Module '{module_name}' has no attribute '{attr}'") from exc


def load_task_executor(path: str) -> BaseTaskExecutor:
    if not path:
        raise ValueError("task_executor is not configured (expected 'module:attribute')")
    obj = import_object(path)
    if isinstance(obj, type) and issubclass(obj, BaseTaskExecutor):
        return obj()
    if isinstance(obj, BaseTaskExecutor):
        return obj
    if callable(obj):
        return FunctionTaskExecutor(obj)
    raise ValueError(f"'{path}' is not a task executor")


def load_result_sink(path: str) -> BaseResultSink | None:
    if not path:
        return None
    obj = import_object(path)
    if isinstance(obj, type) and issubclass(obj, BaseResultSink):
        return obj()
    if isinstance(obj, BaseResultSink):
        return obj
    raise ValueError(f"'{path}' is not a result sink")
