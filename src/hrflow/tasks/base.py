"""Base task class and async task decorator."""

import asyncio
import functools
import logging
from typing import Any, Callable, TypeVar

from celery import Task

from hrflow.core.celery_app import celery_app
from hrflow.services.workflow.errors import PersistenceFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")

# One loop per worker process; pooled database connections are bound to it
_loop: asyncio.AbstractEventLoop | None = None


def get_worker_loop() -> asyncio.AbstractEventLoop:
    """Event loop shared by every async task run in this process."""
    global _loop
    if _loop is None or _loop.is_closed():
        _loop = asyncio.new_event_loop()
    return _loop


class RetryableTask(Task):
    """Task retried with exponential backoff while the request store is down.

    Only PersistenceFailure is retried; validation errors are final.
    """

    abstract = True
    autoretry_for = (PersistenceFailure,)
    retry_backoff = True
    retry_backoff_max = 600
    retry_jitter = True
    max_retries = 3

    def on_failure(self, exc, task_id, args, kwargs, einfo) -> None:
        attempts = self.request.retries + 1
        logger.error(
            f"{self.name} [{task_id}] gave up after {attempts} attempt(s): {exc}",
            exc_info=exc,
        )

    def on_retry(self, exc, task_id, args, kwargs, einfo) -> None:
        logger.warning(
            f"{self.name} [{task_id}] store unavailable, "
            f"retry {self.request.retries + 1}/{self.max_retries}: {exc}"
        )


def async_task(
    *args: Any,
    bind: bool = True,
    base: type[Task] = RetryableTask,
    **kwargs: Any,
) -> Callable:
    """Decorator for async Celery tasks.

    Every invocation runs on the process-wide worker loop.

    @param bind - Bind task instance to first argument
    @param base - Base task class to use
    @returns Decorated task function
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @celery_app.task(*args, bind=bind, base=base, **kwargs)
        @functools.wraps(func)
        def wrapper(*task_args: Any, **task_kwargs: Any) -> T:
            return get_worker_loop().run_until_complete(func(*task_args, **task_kwargs))

        return wrapper

    return decorator


def get_task_logger(task_name: str) -> logging.Logger:
    """Get logger for a specific task.

    @param task_name - Name of the task
    @returns Configured logger
    """
    return logging.getLogger(f"celery.task.{task_name}")
