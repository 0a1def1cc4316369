"""asyncio.Task helpers shared by the pool and the orchestrator.

Background tasks (pool workers, unit tasks, cancellation requests) are
fire-and-forget from the caller's point of view. ``log_task_exception``
is attached as a done-callback so their failures are logged instead of
being dropped by the event loop.
"""

from __future__ import annotations

import asyncio
from typing import Any

from genorun.core.logging import GenorunLogger


def log_task_exception(
    task: asyncio.Task[Any],
    logger: GenorunLogger,
    event: str,
    *,
    level: str = "error",
) -> BaseException | None:
    """Log the exception of a finished task, if it has one.

    Args:
        task: A task that is done.
        logger: Component logger to report through.
        event: Event name, e.g. ``"pool.worker_died"``.
        level: Logger method name, ``"error"`` or ``"warning"``.

    Returns:
        The task's exception, or ``None`` when it finished normally or
        was cancelled.
    """
    if task.cancelled():
        return None
    exc = task.exception()
    if exc is not None:
        log_fn = getattr(logger, level, logger.error)
        log_fn(
            event,
            error=str(exc),
            error_type=type(exc).__name__,
            task_name=task.get_name(),
        )
    return exc


def spawn_background(
    coro: Any,
    *,
    name: str,
    logger: GenorunLogger,
    event: str,
    registry: set[asyncio.Task[Any]] | None = None,
) -> asyncio.Task[Any]:
    """Start ``coro`` as a task whose failure is logged.

    When ``registry`` is given the task is held in it until done, which
    keeps a strong reference so the loop does not collect it early.
    """
    task = asyncio.create_task(coro, name=name)
    if registry is not None:
        registry.add(task)
        task.add_done_callback(registry.discard)
    task.add_done_callback(lambda t: log_task_exception(t, logger, event))
    return task


__all__ = ["log_task_exception", "spawn_background"]
