"""Membership Task Scope - Background tasks tied to one room membership.

Every task spawned while a room is joined (the join itself, pending
consumes, deferred notifies) belongs to the scope and is cancelled en
masse on leave. The task that performs the cancellation is never
cancelled by it, so the leave sequence can run from inside the scope.
"""

from __future__ import annotations

import asyncio
from typing import Any, Coroutine

from roomclient.config.constants import ROOM
from roomclient.observability.logging import get_logger

logger = get_logger(__name__)


class TaskScope:
    """Cancellable group of asyncio tasks.

    Usage:
        scope = TaskScope("room")
        scope.spawn(client.consume_stream("p1"), name="consume:p1")
        ...
        await scope.cancel_all()  # On leave
        scope.reopen()            # Before the next membership
    """

    def __init__(self, name: str = "room") -> None:
        self._name = name
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    @property
    def closed(self) -> bool:
        """Whether the scope refuses new tasks."""
        return self._closed

    @property
    def active(self) -> int:
        """Number of tasks still running."""
        return sum(1 for task in self._tasks if not task.done())

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str | None = None) -> asyncio.Task | None:
        """Run a coroutine as a task of this scope.

        Returns None (and discards the coroutine) once the scope is closed.
        """
        if self._closed:
            coro.close()
            logger.debug("task_scope_closed", scope=self._name, task=name)
            return None
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "scoped_task_failed",
                scope=self._name,
                task=task.get_name(),
                error=str(error),
                error_type=type(error).__name__,
            )

    async def cancel_all(self, timeout_ms: int | None = None) -> bool:
        """Close the scope and cancel every task except the caller.

        Args:
            timeout_ms: Max time to wait for cancelled tasks to finish

        Returns:
            True if every task finished within the timeout
        """
        if timeout_ms is None:
            timeout_ms = ROOM.TASK_CANCEL_TIMEOUT_MS

        self._closed = True
        current = asyncio.current_task()
        tasks = [t for t in self._tasks if t is not current and not t.done()]
        if not tasks:
            return True

        for task in tasks:
            task.cancel()

        _, pending = await asyncio.wait(tasks, timeout=timeout_ms / 1000.0)
        if pending:
            logger.warning(
                "task_scope_cancel_timeout",
                scope=self._name,
                pending=len(pending),
            )
        return not pending

    def reopen(self) -> None:
        """Accept new tasks again."""
        self._closed = False
