"""
Task helpers for bounded and detached operations.

``with_timeout`` races an operation against a deadline and still applies the
loser's side effect (e.g. stopping a navigation) when the deadline wins.
``BackgroundTasks`` owns fire-and-forget work whose results are joined only
opportunistically.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Coroutine, Generic, Optional, Set, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class TimeoutOutcome(Generic[T]):
    """Tagged result of ``with_timeout``."""
    completed: bool
    value: Optional[T] = None

    @property
    def timed_out(self) -> bool:
        return not self.completed


async def with_timeout(
    operation: Awaitable[T],
    timeout_s: float,
    on_timeout: Optional[Callable[[], Any]] = None,
) -> TimeoutOutcome[T]:
    """
    Run an awaitable with a hard deadline.

    Args:
        operation: Coroutine or future to run
        timeout_s: Deadline in seconds
        on_timeout: Optional callback (sync or async) run when the deadline
            wins, before the operation is cancelled; its failure is logged

    Returns:
        TimeoutOutcome with ``completed=True`` and the operation's value, or
        ``completed=False`` when the deadline was hit

    Raises:
        Exception: Whatever the operation raised if it finished first
    """
    task = asyncio.ensure_future(operation)
    try:
        done, _pending = await asyncio.wait({task}, timeout=timeout_s)
    except asyncio.CancelledError:
        task.cancel()
        raise

    if task in done:
        return TimeoutOutcome(completed=True, value=task.result())

    if on_timeout is not None:
        try:
            result = on_timeout()
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.debug(f"on_timeout callback failed: {e}")

    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    except Exception as e:
        logger.debug(f"Operation raised after timeout: {e}")

    return TimeoutOutcome(completed=False)


class BackgroundTasks:
    """
    Owner of fire-and-forget tasks.

    Keeps strong references so tasks are not garbage collected mid-flight,
    logs their failures at DEBUG, and cancels whatever is left at shutdown.
    """

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    def spawn(self, coro: Coroutine[Any, Any, T], name: Optional[str] = None) -> "asyncio.Task[T]":
        task = asyncio.ensure_future(coro)
        if name:
            task.set_name(name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.debug(f"Background task {task.get_name()} failed: {exc}")

    def __len__(self) -> int:
        return len(self._tasks)

    async def cancel_all(self) -> None:
        """Cancel outstanding tasks and wait for them to unwind."""
        pending = list(self._tasks)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._tasks.clear()
