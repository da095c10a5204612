"""Dispatcher and retry engine.

``TaskDispatcher.process_task`` runs one delivery of a task under its
lock and turns the handler's result into one of the terminal or
retry transitions:

* success: the entry is deleted from the stream.
* failure with attempts left: a copy with ``retry_count - 1`` (same task
  id) is appended to the tail of the stream and the old entry is deleted.
* failure with no attempts left: the task is logged in full, copied to the
  dead-letter stream and deleted.

The lock is released before ``process_task`` returns on every path. Once
the lock is held the entry is looked up again; an entry that another
consumer already removed is skipped, so a stale batch never reruns it.

Two retry modes exist. ``blocking`` (default) sleeps ``retry_delay``
seconds inside ``process_task``, stalling the whole consumer; the lock is
extended to cover the sleep. ``scheduled`` stamps the requeued entry with
``not_before`` and returns at once; consumers defer the entry until due.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Literal

from redis.exceptions import RedisError

from src.taskqueue.codec import encode
from src.taskqueue.dead_letter import DeadLetterStream
from src.taskqueue.enqueuer import TaskEnqueuer
from src.taskqueue.handlers import TaskHandler
from src.taskqueue.locks import LockManager, TaskLock
from src.taskqueue.models import Failure, HandlerResult, Success, Task, TaskOutcome

logger = logging.getLogger(__name__)

RetryMode = Literal["blocking", "scheduled"]


class TaskDispatcher:
    """Runs tasks through their handlers and applies the retry policy.

    Args:
        redis: An async Redis client (``redis.asyncio.Redis``).
        stream_key: Stream holding pending tasks.
        handlers: Handler instances keyed by identifier, built at startup.
        locks: Per-task lock manager.
        enqueuer: Used to append requeued tasks.
        dead_letter: Receives abandoned tasks.
        retry_mode: ``blocking`` or ``scheduled``.
        sleep: Awaitable sleep used for the blocking retry delay.
        clock: Returns the current epoch time in seconds.
    """

    def __init__(
        self,
        redis: Any,
        stream_key: str,
        handlers: Mapping[str, TaskHandler],
        locks: LockManager,
        enqueuer: TaskEnqueuer,
        dead_letter: DeadLetterStream,
        *,
        retry_mode: RetryMode = "blocking",
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._redis = redis
        self._stream_key = stream_key
        self._handlers = dict(handlers)
        self._locks = locks
        self._enqueuer = enqueuer
        self._dead_letter = dead_letter
        self._retry_mode = retry_mode
        self._sleep = sleep
        self._clock = clock

    async def process_task(self, task: Task | None) -> TaskOutcome | None:
        """Dispatch one delivered task.

        Returns:
            What happened to the task, or None for an empty task.
        """
        if task is None:
            return None

        if task.not_before and task.not_before > self._clock():
            logger.debug("Task %s deferred until %.0f", task.id, task.not_before)
            return TaskOutcome.DEFERRED

        lock = await self._locks.try_acquire(task.id, task.timeout)
        if lock is None:
            return TaskOutcome.SKIPPED

        try:
            if not await self._entry_exists(task):
                logger.debug("Entry %s of task %s already handled", task.entry_id, task.id)
                return TaskOutcome.SKIPPED

            result = await self._invoke(task)
            if isinstance(result, Success):
                await self._remove_entry(task)
                logger.info("Task %s (handler=%s) succeeded", task.id, task.handler)
                return TaskOutcome.SUCCEEDED
            return await self._handle_failure(task, result, lock)
        finally:
            await self._locks.release(lock)

    async def _entry_exists(self, task: Task) -> bool:
        """Check the delivered entry is still pending.

        Every consumer reads the stream head, so a batch can hold entries
        another consumer finished or requeued after the fetch.
        """
        if task.entry_id is None:
            return True
        found = await self._redis.xrange(self._stream_key, task.entry_id, task.entry_id)
        return bool(found)

    async def _invoke(self, task: Task) -> HandlerResult:
        """Run the task's handler and normalize its outcome."""
        handler = self._handlers.get(task.handler)
        if handler is None:
            return Failure(f"No handler registered for: {task.handler}", retryable=False)

        try:
            result = await handler.handle(task)
        except Exception as exc:  # Intentionally broad: handler code is untrusted
            logger.exception("Handler %s raised for task %s", task.handler, task.id)
            return Failure(f"{type(exc).__name__}: {exc}")

        if result is None:
            return Success()
        if not isinstance(result, Success | Failure):
            return Failure(
                f"Handler {task.handler} returned {type(result).__name__}, expected Success or Failure",
                retryable=False,
            )
        return result

    async def _handle_failure(self, task: Task, failure: Failure, lock: TaskLock) -> TaskOutcome:
        remaining = max(task.retry_count - 1, 0)
        logger.error(
            "Failed to process task %s (handler=%s, retries left=%d): %s",
            task.id, task.handler, remaining, failure.error,
        )

        if failure.retryable and remaining > 0:
            return await self._requeue(task, remaining, lock)

        abandoned = task.model_copy(update={"retry_count": 0})
        await self._abandon(abandoned, failure.error)
        return TaskOutcome.ABANDONED

    async def _requeue(self, task: Task, remaining: int, lock: TaskLock) -> TaskOutcome:
        update: dict[str, Any] = {"retry_count": remaining, "entry_id": None}
        if self._retry_mode == "scheduled":
            update["not_before"] = self._clock() + task.retry_delay
        else:
            update["not_before"] = 0.0
        retry = task.model_copy(update=update)

        try:
            new_entry_id = await self._enqueuer.append(retry)
        except RedisError:
            logger.exception(
                "Failed to requeue task %s; entry %s stays for redelivery", task.id, task.entry_id,
            )
            return TaskOutcome.STRANDED

        await self._remove_entry(task)
        logger.warning(
            "Requeued task %s as entry %s (retries left=%d, delay=%ds)",
            task.id, new_entry_id, remaining, task.retry_delay,
        )

        if self._retry_mode == "blocking" and task.retry_delay > 0:
            try:
                await self._locks.set_expiry(lock, task.retry_delay + self._locks.margin_seconds)
            except RedisError:
                logger.exception("Failed to extend lock %s for retry delay", lock.key)
            await self._sleep(task.retry_delay)

        return TaskOutcome.REQUEUED

    async def _abandon(self, task: Task, error: str) -> None:
        logger.error(
            "Abandoning task %s after exhausting retries: %r, error: %s",
            task.id, task.model_dump(), error,
        )
        try:
            await self._dead_letter.record(task.entry_id, encode(task), error)
        except (RedisError, TypeError, ValueError):
            # The full task is in the log line above; still drop the entry
            # so an exhausted task is never redelivered.
            logger.exception("Failed to dead-letter task %s", task.id)
        await self._remove_entry(task)

    async def _remove_entry(self, task: Task) -> None:
        """Delete the task's stream entry (acknowledge); best effort."""
        if task.entry_id is None:
            return
        try:
            await self._redis.xdel(self._stream_key, task.entry_id)
        except RedisError:
            logger.exception("Failed to remove entry %s of task %s", task.entry_id, task.id)
