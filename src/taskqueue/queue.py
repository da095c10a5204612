"""Task queue service: enqueue, fetch, dispatch and the worker loop.

Provides ``TaskQueue``, the object a host process builds once with an
explicit Redis client and handler registry. It wires the enqueuer,
fetcher, lock manager, dispatcher and run loop together.

Redis keys used (names configurable through ``Settings``)::

    taskstream:tasks          Stream of pending task entries
    taskstream:lock:{id}      Per-task lock (SET NX EX, owner token)
    taskstream:dead           Stream of abandoned / malformed entries
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from src.core.config import Settings, get_settings
from src.taskqueue.dead_letter import DeadLetterStream
from src.taskqueue.dispatcher import TaskDispatcher
from src.taskqueue.enqueuer import TaskEnqueuer
from src.taskqueue.fetcher import BatchFetcher
from src.taskqueue.handlers import HandlerRegistry
from src.taskqueue.locks import LockManager
from src.taskqueue.models import Task, TaskOutcome
from src.taskqueue.runner import TaskRunner

logger = logging.getLogger(__name__)


class TaskQueue:
    """Durable at-least-once task queue backed by a Redis Stream.

    Args:
        redis: An async Redis client (``redis.asyncio.Redis``).
        registry: Handlers this consumer can run. Every factory is
            instantiated here, once.
        settings: Queue settings; defaults to ``get_settings()``.
        sleep: Awaitable sleep for retry delays and idle pauses.
        clock: Epoch-seconds clock for scheduled retries.
    """

    def __init__(
        self,
        redis: Any,
        registry: HandlerRegistry | None = None,
        settings: Settings | None = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._redis = redis
        self._settings = settings or get_settings()
        self._registry = registry if registry is not None else HandlerRegistry()
        s = self._settings

        self.dead_letter = DeadLetterStream(redis, s.queue_dead_letter_stream)
        self.locks = LockManager(redis, s.queue_lock_prefix, s.queue_lock_margin_seconds)
        self.enqueuer = TaskEnqueuer(
            redis,
            s.queue_stream_key,
            default_retry_count=s.queue_default_retry_count,
            default_retry_delay=s.queue_default_retry_delay,
            default_timeout=s.queue_default_timeout,
            max_len=s.queue_stream_max_len,
        )
        self.fetcher = BatchFetcher(
            redis,
            s.queue_stream_key,
            self.dead_letter,
            count=s.queue_batch_count,
            block_ms=s.queue_block_ms,
        )
        self.dispatcher = TaskDispatcher(
            redis,
            s.queue_stream_key,
            self._registry.build(),
            self.locks,
            self.enqueuer,
            self.dead_letter,
            retry_mode=s.queue_retry_mode,
            sleep=sleep,
            clock=clock,
        )
        self.runner = TaskRunner(
            self.fetcher,
            self.dispatcher,
            idle_sleep_seconds=s.queue_idle_sleep_seconds,
            sleep=sleep,
        )

    @property
    def stream_key(self) -> str:
        return self._settings.queue_stream_key

    async def add_task(
        self,
        handler: str,
        data: Any,
        retry_count: int | None = None,
        retry_delay: int | None = None,
        timeout: int | None = None,
    ) -> None:
        """Enqueue a task; never raises (see ``TaskEnqueuer.add_task``)."""
        await self.enqueuer.add_task(handler, data, retry_count, retry_delay, timeout)

    async def fetch_tasks(self) -> list[Task]:
        return await self.fetcher.fetch_tasks()

    async def process_task(self, task: Task | None) -> TaskOutcome | None:
        return await self.dispatcher.process_task(task)

    async def process(self) -> list[TaskOutcome]:
        """Run one fetch-and-dispatch iteration."""
        return await self.runner.process()

    async def run(self, shutdown_event: asyncio.Event | None = None) -> None:
        """Run the consumer loop until shut down."""
        logger.info(
            "Consuming %s with handlers: %s",
            self.stream_key, ", ".join(self._registry.names()) or "(none)",
        )
        await self.runner.run(shutdown_event)
