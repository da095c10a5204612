"""Run loop: fetch a batch, dispatch each task in order, repeat."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from src.taskqueue.dispatcher import TaskDispatcher
from src.taskqueue.fetcher import STREAM_START, BatchFetcher
from src.taskqueue.models import TaskOutcome

logger = logging.getLogger(__name__)

_NOT_DISPATCHED = frozenset({TaskOutcome.SKIPPED, TaskOutcome.DEFERRED})


class TaskRunner:
    """Single-consumer polling loop.

    Tasks are processed one at a time in fetch order; run more consumer
    processes to scale out.

    Args:
        fetcher: Source of task batches.
        dispatcher: Runs each task.
        idle_sleep_seconds: Pause after a batch in which every task was
            skipped or deferred, so entries owned by other consumers are
            not re-read in a tight loop.
        sleep: Awaitable sleep used for the idle pause.
    """

    def __init__(
        self,
        fetcher: BatchFetcher,
        dispatcher: TaskDispatcher,
        *,
        idle_sleep_seconds: float = 1.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._fetcher = fetcher
        self._dispatcher = dispatcher
        self._idle_sleep_seconds = idle_sleep_seconds
        self._sleep = sleep

    async def process(self) -> list[TaskOutcome]:
        """Fetch one batch and process its tasks sequentially.

        When nothing in a batch could run (every task locked elsewhere or
        not yet due), the stream is read on past it without blocking, so
        such entries at the head never starve the tasks behind them.

        Raises:
            redis.exceptions.RedisError: If fetching fails.
        """
        outcomes: list[TaskOutcome] = []
        after = STREAM_START
        while True:
            tasks = await self._fetcher.fetch_tasks(after, block=after == STREAM_START)
            batch: list[TaskOutcome] = []
            for task in tasks:
                outcome = await self._dispatcher.process_task(task)
                if outcome is not None:
                    batch.append(outcome)
            outcomes.extend(batch)

            if not batch or not all(outcome in _NOT_DISPATCHED for outcome in batch):
                return outcomes
            last_entry_id = tasks[-1].entry_id
            if last_entry_id is None:
                return outcomes
            after = last_entry_id

    async def run(self, shutdown_event: asyncio.Event | None = None) -> None:
        """Process batches until ``shutdown_event`` is set or cancelled.

        Fetch-level failures are logged and re-raised; the worker process
        is expected to be restarted by its supervisor.
        """
        if shutdown_event is None:
            shutdown_event = asyncio.Event()

        logger.info("Task runner started")
        try:
            while not shutdown_event.is_set():
                try:
                    outcomes = await self.process()
                except asyncio.CancelledError:
                    break
                except Exception:
                    logger.exception("Task runner stopped by unexpected error")
                    raise

                if outcomes and all(outcome in _NOT_DISPATCHED for outcome in outcomes):
                    await self._sleep(self._idle_sleep_seconds)
        finally:
            logger.info("Task runner stopped")
