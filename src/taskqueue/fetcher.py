"""Batch fetcher: blocking reads of pending task entries.

The task stream only ever holds pending work (entries are deleted on
success, on requeue and on abandonment), so a fetch starts at offset
``0``. Entries left behind by a consumer that crashed mid-dispatch are
therefore redelivered by the next fetch, and the per-task lock decides
whether they may run yet. The runner reads further with ``after`` when a
whole batch was locked or not yet due.
"""

from __future__ import annotations

import logging
from typing import Any

from redis.exceptions import RedisError

from src.taskqueue.codec import decode
from src.taskqueue.dead_letter import DeadLetterStream
from src.taskqueue.exceptions import TaskDecodeError
from src.taskqueue.models import Task

logger = logging.getLogger(__name__)

STREAM_START = "0"


class BatchFetcher:
    """Reads up to ``count`` tasks, blocking up to ``block_ms`` when idle.

    Args:
        redis: An async Redis client (``redis.asyncio.Redis``).
        stream_key: Stream holding pending tasks.
        dead_letter: Where malformed entries are moved.
        count: Maximum entries per batch.
        block_ms: How long to block waiting for entries.
    """

    def __init__(
        self,
        redis: Any,
        stream_key: str,
        dead_letter: DeadLetterStream,
        *,
        count: int = 10,
        block_ms: int = 5000,
    ) -> None:
        self._redis = redis
        self._stream_key = stream_key
        self._dead_letter = dead_letter
        self._count = count
        self._block_ms = block_ms

    async def fetch_tasks(self, after: str = STREAM_START, *, block: bool = True) -> list[Task]:
        """Fetch the next batch of tasks in stream order.

        Args:
            after: Read entries with ids greater than this one. The default
                reads from the head of the stream.
            block: Wait up to ``block_ms`` for entries; ``False`` returns
                at once when nothing is there.

        Returns:
            Decoded tasks; empty when the wait window elapsed with nothing
            to read.

        Raises:
            redis.exceptions.RedisError: If the read itself fails.
        """
        if block:
            result = await self._redis.xread(
                {self._stream_key: after},
                count=self._count,
                block=self._block_ms,
            )
        else:
            result = await self._redis.xread({self._stream_key: after}, count=self._count)
        if not result:
            return []

        tasks: list[Task] = []
        for _stream_name, entries in result:
            for entry_id, fields in entries:
                try:
                    tasks.append(decode(fields, entry_id))
                except TaskDecodeError as exc:
                    await self._quarantine(exc.entry_id, fields, exc.reason)

        logger.debug("Fetched %d task(s) from %s after %s", len(tasks), self._stream_key, after)
        return tasks

    async def _quarantine(self, entry_id: str | None, fields: Any, reason: str) -> None:
        """Move a malformed entry out of the task stream; store errors are logged."""
        logger.error("Malformed task entry %s on %s: %s", entry_id, self._stream_key, reason)
        try:
            await self._dead_letter.record(entry_id, fields, f"decode error: {reason}")
        except RedisError:
            # The entry content is lost with the delete below; keep it in the log.
            logger.exception("Failed to dead-letter malformed entry %s: %r", entry_id, fields)
        if entry_id is None:
            return
        try:
            await self._redis.xdel(self._stream_key, entry_id)
        except RedisError:
            logger.exception("Failed to remove malformed entry %s", entry_id)
