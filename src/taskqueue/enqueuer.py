"""Enqueuer: appends task entries to the stream."""

from __future__ import annotations

import logging
from typing import Any

from redis.exceptions import RedisError

from src.taskqueue.codec import encode
from src.taskqueue.models import Task

logger = logging.getLogger(__name__)


class TaskEnqueuer:
    """Writes tasks to the shared stream.

    Args:
        redis: An async Redis client (``redis.asyncio.Redis``).
        stream_key: Stream holding pending tasks.
        default_retry_count: Used when ``add_task`` gets no retry count.
        default_retry_delay: Used when ``add_task`` gets no retry delay.
        default_timeout: Used when ``add_task`` gets no timeout.
        max_len: Approximate stream cap, ``None`` to never trim.
    """

    def __init__(
        self,
        redis: Any,
        stream_key: str,
        *,
        default_retry_count: int = 3,
        default_retry_delay: int = 60,
        default_timeout: int = 60,
        max_len: int | None = None,
    ) -> None:
        self._redis = redis
        self._stream_key = stream_key
        self._default_retry_count = default_retry_count
        self._default_retry_delay = default_retry_delay
        self._default_timeout = default_timeout
        self._max_len = max_len

    async def append(self, task: Task) -> str:
        """Append ``task`` to the stream and return the new entry id.

        Raises:
            redis.exceptions.RedisError: If the store rejects the append.
            TypeError: If the payload is not JSON-serializable.
        """
        if self._max_len is None:
            entry_id = await self._redis.xadd(self._stream_key, encode(task))
        else:
            entry_id = await self._redis.xadd(
                self._stream_key, encode(task), maxlen=self._max_len, approximate=True,
            )
        return entry_id.decode() if isinstance(entry_id, bytes) else str(entry_id)

    async def add_task(
        self,
        handler: str,
        data: Any,
        retry_count: int | None = None,
        retry_delay: int | None = None,
        timeout: int | None = None,
    ) -> None:
        """Enqueue a new task.

        Fire-and-forget: store errors and invalid arguments are logged and
        swallowed, so the caller never learns whether the append happened.
        """
        try:
            task = Task(
                handler=handler,
                data=data,
                retry_count=self._default_retry_count if retry_count is None else retry_count,
                retry_delay=self._default_retry_delay if retry_delay is None else retry_delay,
                timeout=self._default_timeout if timeout is None else timeout,
            )
            entry_id = await self.append(task)
        except RedisError:
            logger.exception("Failed to enqueue task for handler %s", handler)
            return
        except (TypeError, ValueError):
            logger.exception("Rejected invalid task for handler %s", handler)
            return

        logger.info("Enqueued task %s (handler=%s, entry=%s)", task.id, handler, entry_id)
