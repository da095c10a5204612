"""Dead-letter stream for abandoned and malformed task entries.

Abandoned entries are removed from the task stream so they are not
redelivered; a copy lands here for operator triage together with the
reason it was given up on.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from src.taskqueue.codec import field_map

logger = logging.getLogger(__name__)


class DeadLetterStream:
    """Append-only audit stream of entries the queue gave up on.

    Args:
        redis: An async Redis client (``redis.asyncio.Redis``).
        stream_key: Dead-letter stream name.
    """

    def __init__(self, redis: Any, stream_key: str) -> None:
        self._redis = redis
        self._stream_key = stream_key

    @property
    def stream_key(self) -> str:
        return self._stream_key

    async def record(self, source_entry_id: str | None, fields: Any, reason: str) -> str:
        """Copy an entry's fields to the dead-letter stream.

        Raises:
            redis.exceptions.RedisError: If the append fails.
        """
        try:
            entry = field_map(fields) if fields else {}
        except (ValueError, UnicodeDecodeError):
            entry = {"raw": repr(fields)}
        entry.update(
            {
                "source_entry_id": source_entry_id or "",
                "reason": reason,
                "dead_at": datetime.now(UTC).isoformat(),
            }
        )
        dead_id = await self._redis.xadd(self._stream_key, entry)
        logger.info("Dead-lettered entry %s as %s", source_entry_id, dead_id)
        return dead_id
