"""Per-task exclusive locks.

A lock is a plain Redis key ``{prefix}{task_id}`` created with
``SET NX EX`` and holding a random owner token. The expiry bounds how long
a crashed or hung consumer can block a task: ``timeout + margin`` seconds
after acquisition another consumer may take the task over. Locks are
never renewed by a heartbeat.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any

from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

LOCK_EXPIRY_MARGIN_SECONDS = 10

# Delete KEYS[1] only while it still holds the caller's token ARGV[1].
RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


@dataclass(frozen=True)
class TaskLock:
    """A held task lock."""

    key: str
    token: str
    ttl_seconds: int


class LockManager:
    """Acquires and releases per-task locks.

    Args:
        redis: An async Redis client (``redis.asyncio.Redis``).
        prefix: Key prefix; the task id is appended to it.
        margin_seconds: Added to a task's timeout to size the lock expiry.
    """

    def __init__(
        self,
        redis: Any,
        prefix: str,
        margin_seconds: int = LOCK_EXPIRY_MARGIN_SECONDS,
    ) -> None:
        self._redis = redis
        self._prefix = prefix
        self._margin_seconds = margin_seconds
        self._release_script = redis.register_script(RELEASE_SCRIPT)

    @property
    def margin_seconds(self) -> int:
        return self._margin_seconds

    def lock_key(self, task_id: str) -> str:
        return f"{self._prefix}{task_id}"

    async def try_acquire(self, task_id: str, timeout: int) -> TaskLock | None:
        """Take the lock for ``task_id`` if nobody holds it.

        The key and its expiry of ``timeout + margin`` seconds are written
        in a single command, so a crash can never leave a lock without
        expiry.

        Returns:
            The held lock, or None if another consumer owns the task.
        """
        key = self.lock_key(task_id)
        token = uuid.uuid4().hex
        ttl = timeout + self._margin_seconds
        acquired = await self._redis.set(key, token, nx=True, ex=max(ttl, 1))
        if not acquired:
            logger.debug("Lock %s already held", key)
            return None
        return TaskLock(key=key, token=token, ttl_seconds=ttl)

    async def set_expiry(self, lock: TaskLock, seconds: int) -> bool:
        """Re-arm the lock to expire ``seconds`` from now."""
        return bool(await self._redis.expire(lock.key, max(seconds, 1)))

    async def release(self, lock: TaskLock) -> bool:
        """Release ``lock`` if this owner still holds it.

        The owner check and the delete run as one script, so a lock that
        expired and was re-acquired by another consumer keeps its new
        owner. Store errors are logged: the expiry frees the key
        eventually.

        Returns:
            True if the key was deleted.
        """
        try:
            released = await self._release_script(keys=[lock.key], args=[lock.token])
        except RedisError:
            logger.exception("Failed to release lock %s", lock.key)
            return False
        if not released:
            logger.warning("Lock %s expired before release; not releasing", lock.key)
            return False
        return True
