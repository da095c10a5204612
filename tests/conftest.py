"""Shared test fixtures for the TaskStream test suite.

Provides test settings, an in-memory Redis fake covering the stream, key
and TTL commands the queue uses, and a recording sleep so retry delays can
be asserted without waiting.
"""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.core.config import Settings
from src.taskqueue.handlers import HandlerRegistry
from src.taskqueue.queue import TaskQueue

# -- Fake Redis ---------------------------------------------------------------


def _id_key(entry_id: str) -> tuple[int, int]:
    ms, _, seq = entry_id.partition("-")
    return int(ms), int(seq or 0)


class FakeRedis:
    """In-memory Redis mock supporting xadd/xread/xrange/xdel and SET NX EX keys.

    ``register_script`` only understands the lock release script.

    Key expiry follows ``self.now``; tests move time with ``advance()``.
    """

    def __init__(self) -> None:
        self.now = 1_700_000_000.0
        self._streams: dict[str, list[tuple[str, dict[str, str]]]] = {}
        self._keys: dict[str, str] = {}
        self._expiry: dict[str, float] = {}
        self._msg_counter = 0
        self.xread_calls: list[dict[str, Any]] = []
        self.closed = False

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def entries(self, stream: str) -> list[tuple[str, dict[str, str]]]:
        return list(self._streams.get(stream, []))

    def _purge(self, key: str) -> None:
        deadline = self._expiry.get(key)
        if deadline is not None and deadline <= self.now:
            self._keys.pop(key, None)
            self._expiry.pop(key, None)

    # -- Streams --

    async def xadd(
        self,
        name: str,
        fields: dict[str, Any],
        maxlen: int | None = None,
        approximate: bool = True,
    ) -> str:
        self._msg_counter += 1
        msg_id = f"{self._msg_counter}-0"
        stream = self._streams.setdefault(name, [])
        stream.append((msg_id, {str(k): str(v) for k, v in fields.items()}))
        if maxlen is not None and len(stream) > maxlen:
            del stream[: len(stream) - maxlen]
        return msg_id

    async def xread(
        self,
        streams: dict[str, str],
        count: int | None = None,
        block: int | None = None,
    ) -> list[tuple[str, list[tuple[str, dict[str, str]]]]]:
        self.xread_calls.append({"streams": dict(streams), "count": count, "block": block})
        result = []
        for name, last_id in streams.items():
            entries = [
                (msg_id, dict(fields))
                for msg_id, fields in self._streams.get(name, [])
                if _id_key(msg_id) > _id_key(last_id)
            ]
            if count is not None:
                entries = entries[:count]
            if entries:
                result.append((name, entries))
        return result

    async def xrange(
        self,
        name: str,
        min: str = "-",
        max: str = "+",
        count: int | None = None,
    ) -> list[tuple[str, dict[str, str]]]:
        low = (0, 0) if min == "-" else _id_key(min)
        high = None if max == "+" else _id_key(max)
        entries = [
            (msg_id, dict(fields))
            for msg_id, fields in self._streams.get(name, [])
            if _id_key(msg_id) >= low and (high is None or _id_key(msg_id) <= high)
        ]
        return entries[:count] if count is not None else entries

    async def xdel(self, name: str, *ids: str) -> int:
        stream = self._streams.get(name, [])
        before = len(stream)
        self._streams[name] = [entry for entry in stream if entry[0] not in ids]
        return before - len(self._streams[name])

    # -- Keys --

    async def set(
        self,
        name: str,
        value: Any,
        nx: bool = False,
        ex: int | None = None,
    ) -> bool | None:
        self._purge(name)
        if nx and name in self._keys:
            return None
        self._keys[name] = str(value)
        if ex is not None:
            self._expiry[name] = self.now + ex
        else:
            self._expiry.pop(name, None)
        return True

    async def get(self, name: str) -> str | None:
        self._purge(name)
        return self._keys.get(name)

    async def expire(self, name: str, seconds: int) -> bool:
        self._purge(name)
        if name not in self._keys:
            return False
        self._expiry[name] = self.now + seconds
        return True

    async def ttl(self, name: str) -> int:
        self._purge(name)
        if name not in self._keys:
            return -2
        if name not in self._expiry:
            return -1
        return int(self._expiry[name] - self.now)

    async def delete(self, *names: str) -> int:
        deleted = 0
        for name in names:
            self._purge(name)
            if name in self._keys:
                del self._keys[name]
                self._expiry.pop(name, None)
                deleted += 1
        return deleted

    # -- Scripts --

    def register_script(self, script: str) -> _FakeReleaseScript:
        return _FakeReleaseScript(self)

    async def ping(self) -> bool:
        return True

    async def aclose(self) -> None:
        self.closed = True


class _FakeReleaseScript:
    """Runs the lock compare-and-delete script against a ``FakeRedis``."""

    def __init__(self, redis: FakeRedis) -> None:
        self._redis = redis

    async def __call__(self, keys: list[str], args: list[str]) -> int:
        (key,), (token,) = keys, args
        if await self._redis.get(key) != token:
            return 0
        return await self._redis.delete(key)


class SleepRecorder:
    """Stands in for ``asyncio.sleep`` and records requested delays."""

    def __init__(self, redis: FakeRedis | None = None) -> None:
        self.calls: list[float] = []
        self._redis = redis

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self._redis is not None:
            self._redis.advance(seconds)


# -- Fixtures -----------------------------------------------------------------


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings that don't depend on the environment."""
    return Settings(
        app_env="testing",
        redis_host="localhost",
        redis_port=6379,
        redis_url="redis://localhost:6379/1",
        queue_stream_key="test:tasks",
        queue_lock_prefix="test:lock:",
        queue_dead_letter_stream="test:dead",
        queue_batch_count=10,
        queue_block_ms=5000,
        queue_retry_mode="blocking",
        _env_file=None,  # type: ignore[call-arg]
    )


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def sleeper(fake_redis: FakeRedis) -> SleepRecorder:
    return SleepRecorder(fake_redis)


@pytest.fixture
def registry() -> HandlerRegistry:
    return HandlerRegistry()


@pytest.fixture
def make_queue(fake_redis: FakeRedis, sleeper: SleepRecorder, test_settings: Settings):
    """Build a TaskQueue on the fake Redis with optional settings overrides."""

    def _make(registry: HandlerRegistry | None = None, **overrides: Any) -> TaskQueue:
        settings = test_settings.model_copy(update=overrides) if overrides else test_settings
        return TaskQueue(
            fake_redis,
            registry,
            settings,
            sleep=sleeper,
            clock=lambda: fake_redis.now,
        )

    return _make


@pytest.fixture
def mock_redis_client() -> AsyncMock:
    """Create a mock Redis client."""
    client = AsyncMock()
    client.ping = AsyncMock(return_value=True)
    client.aclose = AsyncMock()
    client.get = AsyncMock(return_value=None)
    client.set = AsyncMock(return_value=True)
    client.delete = AsyncMock(return_value=1)
    client.expire = AsyncMock(return_value=True)
    client.xadd = AsyncMock(return_value="1-0")
    client.xread = AsyncMock(return_value=[])
    client.xdel = AsyncMock(return_value=1)
    client.xrange = AsyncMock(return_value=[])
    client.register_script = MagicMock(return_value=AsyncMock(return_value=1))
    return client
