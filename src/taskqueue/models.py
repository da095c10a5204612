"""Task record, handler results and dispatch outcomes.

``Task`` is immutable: a retry produces a copy with a decremented
``retry_count`` (``task.model_copy(update=...)``) that keeps the same ``id``.

Dispatch lifecycle per task id::

    PENDING → LOCKED → SUCCEEDED
                     ↘ REQUEUED → PENDING  (while retry_count > 0)
                     ↘ ABANDONED
"""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def new_task_id() -> str:
    """Return a fresh collision-resistant task id."""
    return str(uuid.uuid4())


class Task(BaseModel):
    """The unit of work stored on the stream.

    Attributes:
        id: Unique task identifier, reused across retries.
        handler: Identifier of the registered handler to invoke.
        data: Opaque JSON-serializable payload passed to the handler.
        retry_count: Remaining attempts; decremented on each failure.
        retry_delay: Seconds to wait before the next attempt after a failure.
        timeout: Expected upper bound of one dispatch; sizes the lock expiry.
        not_before: Epoch seconds before which the task must not be
            dispatched (0 means immediately).
        entry_id: Stream entry the task was read from. Not part of the
            encoded record; assigned by the store on every append.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_task_id, min_length=1)
    handler: str = Field(min_length=1)
    data: Any = None
    retry_count: int = Field(default=3, ge=0)
    retry_delay: int = Field(default=60, ge=0)
    timeout: int = Field(default=60, ge=0)
    not_before: float = Field(default=0.0, ge=0)
    entry_id: str | None = Field(default=None, exclude=True)


@dataclass(frozen=True)
class Success:
    """A handler completed the task."""

    detail: Any = None


@dataclass(frozen=True)
class Failure:
    """A handler could not complete the task.

    ``retryable=False`` abandons the task immediately regardless of
    its remaining ``retry_count``.
    """

    error: str
    retryable: bool = True


HandlerResult = Success | Failure


class TaskOutcome(enum.StrEnum):
    """What ``process_task`` did with a delivered task."""

    SKIPPED = "SKIPPED"  # lock held by another consumer
    DEFERRED = "DEFERRED"  # scheduled retry not yet due
    SUCCEEDED = "SUCCEEDED"
    REQUEUED = "REQUEUED"
    ABANDONED = "ABANDONED"
    STRANDED = "STRANDED"  # requeue append failed; original entry left in place
