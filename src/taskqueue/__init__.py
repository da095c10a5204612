"""Durable at-least-once background task queue on Redis Streams.

Provides enqueue, batched fetch, per-task locking, handler dispatch and
bounded retries with delay.
"""

from src.taskqueue.exceptions import (
    HandlerNotFoundError,
    HandlerRegistrationError,
    TaskDecodeError,
    TaskQueueError,
)
from src.taskqueue.handlers import HandlerRegistry, TaskHandler
from src.taskqueue.models import Failure, HandlerResult, Success, Task, TaskOutcome
from src.taskqueue.queue import TaskQueue

__all__ = [
    "Failure",
    "HandlerNotFoundError",
    "HandlerRegistrationError",
    "HandlerRegistry",
    "HandlerResult",
    "Success",
    "Task",
    "TaskDecodeError",
    "TaskHandler",
    "TaskOutcome",
    "TaskQueue",
    "TaskQueueError",
]
