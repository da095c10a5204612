"""Exceptions raised by the task queue."""

from __future__ import annotations


class TaskQueueError(Exception):
    """Base class for task queue errors."""


class TaskDecodeError(TaskQueueError):
    """A stream entry could not be turned into a ``Task``."""

    def __init__(self, entry_id: str | None, reason: str) -> None:
        super().__init__(f"Malformed task entry {entry_id}: {reason}")
        self.entry_id = entry_id
        self.reason = reason


class HandlerNotFoundError(TaskQueueError, KeyError):
    """No handler is registered under the requested identifier."""

    def __init__(self, handler: str) -> None:
        super().__init__(handler)
        self.handler = handler

    def __str__(self) -> str:
        return f"No handler registered for: {self.handler}"


class HandlerRegistrationError(TaskQueueError, ValueError):
    """A handler could not be registered or instantiated."""
