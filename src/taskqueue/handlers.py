"""Task handler base class and registry.

``TaskHandler`` is the abstract base class for all business logic run by
the queue. Subclasses implement ``handle(task)`` and report the outcome
with an explicit ``Success`` or ``Failure``; returning ``None`` counts as
success and raising is treated as a retryable failure.

Handlers are registered under an identifier as a *factory* (usually the
class itself). The registry instantiates every factory once when the
queue starts, so dispatch is a plain dictionary lookup.

Example::

    registry = HandlerRegistry()

    @registry.handler("EmailHandler")
    class EmailHandler(TaskHandler):
        async def handle(self, task: Task) -> HandlerResult:
            if not task.data.get("to"):
                return Failure("missing recipient", retryable=False)
            await send_mail(task.data["to"])
            return Success()
"""

from __future__ import annotations

import abc
import logging
from collections.abc import Callable, Mapping
from typing import TypeVar

from src.taskqueue.exceptions import HandlerNotFoundError, HandlerRegistrationError
from src.taskqueue.models import HandlerResult, Task

logger = logging.getLogger(__name__)

HandlerFactory = Callable[[], "TaskHandler"]
_F = TypeVar("_F", bound=HandlerFactory)


class TaskHandler(abc.ABC):
    """Abstract base class for task handlers."""

    @abc.abstractmethod
    async def handle(self, task: Task) -> HandlerResult | None:
        """Process one delivery of ``task``.

        Handlers must tolerate being called more than once for the same
        ``task.id``: delivery is at-least-once.

        Args:
            task: The decoded task; ``task.data`` is the enqueued payload.

        Returns:
            ``Success``/``None`` on completion, ``Failure`` otherwise.
        """


class HandlerRegistry:
    """Mapping from handler identifier to handler factory."""

    def __init__(self) -> None:
        self._factories: dict[str, HandlerFactory] = {}

    def register(self, name: str, factory: HandlerFactory) -> None:
        """Register a factory under ``name``.

        Raises:
            HandlerRegistrationError: If ``name`` is empty or taken.
        """
        if not name:
            raise HandlerRegistrationError("Handler name must be set")
        if name in self._factories:
            raise HandlerRegistrationError(f"Handler {name} is already registered")
        self._factories[name] = factory
        logger.info("Registered handler: %s", name)

    def handler(self, name: str) -> Callable[[_F], _F]:
        """Class decorator form of ``register``."""

        def decorator(factory: _F) -> _F:
            self.register(name, factory)
            return factory

        return decorator

    def names(self) -> list[str]:
        return sorted(self._factories)

    def __contains__(self, name: object) -> bool:
        return name in self._factories

    def __len__(self) -> int:
        return len(self._factories)

    def create(self, name: str) -> TaskHandler:
        """Instantiate the handler registered under ``name``.

        Raises:
            HandlerNotFoundError: If nothing is registered under ``name``.
            HandlerRegistrationError: If the factory fails or returns an
                object without a ``handle`` method.
        """
        factory = self._factories.get(name)
        if factory is None:
            raise HandlerNotFoundError(name)
        try:
            instance = factory()
        except Exception as exc:
            raise HandlerRegistrationError(f"Handler factory for {name} failed: {exc}") from exc
        if not callable(getattr(instance, "handle", None)):
            raise HandlerRegistrationError(f"Handler {name} does not implement handle(task)")
        return instance

    def build(self) -> Mapping[str, TaskHandler]:
        """Instantiate every registered handler once."""
        return {name: self.create(name) for name in self._factories}
