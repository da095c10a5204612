"""Task record codec: ``Task`` <-> stream entry fields.

Entries are stored as named fields, so decoding never depends on the
order in which the store returns them::

    id           task id (stable across retries)
    handler      handler identifier
    data         JSON-encoded payload
    retry_count  remaining attempts
    retry_delay  seconds
    timeout      seconds
    not_before   epoch seconds, only present for scheduled retries
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from typing import Any

from pydantic import ValidationError

from src.taskqueue.exceptions import TaskDecodeError
from src.taskqueue.models import Task

REQUIRED_FIELDS = ("id", "handler", "data", "retry_count", "retry_delay", "timeout")


def encode(task: Task) -> dict[str, str]:
    """Encode a task into stream entry fields.

    Raises:
        TypeError: If ``task.data`` is not JSON-serializable.
    """
    fields = {
        "id": task.id,
        "handler": task.handler,
        "data": json.dumps(task.data),
        "retry_count": str(task.retry_count),
        "retry_delay": str(task.retry_delay),
        "timeout": str(task.timeout),
    }
    if task.not_before:
        fields["not_before"] = repr(task.not_before)
    return fields


def _text(value: Any) -> str:
    if isinstance(value, bytes | bytearray):
        return bytes(value).decode("utf-8")
    return str(value)


def field_map(fields: Mapping[Any, Any] | Sequence[Any]) -> dict[str, str]:
    """Normalize entry fields to a ``str -> str`` mapping.

    Accepts the mapping ``redis-py`` returns as well as a raw flat
    ``[name, value, name, value, ...]`` list, with ``str`` or ``bytes``
    items.
    """
    if isinstance(fields, Mapping):
        return {_text(k): _text(v) for k, v in fields.items()}
    items = list(fields)
    if len(items) % 2:
        raise ValueError("flat field list has an odd number of items")
    return {_text(items[i]): _text(items[i + 1]) for i in range(0, len(items), 2)}


def decode(fields: Mapping[Any, Any] | Sequence[Any], entry_id: str | bytes | None) -> Task:
    """Decode stream entry fields into a ``Task``.

    Raises:
        TaskDecodeError: If fields are missing, the payload is not valid
            JSON, or a numeric field is out of range.
    """
    eid = _text(entry_id) if entry_id is not None else None
    try:
        values = field_map(fields)
    except (ValueError, UnicodeDecodeError) as exc:
        raise TaskDecodeError(eid, str(exc)) from exc

    missing = [name for name in REQUIRED_FIELDS if name not in values]
    if missing:
        raise TaskDecodeError(eid, f"missing fields: {', '.join(missing)}")

    try:
        data = json.loads(values["data"])
    except json.JSONDecodeError as exc:
        raise TaskDecodeError(eid, f"payload is not valid JSON: {exc}") from exc

    try:
        return Task(
            id=values["id"],
            handler=values["handler"],
            data=data,
            retry_count=values["retry_count"],
            retry_delay=values["retry_delay"],
            timeout=values["timeout"],
            not_before=values.get("not_before") or 0.0,
            entry_id=eid,
        )
    except ValidationError as exc:
        raise TaskDecodeError(eid, str(exc)) from exc
