"""CLI entry point for running a consumer and enqueueing tasks.

Usage::

    python -m src.taskqueue.cli work --registry myapp.tasks:registry [--once]
    python -m src.taskqueue.cli enqueue EmailHandler --data '{"to": "a@b.com"}'

``--registry`` names a ``HandlerRegistry`` instance (or a zero-argument
callable returning one) as ``module:attribute``.
"""

from __future__ import annotations

import argparse
import asyncio
import importlib
import json
import logging
import signal
import sys
from typing import Any

from redis.exceptions import RedisError

from src.core.config import Settings, get_settings
from src.core.redis import close_redis_client, create_redis_client, verify_redis_connectivity
from src.taskqueue.handlers import HandlerRegistry
from src.taskqueue.queue import TaskQueue

logger = logging.getLogger(__name__)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="taskstream",
        description="Background task queue on Redis Streams.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: LOG_LEVEL setting).",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    work = sub.add_parser("work", help="Consume and process tasks.")
    work.add_argument(
        "--registry",
        required=True,
        help="Handler registry as module:attribute.",
    )
    work.add_argument(
        "--once",
        action="store_true",
        default=False,
        help="Process a single batch and exit.",
    )

    enqueue = sub.add_parser("enqueue", help="Add a task to the queue.")
    enqueue.add_argument("handler", help="Handler identifier.")
    enqueue.add_argument("--data", default="null", help="JSON payload (default: null).")
    enqueue.add_argument("--retry-count", type=int, default=None)
    enqueue.add_argument("--retry-delay", type=int, default=None, help="Seconds.")
    enqueue.add_argument("--timeout", type=int, default=None, help="Seconds.")
    return parser.parse_args(argv)


def load_registry(path: str) -> HandlerRegistry:
    """Import a ``HandlerRegistry`` given as ``module:attribute``.

    Raises:
        ValueError: If the path is malformed or does not name a registry.
    """
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Registry must be given as module:attribute, got {path!r}")
    module = importlib.import_module(module_name)
    obj: Any = getattr(module, attr)
    if not isinstance(obj, HandlerRegistry) and callable(obj):
        obj = obj()
    if not isinstance(obj, HandlerRegistry):
        raise ValueError(f"{path} is not a HandlerRegistry")
    return obj


async def _work(args: argparse.Namespace, settings: Settings) -> int:
    registry = load_registry(args.registry)
    client = create_redis_client(settings)
    try:
        if not await verify_redis_connectivity(client):
            return 1
        queue = TaskQueue(client, registry, settings)

        if args.once:
            try:
                outcomes = await queue.process()
            except RedisError:
                logger.exception("Failed to process batch")
                return 1
            logger.info("Processed batch: %s", [str(o) for o in outcomes])
            return 0

        shutdown_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, shutdown_event.set)
            except NotImplementedError:
                # Windows doesn't support add_signal_handler
                pass

        try:
            await queue.run(shutdown_event)
        except RedisError:
            return 1
        return 0
    finally:
        await close_redis_client(client)


async def _enqueue(args: argparse.Namespace, settings: Settings) -> int:
    try:
        data = json.loads(args.data)
    except json.JSONDecodeError as exc:
        logger.error("--data is not valid JSON: %s", exc)
        return 2

    client = create_redis_client(settings)
    try:
        queue = TaskQueue(client, settings=settings)
        await queue.add_task(
            args.handler,
            data,
            retry_count=args.retry_count,
            retry_delay=args.retry_delay,
            timeout=args.timeout,
        )
    finally:
        await close_redis_client(client)
    return 0


async def _run(args: argparse.Namespace, settings: Settings) -> int:
    if args.command == "work":
        return await _work(args, settings)
    return await _enqueue(args, settings)


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    args = _parse_args(argv)
    settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, (args.log_level or settings.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    exit_code = asyncio.run(_run(args, settings))
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
