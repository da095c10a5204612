"""Tests for the taskstream CLI."""

from __future__ import annotations

import json
import sys
import types
from unittest.mock import patch

import pytest

from src.core.config import Settings
from src.taskqueue.cli import _parse_args, load_registry, main
from src.taskqueue.handlers import HandlerRegistry, TaskHandler
from src.taskqueue.models import HandlerResult, Success, Task
from tests.conftest import FakeRedis

HANDLED: list[object] = []


class Collect(TaskHandler):
    async def handle(self, task: Task) -> HandlerResult:
        HANDLED.append(task.data)
        return Success()


@pytest.fixture
def handlers_module(monkeypatch: pytest.MonkeyPatch) -> types.ModuleType:
    module = types.ModuleType("cli_test_handlers")
    registry = HandlerRegistry()
    registry.register("Collect", Collect)
    module.registry = registry  # type: ignore[attr-defined]
    module.make_registry = lambda: registry  # type: ignore[attr-defined]
    module.not_a_registry = 42  # type: ignore[attr-defined]
    monkeypatch.setitem(sys.modules, "cli_test_handlers", module)
    return module


class TestParseArgs:
    def test_work_command(self) -> None:
        args = _parse_args(["--log-level", "DEBUG", "work", "--registry", "pkg.mod:reg", "--once"])

        assert args.command == "work"
        assert args.registry == "pkg.mod:reg"
        assert args.once is True
        assert args.log_level == "DEBUG"

    def test_enqueue_command(self) -> None:
        args = _parse_args(["enqueue", "EmailHandler", "--data", '{"to": "a@b.com"}', "--retry-count", "2"])

        assert args.command == "enqueue"
        assert args.handler == "EmailHandler"
        assert args.retry_count == 2
        assert args.retry_delay is None

    def test_command_required(self) -> None:
        with pytest.raises(SystemExit):
            _parse_args([])


class TestLoadRegistry:
    def test_attribute(self, handlers_module: types.ModuleType) -> None:
        assert load_registry("cli_test_handlers:registry") is handlers_module.registry

    def test_callable(self, handlers_module: types.ModuleType) -> None:
        assert load_registry("cli_test_handlers:make_registry") is handlers_module.registry

    def test_wrong_type(self, handlers_module: types.ModuleType) -> None:
        with pytest.raises(ValueError, match="not a HandlerRegistry"):
            load_registry("cli_test_handlers:not_a_registry")

    def test_malformed_path(self) -> None:
        with pytest.raises(ValueError, match="module:attribute"):
            load_registry("cli_test_handlers")


class TestMain:
    def test_enqueue_then_work_once(
        self,
        handlers_module: types.ModuleType,
        fake_redis: FakeRedis,
        test_settings: Settings,
    ) -> None:
        HANDLED.clear()
        with (
            patch("src.taskqueue.cli.get_settings", return_value=test_settings),
            patch("src.taskqueue.cli.create_redis_client", return_value=fake_redis),
        ):
            with pytest.raises(SystemExit) as enqueue_exit:
                main(["enqueue", "Collect", "--data", json.dumps({"n": 1})])
            assert enqueue_exit.value.code == 0
            assert len(fake_redis.entries("test:tasks")) == 1

            with pytest.raises(SystemExit) as work_exit:
                main(["work", "--registry", "cli_test_handlers:registry", "--once"])

        assert work_exit.value.code == 0
        assert HANDLED == [{"n": 1}]
        assert fake_redis.entries("test:tasks") == []
        assert fake_redis.closed is True

    def test_enqueue_rejects_bad_json(
        self, fake_redis: FakeRedis, test_settings: Settings,
    ) -> None:
        with (
            patch("src.taskqueue.cli.get_settings", return_value=test_settings),
            patch("src.taskqueue.cli.create_redis_client", return_value=fake_redis),
            pytest.raises(SystemExit) as exit_info,
        ):
            main(["enqueue", "Collect", "--data", "{nope"])

        assert exit_info.value.code == 2
        assert fake_redis.entries("test:tasks") == []
