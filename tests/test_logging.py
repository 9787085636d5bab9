"""Tests for trace context propagation and the log formatters."""

import asyncio
import json
import logging

import pytest

from agentflow.observability import (
    clear_trace_context,
    configure_logging,
    get_trace_context,
    set_trace_context,
)
from agentflow.observability.logging import (
    HumanReadableFormatter,
    StructuredFormatter,
    strip_ansi_codes,
)


def _record(message: str, **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="agentflow.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=message,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


class TestTraceContext:
    def test_set_merges_fields(self):
        set_trace_context(execution_id="ex-1", workflow_id="wf-1")
        set_trace_context(node_id="n1")

        assert get_trace_context() == {
            "execution_id": "ex-1",
            "workflow_id": "wf-1",
            "node_id": "n1",
        }

    def test_get_returns_copy(self):
        set_trace_context(execution_id="ex-1")
        get_trace_context()["execution_id"] = "changed"
        assert get_trace_context()["execution_id"] == "ex-1"

    def test_clear(self):
        set_trace_context(execution_id="ex-1")
        clear_trace_context()
        assert get_trace_context() == {}

    @pytest.mark.asyncio
    async def test_concurrent_tasks_do_not_share_context(self):
        async def run(execution_id: str) -> dict:
            set_trace_context(execution_id=execution_id)
            await asyncio.sleep(0.01)
            return get_trace_context()

        first, second = await asyncio.gather(run("ex-a"), run("ex-b"))

        assert first["execution_id"] == "ex-a"
        assert second["execution_id"] == "ex-b"
        assert get_trace_context() == {}


class TestStructuredFormatter:
    def test_includes_context_and_extra_fields(self):
        set_trace_context(execution_id="ex-1", node_id="n1")
        record = _record("Model call done", event="model_call", latency_ms=12)

        entry = json.loads(StructuredFormatter().format(record))

        assert entry["message"] == "Model call done"
        assert entry["level"] == "info"
        assert entry["logger"] == "agentflow.test"
        assert entry["execution_id"] == "ex-1"
        assert entry["node_id"] == "n1"
        assert entry["event"] == "model_call"
        assert entry["latency_ms"] == 12
        assert "tokens_used" not in entry

    def test_strips_ansi_codes(self):
        entry = json.loads(StructuredFormatter().format(_record("\033[32mgreen\033[0m")))
        assert entry["message"] == "green"


class TestHumanReadableFormatter:
    def test_prefix_from_context(self):
        set_trace_context(
            execution_id="exec-0123456789", workflow_id="workflow-abc", node_id="n1"
        )

        line = HumanReadableFormatter().format(_record("hello", event="node_start"))

        assert "[exec:23456789 | wf:workflow | node:n1]" in line
        assert "hello" in line
        assert line.endswith("[node_start]")

    def test_no_prefix_without_context(self):
        line = strip_ansi_codes(HumanReadableFormatter().format(_record("plain")))
        assert line == "[INFO    ] plain"


class TestConfigureLogging:
    def test_json_mode_installs_structured_formatter(self, restore_root_logger, monkeypatch):
        monkeypatch.delenv("NO_COLOR", raising=False)
        monkeypatch.delenv("FORCE_COLOR", raising=False)
        configure_logging(level="debug", format="json")

        (handler,) = restore_root_logger.handlers
        assert isinstance(handler.formatter, StructuredFormatter)
        assert restore_root_logger.level == logging.DEBUG

    def test_auto_mode_follows_environment(self, restore_root_logger, monkeypatch):
        monkeypatch.delenv("NO_COLOR", raising=False)
        monkeypatch.delenv("FORCE_COLOR", raising=False)
        monkeypatch.setenv("LOG_FORMAT", "json")
        configure_logging(format="auto")
        assert isinstance(restore_root_logger.handlers[0].formatter, StructuredFormatter)

        monkeypatch.setenv("LOG_FORMAT", "")
        monkeypatch.setenv("ENV", "development")
        configure_logging(format="auto")
        assert isinstance(restore_root_logger.handlers[0].formatter, HumanReadableFormatter)
