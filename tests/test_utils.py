"""
Tests for clocks, async helpers and logging configuration.
"""
import asyncio
import json
import logging

import pytest

from mesh_insights.utils import (
    LogContext,
    LoggingConfig,
    ManualClock,
    RichConsoleFormatter,
    StructuredFormatter,
    SystemClock,
    async_retry,
    clear_context,
    run_with_timeout,
    set_component,
    setup_logging,
    swallow_errors,
)
from mesh_insights.utils.clock import Clock


class TestClocks:
    """Tests for SystemClock and ManualClock."""

    def test_manual_clock(self):
        clock = ManualClock(start=100.0)

        assert clock.advance(5) == 105.0
        clock.set(10.0)
        assert clock.now() == 10.0

    def test_manual_clock_cannot_go_backwards(self):
        with pytest.raises(ValueError):
            ManualClock().advance(-1)

    def test_clocks_satisfy_protocol(self):
        assert isinstance(SystemClock(), Clock)
        assert isinstance(ManualClock(), Clock)
        assert SystemClock().now() > 0


class TestAsyncHelpers:
    """Tests for retry, timeout and error containment."""

    async def test_async_retry_eventually_succeeds(self):
        attempts = []

        @async_retry(attempts=3, delay=0.0)
        async def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise ConnectionError("reset")
            return "ok"

        assert await flaky() == "ok"
        assert len(attempts) == 3

    async def test_async_retry_reraises_last_error(self):
        @async_retry(attempts=2, delay=0.0, exceptions=(ConnectionError,))
        async def down():
            raise ConnectionError("refused")

        with pytest.raises(ConnectionError):
            await down()

    async def test_run_with_timeout_returns_default(self):
        result = await run_with_timeout(asyncio.sleep(1.0, result="late"), timeout=0.01, default="fallback")

        assert result == "fallback"

    def test_swallow_errors_sync(self, caplog):
        @swallow_errors(default={}, message="[Test] Query failed")
        def query():
            raise KeyError("missing")

        with caplog.at_level(logging.ERROR):
            assert query() == {}

        assert "[Test] Query failed" in caplog.text

    async def test_swallow_errors_async(self):
        @swallow_errors(default=0)
        async def deliver():
            raise RuntimeError("sink down")

        assert await deliver() == 0

    async def test_swallow_errors_propagates_cancellation(self):
        @swallow_errors()
        async def wait_forever():
            await asyncio.sleep(10)

        task = asyncio.create_task(wait_forever())
        await asyncio.sleep(0)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task


class TestLogging:
    """Tests for the structured logging helpers."""

    def teardown_method(self):
        clear_context()

    def test_structured_formatter_includes_context(self):
        set_component("flusher")
        record = logging.LogRecord(
            "mesh_insights.orchestration.flusher", logging.INFO, __file__, 1,
            "[Flusher] Delivered %d events", (3,), None,
        )

        with LogContext(task="flush"):
            data = json.loads(StructuredFormatter().format(record))

        assert data["message"] == "[Flusher] Delivered 3 events"
        assert data["component"] == "flusher"
        assert data["context"] == {"task": "flush"}
        assert data["level"] == "INFO"

    def test_setup_logging_json(self):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            setup_logging(LoggingConfig(level="DEBUG", format="json"))

            assert isinstance(root.handlers[0].formatter, StructuredFormatter)
            assert logging.getLogger("aiohttp").level == logging.WARNING
            assert logging.getLogger("mesh_insights").level == logging.DEBUG
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)
            logging.getLogger("mesh_insights").setLevel(logging.NOTSET)

    def test_console_formatter_shows_component_and_task(self):
        set_component("scheduler")
        record = logging.LogRecord(
            "mesh_insights.orchestration.scheduler", logging.WARNING, __file__, 1,
            "[Scheduler] Task failed", (), None,
        )

        with LogContext(task="cleanup"):
            line = RichConsoleFormatter(use_color=False).format(record)

        assert "WARNING mesh_insights.orchestration.scheduler [scheduler task=cleanup]: " in line
        assert line.endswith("[Scheduler] Task failed")
        assert "\033[" not in line
