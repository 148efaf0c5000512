"""
Tests for the reference sinks.
"""
import json
import logging

import pytest
from aiohttp import web
from aiohttp import test_utils
from conftest import make_event

from mesh_insights.sinks import (
    DeliveryError,
    HttpSink,
    InMemorySink,
    JsonlFileSink,
    LoggingSink,
)


class TestInProcessSinks:
    """Tests for LoggingSink and InMemorySink."""

    async def test_logging_sink_describes_batch(self, caplog):
        sink = LoggingSink()

        with caplog.at_level(logging.INFO, logger="mesh_insights.sinks.base"):
            await sink.deliver([make_event("error"), make_event("error"), make_event("screen_view")])

        assert "Would send 3 events" in caplog.text
        assert "'error': 2" in caplog.text

    async def test_in_memory_sink_keeps_batches(self):
        sink = InMemorySink()
        await sink.deliver([make_event(seq=1)])
        await sink.deliver([make_event(seq=2), make_event(seq=3)])

        assert sink.delivery_count == 2
        assert [e.get("seq") for e in sink.events] == [1, 2, 3]
        assert sink.get_stats() == {"batches": 2, "events": 3}

        sink.clear()
        assert sink.events == []


class TestJsonlFileSink:
    """Tests for JsonlFileSink."""

    async def test_appends_one_line_per_event(self, tmp_path):
        path = tmp_path / "out" / "events.jsonl"
        sink = JsonlFileSink(path)

        await sink.deliver([make_event(seq=1), make_event(seq=2)])
        await sink.deliver([make_event(seq=3)])

        lines = path.read_text().splitlines()
        assert len(lines) == 3
        assert [json.loads(line)["attributes"]["seq"] for line in lines] == [1, 2, 3]

    async def test_empty_batch_writes_nothing(self, tmp_path):
        path = tmp_path / "events.jsonl"

        await JsonlFileSink(path).deliver([])

        assert not path.exists()

    async def test_unwritable_path_raises_delivery_error(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        sink = JsonlFileSink(blocker / "events.jsonl")

        with pytest.raises(DeliveryError) as exc_info:
            await sink.deliver([make_event()])

        assert exc_info.value.batch_size == 1
        assert isinstance(exc_info.value.cause, OSError)


class TestHttpSink:
    """Tests for HttpSink against a local aiohttp server."""

    @staticmethod
    def make_app(status=200):
        received = []

        async def ingest(request):
            received.append(await request.json())
            return web.json_response({"ok": status < 400}, status=status)

        app = web.Application()
        app.router.add_post("/v1/events", ingest)
        return app, received

    async def test_posts_payload(self):
        app, received = self.make_app()

        async with test_utils.TestServer(app) as server:
            sink = HttpSink(
                str(server.make_url("/v1/events")),
                headers={"Authorization": "Bearer test"},
                environment="test",
                app_version="2.4.0",
            )
            await sink.deliver([make_event(seq=1), make_event(seq=2)])
            await sink.close()

        payload = received[0]
        assert [e["attributes"]["seq"] for e in payload["events"]] == [1, 2]
        assert payload["metadata"]["environment"] == "test"
        assert payload["metadata"]["app_version"] == "2.4.0"
        assert payload["metadata"]["event_count"] == 2

    async def test_error_status_raises(self):
        app, _ = self.make_app(status=503)

        async with test_utils.TestServer(app) as server:
            sink = HttpSink(str(server.make_url("/v1/events")))
            with pytest.raises(DeliveryError) as exc_info:
                await sink.deliver([make_event()])
            await sink.close()

        assert "503" in str(exc_info.value)
        assert exc_info.value.batch_size == 1

    async def test_empty_batch_skips_request(self):
        sink = HttpSink("http://127.0.0.1:9/unused")

        await sink.deliver([])
        await sink.close()

    def test_build_payload(self):
        sink = HttpSink("http://example.invalid", environment="production")

        payload = sink.build_payload([make_event("error")])

        assert payload["events"][0]["kind"] == "error"
        assert payload["metadata"]["event_count"] == 1
