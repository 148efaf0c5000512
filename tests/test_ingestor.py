"""
Tests for event ingestion and fan-out.
"""
from mesh_insights.config import CollectorConfig
from mesh_insights.telemetry.events import EventKind
from mesh_insights.telemetry.ingestor import EventIngestor
from mesh_insights.telemetry.metrics import ERRORS_PER_MINUTE, MESSAGES_PER_MINUTE, MetricAggregator
from mesh_insights.telemetry.privacy import anonymize_session_id
from mesh_insights.telemetry.queue import EventQueue
from mesh_insights.telemetry.sessions import SessionRegistry


def make_ingestor(config, clock, request_flush=None):
    queue = EventQueue(max_size=config.max_queue_size)
    aggregator = MetricAggregator()
    sessions = SessionRegistry(clock)
    ingestor = EventIngestor(config, clock, queue, sessions, aggregator, request_flush=request_flush)
    return ingestor, queue, sessions, aggregator


class TestRecord:
    """Tests for EventIngestor.record."""

    def test_event_is_stamped_and_queued(self, config, clock):
        ingestor, queue, _, aggregator = make_ingestor(config, clock)

        event = ingestor.record(EventKind.SCREEN_VIEW, {"screen": "chats"}, "raw-session")

        assert event.kind == "screen_view"
        assert event.timestamp == clock.now()
        assert event.get("environment") == "test"
        assert event.session_ref == anonymize_session_id("raw-session", "test-salt")
        assert queue.peek_all() == [event]
        assert aggregator.event_totals == {"screen_view": 1}
        assert ingestor.recorded_count == 1

    def test_disabled_is_noop(self, clock):
        config = CollectorConfig(enabled=False)
        flushes = []
        ingestor, queue, _, aggregator = make_ingestor(config, clock, lambda: flushes.append(1))

        assert ingestor.record("error", {"error_message": "boom"}) is None
        assert len(queue) == 0
        assert aggregator.event_totals == {}
        assert flushes == []

    def test_error_events_sanitized(self, config, clock):
        ingestor, _, _, aggregator = make_ingestor(config, clock)

        event = ingestor.record("error", {
            "error_message": "Failed for bob@example.com with key abcdefghijklmnopqrstuvwxyz",
            "stack_trace": "Error\n at a (/home/bob/app.js:1)",
        })

        assert event.get("error_message") == "Failed for [email] with key [token]"
        assert "/home/" not in event.get("stack_trace")
        assert event.get("error_type") == "UnknownError"
        assert event.get("severity") == "error"
        assert aggregator.rate(ERRORS_PER_MINUTE, clock.now()) == 1

    def test_internal_error_is_swallowed(self, config, clock):
        ingestor, queue, _, _ = make_ingestor(config, clock)

        def broken_append(event):
            raise RuntimeError("queue broken")

        queue.append = broken_append

        assert ingestor.record("screen_view", {}) is None


class TestFanOut:
    """Tests for per-kind session and aggregate updates."""

    def test_session_counters_updated(self, config, clock):
        ingestor, _, sessions, _ = make_ingestor(config, clock)
        session_id = sessions.start_session()

        ingestor.record("screen_view", {"screen": "home"}, session_id)
        ingestor.record("feature_usage", {"feature": "search"}, session_id)
        ingestor.record("error", {"error_message": "x"}, session_id)
        ingestor.record("mesh_interaction", {
            "interaction_type": "tap",
            "mesh_pattern": "aurora",
            "accessibility_mode": ["highContrast"],
        }, session_id)

        view = sessions.snapshot()[0]
        assert view.interaction_count == 1
        assert view.features == ("search",)
        assert view.error_count == 1
        assert view.mesh_event_count == 1
        assert view.mesh_patterns == frozenset({"aurora"})
        assert view.accessibility_modes == frozenset({"highContrast"})

    def test_unknown_session_still_records(self, config, clock):
        ingestor, queue, sessions, _ = make_ingestor(config, clock)

        event = ingestor.record("screen_view", {"screen": "home"}, "not-a-session")

        assert event is not None
        assert len(queue) == 1
        assert len(sessions) == 0

    def test_feature_aggregates_and_rates(self, config, clock):
        ingestor, _, _, aggregator = make_ingestor(config, clock)

        ingestor.record("feature_usage", {"feature": "message_send", "duration": 1.5})
        ingestor.record("feature_usage", {"feature": "message_send", "success": False})
        ingestor.record("feature_usage", {"feature": "call_initiate", "success": True})
        ingestor.record("feature_usage", {"feature": "call_initiate", "success": False})

        metric = aggregator.feature("message_send")
        assert metric.total_usage == 2
        assert metric.success_rate == 0.5
        assert aggregator.rate(MESSAGES_PER_MINUTE, clock.now()) == 2
        assert aggregator.gauge("calls_active") == 1

        ingestor.record("feature_usage", {"feature": "call_end"})
        ingestor.record("feature_usage", {"feature": "call_end"})
        assert aggregator.gauge("calls_active") == 0

    def test_performance_metrics(self, config, clock):
        ingestor, _, _, aggregator = make_ingestor(config, clock)

        ingestor.record("performance_metric", {"metric": "api_response_time", "value": 120})
        ingestor.record("performance_metric", {"metric": "api_response_time", "value": "bad"})
        ingestor.record("mesh_performance", {"mesh_type": "aurora", "fps": 58, "render_time": 12})

        assert aggregator.performance("api_response_time").count == 1
        assert aggregator.average_response_time == 120.0
        samples = aggregator.snapshot(clock.now()).mesh_performance["aurora"]
        assert samples[0].fps == 58.0


class TestSubscribersAndBackpressure:
    """Tests for subscriber notification and flush requests."""

    def test_subscribers_receive_events(self, config, clock):
        ingestor, _, _, _ = make_ingestor(config, clock)
        seen = []
        unsubscribe = ingestor.subscribe(seen.append)

        ingestor.record("screen_view", {})
        unsubscribe()
        ingestor.record("screen_view", {})

        assert len(seen) == 1
        assert ingestor.subscriber_count == 0

    def test_failing_subscriber_does_not_block_others(self, config, clock):
        ingestor, queue, _, _ = make_ingestor(config, clock)
        seen = []

        def broken(event):
            raise ValueError("subscriber bug")

        ingestor.subscribe(broken)
        ingestor.subscribe(seen.append)

        assert ingestor.record("screen_view", {}) is not None
        assert len(seen) == 1
        assert len(queue) == 1

    def test_flush_requested_at_batch_size(self, clock):
        config = CollectorConfig(enabled=True, batch_size=3)
        flushes = []
        ingestor, _, _, _ = make_ingestor(config, clock, lambda: flushes.append(1))

        ingestor.record("a", {})
        ingestor.record("a", {})
        assert flushes == []
        ingestor.record("a", {})
        assert flushes == [1]
