"""
Unit tests for the session registry.
"""
import re

from mesh_insights.telemetry.sessions import SessionRegistry, parse_accessibility_modes


class Recorder:
    """Captures emitted session events and gauge updates."""

    def __init__(self):
        self.events = []
        self.gauge = []

    def emit(self, kind, attributes, session_id):
        self.events.append((kind, attributes, session_id))

    def on_active(self, active):
        self.gauge.append(active)


def make_registry(clock):
    recorder = Recorder()
    registry = SessionRegistry(clock, emit=recorder.emit, on_active_change=recorder.on_active)
    return registry, recorder


class TestSessionLifecycle:
    """Tests for start_session / end_session."""

    def test_start_session_returns_hex_id(self, clock):
        """Session ids are 32 random hex characters."""
        registry, recorder = make_registry(clock)

        session_id = registry.start_session({"platform": "ios"})

        assert re.fullmatch(r"[0-9a-f]{32}", session_id)
        assert session_id in registry
        assert recorder.gauge == [1]
        kind, attributes, raw_id = recorder.events[0]
        assert kind == "session_start"
        assert attributes["platform"] == "ios"
        assert raw_id == session_id

    def test_platform_info_drops_identifying_fields(self, clock):
        """Only coarse platform fields survive."""
        registry, recorder = make_registry(clock)

        registry.start_session({
            "platform": "android",
            "appVersion": "3.1.0",
            "deviceInfo": {"platform": "android", "model": "Pixel 8"},
            "user_name": "alice",
            "email": "alice@example.com",
        })

        attributes = recorder.events[0][1]
        assert attributes == {
            "platform": "android",
            "app_version": "3.1.0",
            "device_type": "android",
            "network_type": None,
            "mesh_theme": None,
        }

    def test_end_session_summary(self, clock):
        """Summary counts reflect recorded activity."""
        registry, recorder = make_registry(clock)
        session_id = registry.start_session()

        registry.record_interaction(session_id)
        registry.record_interaction(session_id)
        registry.record_error(session_id)
        registry.record_feature(session_id, "search")
        registry.record_feature(session_id, "search")
        registry.record_feature(session_id, "call_initiate")
        registry.record_mesh_event(session_id, pattern="aurora")
        registry.record_mesh_event(session_id, pattern="crystalline")
        registry.record_mesh_event(session_id, pattern="aurora")
        clock.advance(90)

        summary = registry.end_session(session_id, reason="background")

        assert summary.duration_seconds == 90.0
        assert summary.total_interactions == 2
        assert summary.errors_encountered == 1
        assert summary.features_used == 2
        assert summary.mesh_interactions == 3
        assert summary.mesh_pattern_count == 2
        assert summary.end_reason == "background"
        assert session_id not in registry

        kind, attributes, raw_id = recorder.events[-1]
        assert kind == "session_end"
        assert "session_id" not in attributes
        assert raw_id == session_id

    def test_end_session_is_idempotent(self, clock):
        """A second end returns None and leaves the gauge at zero."""
        registry, recorder = make_registry(clock)
        session_id = registry.start_session()

        assert registry.end_session(session_id) is not None
        assert registry.end_session(session_id) is None
        assert recorder.gauge == [1, 0]
        assert len([e for e in recorder.events if e[0] == "session_end"]) == 1

    def test_stale_calls_are_noops(self, clock):
        """Calls against an ended or unknown id do nothing."""
        registry, _ = make_registry(clock)
        session_id = registry.start_session()
        registry.end_session(session_id)

        assert registry.record_interaction(session_id) is False
        assert registry.record_error("missing") is False
        assert registry.record_feature(None, "search") is False
        assert registry.record_mesh_event(session_id, pattern="aurora") is False
        assert len(registry) == 0


class TestSessionViews:
    """Tests for snapshot and active pattern queries."""

    def test_snapshot_is_immutable_copy(self, clock):
        """Views reflect state at snapshot time."""
        registry, _ = make_registry(clock)
        session_id = registry.start_session()
        registry.record_mesh_event(session_id, pattern="aurora", accessibility_modes=("highContrast",))

        views = registry.snapshot()
        registry.record_mesh_event(session_id, pattern="nebula")

        assert views[0].mesh_patterns == frozenset({"aurora"})
        assert views[0].accessibility_modes == frozenset({"highContrast"})

    def test_active_patterns_across_sessions(self, clock):
        """Patterns are de-duplicated across sessions."""
        registry, _ = make_registry(clock)
        first = registry.start_session()
        second = registry.start_session()
        registry.record_mesh_event(first, pattern="aurora")
        registry.record_mesh_event(second, pattern="aurora")
        registry.record_mesh_event(second, pattern="crystalline")

        assert registry.active_patterns() == ["aurora", "crystalline"]
        assert registry.get_stats()["active_sessions"] == 2


class TestParseAccessibilityModes:
    """Tests for parse_accessibility_modes."""

    def test_string_and_list_forms(self):
        assert parse_accessibility_modes("highContrast, reducedMotion") == ("highContrast", "reducedMotion")
        assert parse_accessibility_modes(["reducedMotion"]) == ("reducedMotion",)

    def test_empty_values(self):
        assert parse_accessibility_modes(None) == ()
        assert parse_accessibility_modes("") == ()
        assert parse_accessibility_modes(42) == ()
