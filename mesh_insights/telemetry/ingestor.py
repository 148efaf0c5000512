"""
Event ingestion.

Turns a raw tracking call into a canonical ``Event`` and fans it out:

    record(kind, attributes, session_id)
        → normalize + sanitize + anonymize
        → EventQueue.append
        → SessionRegistry (live sessions only)
        → MetricAggregator (per-kind buckets)
        → subscribers

Everything here is synchronous; the only hand-off to async code is the
flush request issued when the queue reaches the batch size.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Mapping, Optional

from mesh_insights.config.base_config import CollectorConfig
from mesh_insights.telemetry.events import (
    Event,
    EventKind,
    normalize_attributes,
    normalize_kind,
)
from mesh_insights.telemetry.metrics import (
    ERRORS_PER_MINUTE,
    MESSAGES_PER_MINUTE,
    MeshPerformanceSample,
    MetricAggregator,
)
from mesh_insights.telemetry.privacy import (
    anonymize_session_id,
    sanitize_error_message,
    sanitize_stack_trace,
)
from mesh_insights.telemetry.queue import EventQueue
from mesh_insights.telemetry.sessions import SessionRegistry, parse_accessibility_modes
from mesh_insights.utils.async_helpers import swallow_errors
from mesh_insights.utils.clock import Clock

logger = logging.getLogger(__name__)

Subscriber = Callable[[Event], Any]

MESSAGE_SEND_FEATURE = "message_send"
CALL_INITIATE_FEATURE = "call_initiate"
CALL_END_FEATURE = "call_end"


class EventIngestor:
    """Builds events and updates every piece of live state they touch."""

    def __init__(
        self,
        config: CollectorConfig,
        clock: Clock,
        queue: EventQueue,
        sessions: SessionRegistry,
        aggregator: MetricAggregator,
        request_flush: Optional[Callable[[], Any]] = None,
    ):
        self._config = config
        self._clock = clock
        self._queue = queue
        self._sessions = sessions
        self._aggregator = aggregator
        self._request_flush = request_flush
        self._subscribers: List[Subscriber] = []
        self._recorded_count = 0

        # kind -> aggregate/session updater
        self._handlers: Dict[str, Callable[[Event, Optional[str]], None]] = {
            EventKind.SCREEN_VIEW.value: self._on_screen_view,
            EventKind.MESH_INTERACTION.value: self._on_mesh_interaction,
            EventKind.FEATURE_USAGE.value: self._on_feature_usage,
            EventKind.PERFORMANCE_METRIC.value: self._on_performance_metric,
            EventKind.MESH_PERFORMANCE.value: self._on_mesh_performance,
            EventKind.ERROR.value: self._on_error,
        }

    @property
    def recorded_count(self) -> int:
        return self._recorded_count

    # -- subscribers ---------------------------------------------------------

    def subscribe(self, callback: Subscriber) -> Callable[[], bool]:
        """Register a callback for every recorded event; returns an unsubscriber."""
        self._subscribers.append(callback)
        return lambda: self.unsubscribe(callback)

    def unsubscribe(self, callback: Subscriber) -> bool:
        if callback in self._subscribers:
            self._subscribers.remove(callback)
            return True
        return False

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    # -- ingestion -----------------------------------------------------------

    @swallow_errors(message="[Ingestor] Dropped event after internal error")
    def record(
        self,
        kind: Any,
        attributes: Optional[Mapping[str, Any]] = None,
        session_id: Optional[str] = None,
    ) -> Optional[Event]:
        """
        Record one event.

        Args:
            kind: Event kind (``EventKind`` or free-form string)
            attributes: Attribute bag; coerced against the kind's schema
            session_id: Raw session id; stored on the event only as a hash

        Returns:
            The recorded Event, or None when disabled or on internal error.
        """
        if not self._config.enabled:
            return None

        event = self._build_event(kind, attributes, session_id)

        queue_length = self._queue.append(event)
        self._recorded_count += 1

        self._aggregator.count_event(event.kind)
        handler = self._handlers.get(event.kind)
        if handler is not None:
            handler(event, session_id)

        self._notify(event)

        if queue_length >= self._config.batch_size and self._request_flush is not None:
            logger.debug(f"[Ingestor] Queue reached {queue_length} events, requesting flush")
            self._request_flush()

        return event

    def _build_event(
        self,
        kind: Any,
        attributes: Optional[Mapping[str, Any]],
        session_id: Optional[str],
    ) -> Event:
        kind_name = normalize_kind(kind)
        attrs = normalize_attributes(kind_name, attributes)

        if kind_name == EventKind.ERROR.value:
            attrs["error_message"] = sanitize_error_message(attrs.get("error_message"))
            attrs["stack_trace"] = sanitize_stack_trace(attrs.get("stack_trace"))
            attrs["error_type"] = attrs.get("error_type") or "UnknownError"
            attrs["severity"] = attrs.get("severity") or "error"

        attrs["environment"] = self._config.environment

        return Event(
            kind=kind_name,
            timestamp=self._clock.now(),
            session_ref=anonymize_session_id(session_id, self._config.privacy.anonymization_salt),
            attributes=attrs,
        )

    def _notify(self, event: Event) -> None:
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception as e:
                logger.error(f"[Ingestor] Subscriber error: {e}")

    # -- per-kind fan-out ----------------------------------------------------

    def _on_screen_view(self, event: Event, session_id: Optional[str]) -> None:
        self._sessions.record_interaction(session_id)

    def _on_mesh_interaction(self, event: Event, session_id: Optional[str]) -> None:
        pattern = event.get("mesh_pattern")
        self._sessions.record_mesh_event(
            session_id,
            pattern=pattern,
            accessibility_modes=parse_accessibility_modes(event.get("accessibility_mode")),
        )
        self._aggregator.record_mesh_interaction(
            event.get("interaction_type") or "unknown",
            pattern,
            event.timestamp,
        )

    def _on_feature_usage(self, event: Event, session_id: Optional[str]) -> None:
        feature = event.get("feature") or "unknown"
        success = event.get("success") is not False

        self._sessions.record_feature(session_id, feature)
        self._aggregator.record_feature(
            feature,
            event.timestamp,
            success=success,
            duration=event.get("duration"),
            mesh_enhanced=event.get("mesh_enhanced") is True,
        )

        if feature == MESSAGE_SEND_FEATURE:
            self._aggregator.record_rate(MESSAGES_PER_MINUTE, event.timestamp)
        elif feature == CALL_INITIATE_FEATURE and success:
            self._aggregator.adjust_gauge("calls_active", 1)
        elif feature == CALL_END_FEATURE:
            self._aggregator.adjust_gauge("calls_active", -1)

    def _on_performance_metric(self, event: Event, session_id: Optional[str]) -> None:
        value = event.get("value")
        if value is None:
            return
        self._aggregator.record_performance(event.get("metric") or "unknown", value, event.timestamp)

    def _on_mesh_performance(self, event: Event, session_id: Optional[str]) -> None:
        self._aggregator.record_mesh_performance(
            event.get("mesh_type") or "unknown",
            MeshPerformanceSample(
                fps=event.get("fps"),
                render_time=event.get("render_time"),
                memory_usage=event.get("memory_usage"),
                complexity=event.get("complexity"),
                animation_count=event.get("animation_count"),
                timestamp=event.timestamp,
            ),
        )

    def _on_error(self, event: Event, session_id: Optional[str]) -> None:
        self._sessions.record_error(session_id)
        self._aggregator.record_rate(ERRORS_PER_MINUTE, event.timestamp)
