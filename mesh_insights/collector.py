"""
Insights collector service.

The host constructs one ``InsightsCollector``, calls ``start()`` once an
event loop is running and ``shutdown()`` before exit. Every ``track_*``
call is synchronous and never raises; delivery to the sink happens on the
periodic flush, when the queue reaches the batch size, and once more on
shutdown.

Example:
    collector = InsightsCollector(sink=HttpSink("https://ingest.example.com/v1/events"))
    await collector.start()

    session_id = collector.start_session({"platform": "ios", "app_version": "2.4.0"})
    collector.track_mesh_interaction("tap", session_id, pattern="crystalline")
    collector.end_session(session_id)

    await collector.shutdown()
"""

from __future__ import annotations

import logging
import traceback
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, Mapping, Optional

from mesh_insights.analysis.insights import MeshInsightAnalyzer
from mesh_insights.config.base_config import CollectorConfig
from mesh_insights.orchestration.flusher import BatchFlusher
from mesh_insights.orchestration.scheduler import CollectorScheduler
from mesh_insights.sinks.base import LoggingSink, Sink
from mesh_insights.telemetry.events import Event, EventKind, normalize_kind
from mesh_insights.telemetry.ingestor import EventIngestor, Subscriber
from mesh_insights.telemetry.metrics import (
    ERRORS_PER_MINUTE,
    MESH_INTERACTIONS_PER_MINUTE,
    MESSAGES_PER_MINUTE,
    MetricAggregator,
)
from mesh_insights.telemetry.queue import EventQueue
from mesh_insights.telemetry.sessions import SessionRegistry, SessionSummary
from mesh_insights.utils.async_helpers import run_with_timeout, swallow_errors
from mesh_insights.utils.clock import Clock, SystemClock
from mesh_insights.utils.logging_config import log_duration

logger = logging.getLogger(__name__)

FLUSH_TASK = "flush"
AGGREGATE_TASK = "aggregate"
CLEANUP_TASK = "cleanup"

RECENT_PERFORMANCE_SECONDS = 300.0

# kind -> PrivacyConfig switch that gates it
_CATEGORY_BY_KIND = {
    EventKind.SCREEN_VIEW.value: "enable_behavior_analytics",
    EventKind.MESH_INTERACTION.value: "enable_behavior_analytics",
    EventKind.USER_ENGAGEMENT.value: "enable_behavior_analytics",
    EventKind.USER_RETENTION.value: "enable_behavior_analytics",
    EventKind.CONVERSION.value: "enable_behavior_analytics",
    EventKind.FEATURE_USAGE.value: "enable_feature_usage",
    EventKind.PERFORMANCE_METRIC.value: "enable_performance_metrics",
    EventKind.MESH_PERFORMANCE.value: "enable_performance_metrics",
    EventKind.ERROR.value: "enable_error_tracking",
}


def _describe_error(error: Any) -> Dict[str, Any]:
    """Pull type, message and stack out of an exception, mapping or string."""
    if isinstance(error, BaseException):
        stack = None
        if error.__traceback__ is not None:
            stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        return {
            "error_type": type(error).__name__,
            "error_message": str(error),
            "stack_trace": stack,
        }
    if isinstance(error, Mapping):
        return {
            "error_type": error.get("name") or error.get("error_type"),
            "error_message": error.get("message") or error.get("error_message"),
            "stack_trace": error.get("stack") or error.get("stack_trace"),
        }
    return {"error_type": None, "error_message": None if error is None else str(error), "stack_trace": None}


class InsightsCollector:
    """
    Owns the queue, sessions, aggregates, flusher and scheduler for one host.

    All tracking methods return the recorded ``Event`` (or ``None`` when the
    collector or the event's privacy category is disabled).
    """

    def __init__(
        self,
        config: Optional[CollectorConfig] = None,
        sink: Optional[Sink] = None,
        clock: Optional[Clock] = None,
    ):
        self.config = config or CollectorConfig()
        self.clock = clock or SystemClock()
        self.sink = sink or LoggingSink()

        self.queue = EventQueue(max_size=self.config.max_queue_size)
        self.aggregator = MetricAggregator(
            sample_cap=self.config.sample_cap,
            mesh_performance_cap=self.config.mesh_performance_cap,
            window_seconds=self.config.rate_window_seconds,
        )
        self.sessions = SessionRegistry(
            self.clock,
            emit=self._emit_session_event,
            on_active_change=lambda active: self.aggregator.set_gauge("active_sessions", active),
        )
        self.flusher = BatchFlusher(self.queue, self.sink, clock=self.clock)
        self.ingestor = EventIngestor(
            self.config,
            self.clock,
            self.queue,
            self.sessions,
            self.aggregator,
            request_flush=self.flusher.request_flush,
        )
        self.scheduler = CollectorScheduler(self.clock)

        self._started = False
        self._closed = False

    @property
    def enabled(self) -> bool:
        return self.config.enabled and not self._closed

    @property
    def is_running(self) -> bool:
        return self._started and not self._closed

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @swallow_errors(message="[Collector] Failed to start")
    async def start(self) -> None:
        """Register and start the flush, aggregate and cleanup timers."""
        if not self.config.enabled:
            logger.info("[Collector] Analytics disabled, not starting timers")
            return
        if self._started:
            logger.warning("[Collector] Already started")
            return
        if self._closed:
            logger.warning("[Collector] Cannot restart after shutdown")
            return

        self.scheduler.add_task(FLUSH_TASK, self.config.flush_interval, self.flusher.flush)
        self.scheduler.add_task(AGGREGATE_TASK, self.config.aggregate_interval, self.aggregate)
        self.scheduler.add_task(CLEANUP_TASK, self.config.cleanup_interval, self.cleanup)
        await self.scheduler.start()

        self._started = True
        logger.info(
            f"[Collector] Started ({self.config.environment}, "
            f"flush every {self.config.flush_interval:.0f}s, batch size {self.config.batch_size})"
        )

    @swallow_errors(message="[Collector] Shutdown failed")
    async def shutdown(self) -> None:
        """
        Stop the timers, let a running flush finish, wait for in-flight
        deliveries, then flush once more.

        The final flush does not requeue: a batch the sink rejects here is
        logged and dropped.
        """
        if self._closed:
            return
        self._closed = True

        timeout = self.config.shutdown_timeout
        await self.scheduler.stop(timeout)

        await self.flusher.wait_for_in_flight(timeout)
        delivered = await run_with_timeout(
            self.flusher.flush(requeue_on_failure=False),
            timeout=timeout,
            default=0,
        )

        await self.sink.close()
        logger.info(
            f"[Collector] Shut down, final flush delivered {delivered} events "
            f"({len(self.queue)} left undelivered)"
        )

    # =========================================================================
    # Periodic work
    # =========================================================================

    def aggregate(self) -> Dict[str, Any]:
        result = self.aggregator.rollup(self.clock.now())
        logger.debug(
            f"[Collector] Aggregated: queue={len(self.queue)} sessions={len(self.sessions)} "
            f"metrics={self.aggregator.metric_count} folded={result['events_folded']}"
        )
        return result

    @log_duration(logger, message="[Collector] Retention cleanup")
    def cleanup(self) -> Dict[str, int]:
        """Drop queued events and retained samples older than the retention period."""
        cutoff = self.clock.now() - self.config.retention_seconds
        purged_events = self.queue.purge_older_than(cutoff)
        purged_samples = self.aggregator.purge_older_than(cutoff)
        if purged_events or purged_samples:
            logger.info(
                f"[Collector] Cleanup removed {purged_events} queued events "
                f"and {purged_samples} samples"
            )
        return {"events": purged_events, "samples": purged_samples}

    async def flush(self) -> int:
        """Deliver everything queued now; returns the number of events delivered."""
        return await self.flusher.flush()

    # =========================================================================
    # Recording
    # =========================================================================

    def _emit_session_event(self, kind: str, attributes: Dict[str, Any], session_id: Optional[str]) -> None:
        self.ingestor.record(kind, attributes, session_id)

    def _category_enabled(self, kind: str) -> bool:
        switch = _CATEGORY_BY_KIND.get(kind)
        return switch is None or getattr(self.config.privacy, switch)

    def _accepts(self, kind: EventKind) -> bool:
        return self.enabled and self._category_enabled(kind.value)

    @swallow_errors(message="[Collector] Failed to record event")
    def record(
        self,
        kind: Any,
        attributes: Optional[Mapping[str, Any]] = None,
        session_id: Optional[str] = None,
    ) -> Optional[Event]:
        """Record an arbitrary event, subject to the privacy switches."""
        if not self.enabled:
            return None
        kind_name = normalize_kind(kind)
        if not self._category_enabled(kind_name):
            return None
        return self.ingestor.record(kind_name, attributes, session_id)

    def subscribe(self, callback: Subscriber) -> Callable[[], bool]:
        """Call ``callback(event)`` for every recorded event; returns an unsubscriber."""
        return self.ingestor.subscribe(callback)

    def unsubscribe(self, callback: Subscriber) -> bool:
        return self.ingestor.unsubscribe(callback)

    # =========================================================================
    # Sessions
    # =========================================================================

    @swallow_errors(message="[Collector] Failed to start session")
    def start_session(self, platform_info: Optional[Mapping[str, Any]] = None) -> Optional[str]:
        """
        Begin a session.

        Args:
            platform_info: Coarse client description (platform, app_version,
                device_info, network_type, mesh_theme). Anything else is dropped.

        Returns:
            The raw session id to pass to later calls, or None when disabled.
        """
        if not self.enabled:
            return None
        return self.sessions.start_session(platform_info)

    @swallow_errors(message="[Collector] Failed to end session")
    def end_session(self, session_id: Optional[str], reason: str = "normal") -> Optional[SessionSummary]:
        if not self.enabled:
            return None
        return self.sessions.end_session(session_id, reason=reason)

    # =========================================================================
    # Mesh visualization
    # =========================================================================

    def track_screen_view(
        self,
        screen: str,
        session_id: Optional[str] = None,
        load_time: Optional[float] = None,
        pattern: Optional[str] = None,
        intensity: Optional[float] = None,
        accessibility: Any = None,
    ) -> Optional[Event]:
        if not self._accepts(EventKind.SCREEN_VIEW):
            return None
        return self.record(EventKind.SCREEN_VIEW, {
            "screen": screen,
            "load_time": load_time,
            "mesh_pattern": pattern,
            "mesh_intensity": intensity,
            "accessibility": accessibility,
        }, session_id)

    def track_mesh_interaction(
        self,
        interaction_type: str,
        session_id: Optional[str] = None,
        pattern: Optional[str] = None,
        variant: Optional[str] = None,
        intensity: Optional[float] = None,
        duration: Optional[float] = None,
        successful: bool = True,
        accessibility_mode: Any = None,
    ) -> Optional[Event]:
        """
        Track an interaction with a mesh element.

        ``accessibility_mode`` may be a list or a comma-separated string of
        modes such as ``highContrast`` and ``reducedMotion``.
        """
        if not self._accepts(EventKind.MESH_INTERACTION):
            return None
        return self.record(EventKind.MESH_INTERACTION, {
            "interaction_type": interaction_type,
            "mesh_pattern": pattern,
            "mesh_variant": variant,
            "intensity": intensity,
            "duration": duration,
            "successful": successful is not False,
            "accessibility_mode": accessibility_mode,
        }, session_id)

    def track_mesh_performance(
        self,
        mesh_type: str,
        fps: Optional[float] = None,
        render_time: Optional[float] = None,
        memory_usage: Optional[float] = None,
        complexity: Optional[float] = None,
        animation_count: Optional[int] = None,
        session_id: Optional[str] = None,
    ) -> Optional[Event]:
        if not self._accepts(EventKind.MESH_PERFORMANCE):
            return None
        return self.record(EventKind.MESH_PERFORMANCE, {
            "mesh_type": mesh_type,
            "fps": fps,
            "render_time": render_time,
            "memory_usage": memory_usage,
            "complexity": complexity,
            "animation_count": animation_count,
        }, session_id)

    def track_mesh_error(
        self,
        mesh_component: str,
        error: Any,
        session_id: Optional[str] = None,
        pattern: Optional[str] = None,
        intensity: Optional[float] = None,
        variant: Optional[str] = None,
    ) -> Optional[Event]:
        if not self._accepts(EventKind.ERROR):
            return None
        return self.track_error(error, session_id, {
            "component": "mesh_system",
            "action": "mesh_render",
            "severity": "warning",
            "mesh_context": {
                "component": mesh_component,
                "pattern": pattern,
                "intensity": intensity,
                "variant": variant,
            },
        })

    # =========================================================================
    # Feature usage
    # =========================================================================

    def track_feature_usage(
        self,
        feature: str,
        session_id: Optional[str] = None,
        context: Optional[str] = None,
        success: bool = True,
        duration: Optional[float] = None,
        mesh_enhanced: bool = False,
        accessibility: Any = None,
    ) -> Optional[Event]:
        if not self._accepts(EventKind.FEATURE_USAGE):
            return None
        return self.record(EventKind.FEATURE_USAGE, {
            "feature": feature,
            "context": context,
            "success": success is not False,
            "duration": duration,
            "mesh_enhanced": mesh_enhanced is True,
            "accessibility": accessibility,
        }, session_id)

    def track_message_sent(
        self,
        message_type: str,
        session_id: Optional[str] = None,
        mesh_effects: bool = False,
        composition_time: Optional[float] = None,
    ) -> Optional[Event]:
        return self.track_feature_usage(
            "message_send", session_id,
            context=message_type, mesh_enhanced=mesh_effects, duration=composition_time,
        )

    def track_message_received(
        self,
        message_type: str,
        session_id: Optional[str] = None,
        mesh_effects: bool = False,
    ) -> Optional[Event]:
        return self.track_feature_usage(
            "message_receive", session_id, context=message_type, mesh_enhanced=mesh_effects,
        )

    def track_call_initiated(
        self,
        call_type: str,
        session_id: Optional[str] = None,
        connected: bool = False,
        setup_time: Optional[float] = None,
        mesh_effects: bool = False,
    ) -> Optional[Event]:
        """A connected call raises the ``calls_active`` gauge."""
        return self.track_feature_usage(
            "call_initiate", session_id,
            context=call_type, success=connected is True,
            duration=setup_time, mesh_enhanced=mesh_effects,
        )

    def track_call_ended(
        self,
        call_type: str,
        session_id: Optional[str] = None,
        duration: Optional[float] = None,
        mesh_effects: bool = False,
    ) -> Optional[Event]:
        return self.track_feature_usage(
            "call_end", session_id, context=call_type, duration=duration, mesh_enhanced=mesh_effects,
        )

    def track_status_created(
        self,
        status_type: str,
        session_id: Optional[str] = None,
        mesh_effects: bool = False,
        creation_time: Optional[float] = None,
    ) -> Optional[Event]:
        return self.track_feature_usage(
            "status_create", session_id,
            context=status_type, mesh_enhanced=mesh_effects, duration=creation_time,
        )

    def track_status_viewed(
        self,
        status_type: str,
        session_id: Optional[str] = None,
        view_duration: Optional[float] = None,
        mesh_effects: bool = False,
    ) -> Optional[Event]:
        return self.track_feature_usage(
            "status_view", session_id,
            context=status_type, duration=view_duration, mesh_enhanced=mesh_effects,
        )

    # =========================================================================
    # Performance and errors
    # =========================================================================

    def track_performance_metric(
        self,
        metric: str,
        value: float,
        session_id: Optional[str] = None,
        **context: Any,
    ) -> Optional[Event]:
        """
        Track a numeric performance sample.

        Extra keyword arguments (platform, device_type, mesh_intensity,
        component, ...) are stored as event attributes.
        """
        if not self._accepts(EventKind.PERFORMANCE_METRIC):
            return None
        attributes = dict(context)
        attributes.update({"metric": metric, "value": value})
        return self.record(EventKind.PERFORMANCE_METRIC, attributes, session_id)

    def track_load_time(self, component: str, load_time: float, **context: Any) -> Optional[Event]:
        return self.track_performance_metric("load_time", load_time, component=component, **context)

    def track_memory_usage(self, component: str, memory_usage: float, **context: Any) -> Optional[Event]:
        return self.track_performance_metric("memory_usage", memory_usage, component=component, **context)

    def track_error(
        self,
        error: Any,
        session_id: Optional[str] = None,
        context: Optional[Mapping[str, Any]] = None,
    ) -> Optional[Event]:
        """
        Track an application error.

        Args:
            error: Exception instance, mapping with name/message/stack, or string
            session_id: Raw session id
            context: component, action, severity and an optional mesh_context mapping

        The message and stack trace are sanitized before the event is stored.
        """
        if not self._accepts(EventKind.ERROR):
            return None
        context = dict(context or {})
        attributes = _describe_error(error)
        attributes.update({
            "component": context.pop("component", None),
            "action": context.pop("action", None),
            "severity": context.pop("severity", None) or "error",
        })
        attributes.update(context)
        return self.record(EventKind.ERROR, attributes, session_id)

    # =========================================================================
    # Business intelligence
    # =========================================================================

    def track_engagement(
        self,
        engagement_type: str,
        session_id: Optional[str] = None,
        duration: Optional[float] = None,
        depth: Optional[float] = None,
        mesh_interactions: int = 0,
        feature_count: int = 0,
    ) -> Optional[Event]:
        if not self._accepts(EventKind.USER_ENGAGEMENT):
            return None
        return self.record(EventKind.USER_ENGAGEMENT, {
            "engagement_type": engagement_type,
            "duration": duration,
            "depth": depth,
            "mesh_interactions": mesh_interactions or 0,
            "feature_count": feature_count or 0,
        }, session_id)

    def track_retention(
        self,
        retention_type: str,
        days_since_install: Optional[int] = None,
        days_since_last_use: Optional[int] = None,
        total_sessions: Optional[int] = None,
        mesh_theme_changes: int = 0,
    ) -> Optional[Event]:
        if not self._accepts(EventKind.USER_RETENTION):
            return None
        return self.record(EventKind.USER_RETENTION, {
            "retention_type": retention_type,
            "days_since_install": days_since_install,
            "days_since_last_use": days_since_last_use,
            "total_sessions": total_sessions,
            "mesh_theme_changes": mesh_theme_changes or 0,
        })

    def track_conversion(
        self,
        conversion_type: str,
        value: Optional[float] = None,
        currency: Optional[str] = None,
        subscription_tier: Optional[str] = None,
        mesh_customization: bool = False,
    ) -> Optional[Event]:
        if not self._accepts(EventKind.CONVERSION):
            return None
        return self.record(EventKind.CONVERSION, {
            "conversion_type": conversion_type,
            "value": value,
            "currency": currency,
            "subscription_tier": subscription_tier,
            "mesh_customization": mesh_customization is True,
        })

    # =========================================================================
    # Queries
    # =========================================================================

    def _current_mesh_performance(self, now: float) -> Dict[str, Any]:
        recent = self.aggregator.recent_mesh_performance(since=now - RECENT_PERFORMANCE_SECONDS)
        fps = [s.fps for s in recent if s.fps is not None]
        render_times = [s.render_time for s in recent if s.render_time is not None]
        return {
            "average_fps": sum(fps) / len(fps) if fps else 0.0,
            "average_render_time": sum(render_times) / len(render_times) if render_times else 0.0,
            "sample_count": len(recent),
        }

    @swallow_errors(default={}, message="[Collector] Failed to build dashboard")
    def get_real_time_dashboard(self) -> Dict[str, Any]:
        now = self.clock.now()
        return {
            "users": {
                "active": self.aggregator.gauge("active_sessions"),
                "sessions": len(self.sessions),
            },
            "activity": {
                "messages_per_minute": self.aggregator.rate(MESSAGES_PER_MINUTE, now),
                "active_calls": self.aggregator.gauge("calls_active"),
            },
            "performance": {
                "errors_per_minute": self.aggregator.rate(ERRORS_PER_MINUTE, now),
                "average_response_time": self.aggregator.average_response_time,
            },
            "mesh": {
                "interactions_per_minute": self.aggregator.rate(MESH_INTERACTIONS_PER_MINUTE, now),
                "patterns": self.sessions.active_patterns(),
                "performance": self._current_mesh_performance(now),
            },
            "timestamp": now,
        }

    @swallow_errors(default={}, message="[Collector] Failed to build summary")
    def get_analytics_summary(self) -> Dict[str, Any]:
        now = self.clock.now()
        snapshot = self.aggregator.snapshot(now)
        privacy = self.config.privacy.to_dict()
        privacy.pop("anonymization_salt", None)

        return {
            "system": {
                "enabled": self.enabled,
                "running": self.is_running,
                "environment": self.config.environment,
                "queued_events": len(self.queue),
                "dropped_events": self.queue.dropped_count,
                "active_sessions": len(self.sessions),
                "aggregated_metrics": self.aggregator.metric_count,
            },
            "real_time": {
                "messages_per_minute": snapshot.rates.get(MESSAGES_PER_MINUTE, 0),
                "errors_per_minute": snapshot.rates.get(ERRORS_PER_MINUTE, 0),
                "mesh_interactions_per_minute": snapshot.rates.get(MESH_INTERACTIONS_PER_MINUTE, 0),
                "active_calls": self.aggregator.gauge("calls_active"),
                "average_response_time": self.aggregator.average_response_time,
            },
            "mesh": {
                "total_interactions": snapshot.total_mesh_interactions,
                "unique_patterns": len({p for _, p, _ in snapshot.mesh_interactions if p}),
                "performance_metrics": len(snapshot.mesh_performance),
            },
            "queue": dict(self.queue.stats(), kinds=self.queue.kinds()),
            "metrics": self.aggregator.get_stats(),
            "events": self.aggregator.event_totals,
            "delivery": self.flusher.get_stats(),
            "scheduler": self.scheduler.get_stats(),
            "privacy": privacy,
        }

    @swallow_errors(default={}, message="[Collector] Mesh pattern analysis failed")
    def analyze_mesh_patterns(self) -> Dict[str, Any]:
        """Run the insight analyzer over a snapshot of current state."""
        analyzer = MeshInsightAnalyzer(
            self.aggregator.snapshot(self.clock.now()),
            self.sessions.snapshot(),
        )
        return analyzer.analyze()


@asynccontextmanager
async def collector_context(
    config: Optional[CollectorConfig] = None,
    sink: Optional[Sink] = None,
    clock: Optional[Clock] = None,
) -> AsyncIterator[InsightsCollector]:
    """
    Run a collector for the duration of a block.

    Example:
        async with collector_context(sink=JsonlFileSink("events.jsonl")) as collector:
            collector.track_feature_usage("search")
    """
    collector = InsightsCollector(config=config, sink=sink, clock=clock)
    await collector.start()
    try:
        yield collector
    finally:
        await collector.shutdown()
