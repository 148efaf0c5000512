"""
Event model and live telemetry state.

Provides:
- Event / EventKind: immutable event records and their attribute schemas
- EventQueue: bounded flush queue with atomic drain
- SessionRegistry: active sessions and their counters
- MetricAggregator: windowed rates, running aggregates and gauges
- EventIngestor: normalizes events and fans them out
- privacy helpers for anonymization and sanitization
"""

from mesh_insights.telemetry.events import (
    EVENT_SCHEMAS,
    Event,
    EventKind,
    normalize_attributes,
    normalize_kind,
)
from mesh_insights.telemetry.ingestor import EventIngestor
from mesh_insights.telemetry.metrics import (
    AggregatedMetric,
    AggregatorSnapshot,
    ExponentialMovingAverage,
    FeatureMetric,
    MeshPerformanceSample,
    MetricAggregator,
    SlidingWindowCounter,
)
from mesh_insights.telemetry.privacy import (
    PlatformInfo,
    anonymize_session_id,
    sanitize_error_message,
    sanitize_stack_trace,
)
from mesh_insights.telemetry.queue import EventQueue
from mesh_insights.telemetry.sessions import (
    SessionRegistry,
    SessionSummary,
    SessionView,
)

__all__ = [
    "EVENT_SCHEMAS",
    "AggregatedMetric",
    "AggregatorSnapshot",
    "Event",
    "EventIngestor",
    "EventKind",
    "EventQueue",
    "ExponentialMovingAverage",
    "FeatureMetric",
    "MeshPerformanceSample",
    "MetricAggregator",
    "PlatformInfo",
    "SessionRegistry",
    "SessionSummary",
    "SessionView",
    "SlidingWindowCounter",
    "anonymize_session_id",
    "normalize_attributes",
    "normalize_kind",
    "sanitize_error_message",
    "sanitize_stack_trace",
]
