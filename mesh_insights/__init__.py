"""
Mesh Insights - Privacy-First Client Telemetry Collector

Provides:
- Session tracking with anonymized identifiers
- Mesh visualization interaction and rendering performance metrics
- Feature usage, performance and sanitized error tracking
- Windowed rate counters, running aggregates and hourly/daily rollups
- Batched async delivery to pluggable sinks (logging, JSONL, HTTP)
- Derived mesh usage insights and recommendations
"""

__version__ = "1.0.0"

# Service
from mesh_insights.collector import (
    InsightsCollector,
    collector_context,
)

# Configuration
from mesh_insights.config import (
    CollectorConfig,
    PrivacyConfig,
    load_config,
)

# Events and live state
from mesh_insights.telemetry import (
    Event,
    EventKind,
    EventQueue,
    EventIngestor,
    MetricAggregator,
    SessionRegistry,
    SessionSummary,
)

# Delivery
from mesh_insights.sinks import (
    DeliveryError,
    HttpSink,
    InMemorySink,
    JsonlFileSink,
    LoggingSink,
    Sink,
)

from mesh_insights.orchestration import (
    BatchFlusher,
    CollectorScheduler,
)

# Analysis
from mesh_insights.analysis import MeshInsightAnalyzer

# Utilities
from mesh_insights.utils import (
    Clock,
    ManualClock,
    SystemClock,
    setup_logging,
)

__all__ = [
    "__version__",
    # Service
    "InsightsCollector",
    "collector_context",
    # Configuration
    "CollectorConfig",
    "PrivacyConfig",
    "load_config",
    # Events and live state
    "Event",
    "EventKind",
    "EventQueue",
    "EventIngestor",
    "MetricAggregator",
    "SessionRegistry",
    "SessionSummary",
    # Delivery
    "DeliveryError",
    "HttpSink",
    "InMemorySink",
    "JsonlFileSink",
    "LoggingSink",
    "Sink",
    "BatchFlusher",
    "CollectorScheduler",
    # Analysis
    "MeshInsightAnalyzer",
    # Utilities
    "Clock",
    "ManualClock",
    "SystemClock",
    "setup_logging",
]
