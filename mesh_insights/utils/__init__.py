"""
Utilities module for the insights collector.

Provides:
- Clocks (wall clock and a manually advanced test clock)
- Async helpers (retry, timeouts, error containment)
- Structured logging configuration
"""

from mesh_insights.utils.clock import (
    Clock,
    SystemClock,
    ManualClock,
)

from mesh_insights.utils.async_helpers import (
    async_retry,
    run_with_timeout,
    swallow_errors,
)

from mesh_insights.utils.logging_config import (
    setup_logging,
    get_logger,
    LoggingConfig,
    LogContext,
    StructuredFormatter,
    RichConsoleFormatter,
    set_component,
    set_context,
    clear_context,
    log_duration,
)

__all__ = [
    # Clock
    "Clock",
    "SystemClock",
    "ManualClock",
    # Async helpers
    "async_retry",
    "run_with_timeout",
    "swallow_errors",
    # Logging
    "setup_logging",
    "get_logger",
    "LoggingConfig",
    "LogContext",
    "StructuredFormatter",
    "RichConsoleFormatter",
    "set_component",
    "set_context",
    "clear_context",
    "log_duration",
]
