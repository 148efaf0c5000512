"""
Batch destinations for flushed events.

Provides:
- Sink: the abstract delivery contract
- DeliveryError: raised by sinks on failure
- LoggingSink / InMemorySink: in-process sinks
- JsonlFileSink: local JSONL file (aiofiles)
- HttpSink: JSON POST to an ingestion endpoint (aiohttp)
"""

from mesh_insights.sinks.base import (
    DeliveryError,
    InMemorySink,
    LoggingSink,
    Sink,
)
from mesh_insights.sinks.http import HttpSink
from mesh_insights.sinks.jsonl import JsonlFileSink

__all__ = [
    "DeliveryError",
    "HttpSink",
    "InMemorySink",
    "JsonlFileSink",
    "LoggingSink",
    "Sink",
]
