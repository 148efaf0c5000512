"""
Pytest configuration and fixtures for collector tests.
"""
import asyncio
from typing import List, Sequence

import pytest

from mesh_insights.collector import InsightsCollector
from mesh_insights.config import CollectorConfig, PrivacyConfig
from mesh_insights.sinks import DeliveryError, InMemorySink, Sink
from mesh_insights.telemetry.events import Event
from mesh_insights.utils.clock import ManualClock

START_TIME = 1_700_000_000.0


class FailingSink(Sink):
    """Sink that rejects every batch and remembers what it was offered."""

    def __init__(self):
        self.attempts: List[List[Event]] = []

    async def deliver(self, batch: Sequence[Event]) -> None:
        self.attempts.append(list(batch))
        raise DeliveryError("ingestion endpoint unavailable", batch_size=len(batch))


class GatedSink(Sink):
    """Sink that blocks until released, then fails or succeeds."""

    def __init__(self, fail: bool = True):
        self.gate = asyncio.Event()
        self.started = asyncio.Event()
        self.fail = fail
        self.attempts: List[List[Event]] = []
        self.delivered: List[List[Event]] = []

    async def deliver(self, batch: Sequence[Event]) -> None:
        self.attempts.append(list(batch))
        self.started.set()
        await self.gate.wait()
        if self.fail:
            raise DeliveryError("rejected", batch_size=len(batch))
        self.delivered.append(list(batch))


def make_event(kind: str = "custom", timestamp: float = START_TIME, **attributes) -> Event:
    return Event(kind=kind, timestamp=timestamp, attributes=attributes)


@pytest.fixture
def clock():
    """Manually advanced clock starting at a fixed epoch."""
    return ManualClock(start=START_TIME)


@pytest.fixture
def config():
    """Enabled collector configuration independent of the environment."""
    return CollectorConfig(
        enabled=True,
        environment="test",
        batch_size=100,
        privacy=PrivacyConfig(anonymization_salt="test-salt"),
    )


@pytest.fixture
def memory_sink():
    return InMemorySink()


@pytest.fixture
def failing_sink():
    return FailingSink()


@pytest.fixture
def collector(config, memory_sink, clock):
    """Collector wired to an in-memory sink and a manual clock."""
    return InsightsCollector(config=config, sink=memory_sink, clock=clock)
