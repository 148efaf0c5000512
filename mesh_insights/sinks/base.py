"""
Sink contract and in-process sinks.

A sink is the destination for flushed batches. The collector only ever calls
``deliver`` and treats any exception as a failed delivery; sinks should
raise ``DeliveryError`` for expected failures. Redelivery of a batch after a
failure is normal, so sinks must tolerate duplicates.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import Counter
from typing import Any, Dict, List, Optional, Sequence

from mesh_insights.telemetry.events import Event

logger = logging.getLogger(__name__)


class DeliveryError(Exception):
    """A batch could not be delivered."""

    def __init__(self, message: str, batch_size: int = 0, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.batch_size = batch_size
        self.cause = cause


class Sink(ABC):
    """Abstract base class for batch destinations."""

    @abstractmethod
    async def deliver(self, batch: Sequence[Event]) -> None:
        """Deliver a batch or raise ``DeliveryError``."""

    async def close(self) -> None:
        """Release any resources held by the sink."""


class LoggingSink(Sink):
    """Logs a one-line description of each batch instead of sending it."""

    def __init__(self, level: int = logging.INFO):
        self.level = level

    async def deliver(self, batch: Sequence[Event]) -> None:
        kinds = Counter(event.kind for event in batch)
        logger.log(
            self.level,
            f"[LoggingSink] Would send {len(batch)} events: {dict(kinds)}",
        )


class InMemorySink(Sink):
    """
    Keeps every delivered batch in memory.

    Useful for hosts that poll delivered events and for tests.
    """

    def __init__(self):
        self.batches: List[List[Event]] = []

    async def deliver(self, batch: Sequence[Event]) -> None:
        self.batches.append(list(batch))

    @property
    def events(self) -> List[Event]:
        return [event for batch in self.batches for event in batch]

    @property
    def delivery_count(self) -> int:
        return len(self.batches)

    def clear(self) -> None:
        self.batches.clear()

    def get_stats(self) -> Dict[str, Any]:
        return {"batches": len(self.batches), "events": sum(len(b) for b in self.batches)}
