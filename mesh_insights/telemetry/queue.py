"""
Append-only flush queue.

Ingestion appends; the flusher swaps the whole list out in one step and may
put a failed batch back in front of newer events. A hard size cap drops the
oldest events first and counts them.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Sequence

from mesh_insights.telemetry.events import Event

logger = logging.getLogger(__name__)


class EventQueue:
    """In-memory event queue with atomic drain and front requeue."""

    def __init__(self, max_size: int = 10_000):
        self._max_size = max_size
        self._events: List[Event] = []
        self._dropped_count = 0
        self._appended_count = 0

    def __len__(self) -> int:
        return len(self._events)

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def dropped_count(self) -> int:
        """Number of events discarded because the queue was full."""
        return self._dropped_count

    def append(self, event: Event) -> int:
        """Append an event and return the new queue length."""
        self._events.append(event)
        self._appended_count += 1
        self._enforce_cap()
        return len(self._events)

    def drain(self) -> List[Event]:
        """Swap the queue for an empty one and return what it held."""
        batch, self._events = self._events, []
        return batch

    def requeue_front(self, batch: Sequence[Event]) -> None:
        """Put a failed batch back ahead of everything queued since."""
        if not batch:
            return
        self._events[:0] = list(batch)
        self._enforce_cap()

    def purge_older_than(self, cutoff: float) -> int:
        """Drop events with ``timestamp <= cutoff``; returns how many."""
        before = len(self._events)
        self._events = [e for e in self._events if e.timestamp > cutoff]
        return before - len(self._events)

    def peek_all(self) -> List[Event]:
        return list(self._events)

    def kinds(self) -> List[str]:
        return sorted({e.kind for e in self._events})

    def _enforce_cap(self) -> None:
        overflow = len(self._events) - self._max_size
        if overflow > 0:
            del self._events[:overflow]
            self._dropped_count += overflow
            logger.warning(
                f"[Queue] Capacity {self._max_size} exceeded, dropped {overflow} oldest events"
            )

    def stats(self) -> Dict[str, Any]:
        return {
            "size": len(self._events),
            "capacity": self._max_size,
            "utilization": len(self._events) / self._max_size if self._max_size > 0 else 0,
            "appended_total": self._appended_count,
            "dropped_count": self._dropped_count,
        }
