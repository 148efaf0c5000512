"""
Batch delivery.

The flusher is the only component that awaits. It drains the whole queue in
one synchronous step, hands the batch to the sink, and on failure puts the
batch back in front of whatever was queued while the delivery was pending.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set

from mesh_insights.sinks.base import Sink
from mesh_insights.telemetry.events import Event
from mesh_insights.telemetry.queue import EventQueue
from mesh_insights.utils.async_helpers import run_with_timeout
from mesh_insights.utils.clock import Clock, SystemClock

logger = logging.getLogger(__name__)


@dataclass
class FlushStats:
    """Delivery counters."""
    attempts: int = 0
    delivered_batches: int = 0
    delivered_events: int = 0
    failed_batches: int = 0
    requeued_events: int = 0
    last_success_at: Optional[float] = None
    last_failure_at: Optional[float] = None
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempts": self.attempts,
            "delivered_batches": self.delivered_batches,
            "delivered_events": self.delivered_events,
            "failed_batches": self.failed_batches,
            "requeued_events": self.requeued_events,
            "last_success_at": self.last_success_at,
            "last_failure_at": self.last_failure_at,
            "last_error": self.last_error,
        }


class BatchFlusher:
    """
    Moves queued events to a sink.

    At most one delivery is outstanding at a time, so a batch put back after
    a failure is always older than everything left in the queue.
    ``request_flush`` is synchronous and safe to call from ingestion: it
    drains the queue immediately and schedules delivery on the running loop,
    unless a delivery is already pending. After a failed delivery,
    size-triggered flushes are suspended until a delivery succeeds again, so
    a dead sink is only retried on the periodic flush.
    """

    def __init__(self, queue: EventQueue, sink: Sink, clock: Optional[Clock] = None):
        self._queue = queue
        self._sink = sink
        self._clock = clock or SystemClock()
        self._in_flight: Set[asyncio.Task] = set()
        self._active: Optional[asyncio.Task] = None
        self._backpressure_suspended = False
        self.stats = FlushStats()

    @property
    def sink(self) -> Sink:
        return self._sink

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    @property
    def backpressure_suspended(self) -> bool:
        return self._backpressure_suspended

    def request_flush(self) -> bool:
        """
        Start a background flush of the current queue.

        Returns:
            True if a delivery was scheduled.
        """
        if self._backpressure_suspended or self._active is not None or len(self._queue) == 0:
            return False

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Events stay queued for the next periodic or explicit flush.
            logger.debug("[Flusher] No running event loop, deferring flush")
            return False

        batch = self._queue.drain()
        self._track(loop.create_task(self._deliver(batch, requeue_on_failure=True)))
        return True

    async def flush(self, requeue_on_failure: bool = True) -> int:
        """
        Wait for any pending delivery, then drain the queue and deliver it.

        Args:
            requeue_on_failure: Put the batch back in front of the queue if
                the sink fails. The final shutdown flush passes False.

        Returns:
            Number of events delivered.
        """
        await self._wait_for_active()

        batch = self._queue.drain()
        if not batch:
            return 0
        task = asyncio.get_running_loop().create_task(
            self._deliver(batch, requeue_on_failure=requeue_on_failure)
        )
        self._track(task)
        delivered = await task
        return len(batch) if delivered else 0

    def _track(self, task: asyncio.Task) -> None:
        self._active = task
        self._in_flight.add(task)
        task.add_done_callback(self._on_delivery_done)

    def _on_delivery_done(self, task: asyncio.Task) -> None:
        self._in_flight.discard(task)
        if self._active is task:
            self._active = None

    async def _wait_for_active(self) -> None:
        while self._active is not None:
            active = self._active
            await asyncio.wait({active})
            if self._active is active:
                self._active = None

    async def _deliver(self, batch: List[Event], requeue_on_failure: bool) -> bool:
        self.stats.attempts += 1
        try:
            await self._sink.deliver(batch)
        except asyncio.CancelledError:
            if requeue_on_failure:
                self._queue.requeue_front(batch)
            raise
        except Exception as e:
            self.stats.failed_batches += 1
            self.stats.last_failure_at = self._clock.now()
            self.stats.last_error = str(e)
            self._backpressure_suspended = True

            if requeue_on_failure:
                self._queue.requeue_front(batch)
                self.stats.requeued_events += len(batch)
                logger.error(
                    f"[Flusher] Delivery of {len(batch)} events failed, requeued: {e}"
                )
            else:
                logger.error(f"[Flusher] Delivery of {len(batch)} events failed, dropped: {e}")
            return False

        self.stats.delivered_batches += 1
        self.stats.delivered_events += len(batch)
        self.stats.last_success_at = self._clock.now()
        self._backpressure_suspended = False
        logger.debug(f"[Flusher] Delivered {len(batch)} events")
        return True

    async def wait_for_in_flight(self, timeout: float) -> None:
        """Wait for background deliveries, up to ``timeout`` seconds."""
        if not self._in_flight:
            return
        start = time.monotonic()
        pending = list(self._in_flight)
        await run_with_timeout(
            asyncio.gather(*pending, return_exceptions=True),
            timeout=timeout,
        )
        logger.debug(
            f"[Flusher] Waited {time.monotonic() - start:.2f}s for {len(pending)} deliveries"
        )

    def get_stats(self) -> Dict[str, Any]:
        stats = self.stats.to_dict()
        stats["in_flight"] = len(self._in_flight)
        stats["backpressure_suspended"] = self._backpressure_suspended
        stats["queue_size"] = len(self._queue)
        return stats
