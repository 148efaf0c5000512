"""
Periodic maintenance for the collector.

Runs named tasks (flush, aggregate, cleanup) at fixed intervals. Each task
gets its own asyncio loop while the scheduler is running; ``run_due`` runs
every task whose deadline has passed against the injected clock, which is
what tests drive instead of sleeping.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set

from mesh_insights.utils.clock import Clock, SystemClock
from mesh_insights.utils.logging_config import LogContext

logger = logging.getLogger(__name__)


@dataclass
class PeriodicTask:
    """A callback run every ``interval`` seconds."""
    name: str
    interval: float
    callback: Callable[[], Any]
    next_due: float = 0.0
    run_count: int = 0
    failure_count: int = 0
    last_run: Optional[float] = None
    last_error: Optional[str] = None

    def is_due(self, now: float) -> bool:
        return now >= self.next_due

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "interval": self.interval,
            "next_due": self.next_due,
            "run_count": self.run_count,
            "failure_count": self.failure_count,
            "last_run": self.last_run,
            "last_error": self.last_error,
        }


class CollectorScheduler:
    """Runs registered periodic tasks until stopped."""

    def __init__(self, clock: Optional[Clock] = None):
        self._clock = clock or SystemClock()
        self._tasks: Dict[str, PeriodicTask] = {}
        self._loops: List[asyncio.Task] = []
        self._active_runs: Set[asyncio.Task] = set()
        self._running = False

    def add_task(self, name: str, interval: float, callback: Callable[[], Any]) -> PeriodicTask:
        """Register a task; replaces any task with the same name."""
        if interval <= 0:
            raise ValueError(f"Interval for {name} must be positive, got {interval}")
        task = PeriodicTask(
            name=name,
            interval=interval,
            callback=callback,
            next_due=self._clock.now() + interval,
        )
        self._tasks[name] = task
        return task

    def get_task(self, name: str) -> Optional[PeriodicTask]:
        return self._tasks.get(name)

    async def start(self) -> None:
        """Start one timer loop per registered task."""
        if self._running:
            logger.warning("[Scheduler] Already running")
            return

        self._running = True
        for task in self._tasks.values():
            self._loops.append(asyncio.create_task(self._task_loop(task), name=f"mesh-insights-{task.name}"))
        logger.info(f"[Scheduler] Started {len(self._loops)} periodic tasks")

    async def stop(self, timeout: Optional[float] = None) -> None:
        """
        Cancel every timer loop and wait for it to finish.

        A callback that is already running is left to complete, for at most
        ``timeout`` seconds (no limit when None); past that it is cancelled.
        """
        if not self._running:
            return

        self._running = False
        for loop_task in self._loops:
            loop_task.cancel()
        for loop_task in self._loops:
            try:
                await loop_task
            except asyncio.CancelledError:
                pass
        self._loops = []

        if self._active_runs:
            pending = list(self._active_runs)
            _, unfinished = await asyncio.wait(pending, timeout=timeout)
            for run in unfinished:
                logger.warning(f"[Scheduler] {run.get_name()} still running after {timeout}s, cancelling")
                run.cancel()
            if unfinished:
                await asyncio.gather(*unfinished, return_exceptions=True)

        logger.info("[Scheduler] Stopped")

    async def _task_loop(self, task: PeriodicTask) -> None:
        while self._running:
            await asyncio.sleep(task.interval)
            if not self._running:
                break
            run = asyncio.create_task(
                self._run_task(task, self._clock.now()), name=f"mesh-insights-{task.name}-run"
            )
            self._active_runs.add(run)
            run.add_done_callback(self._active_runs.discard)
            # Cancelling the loop must not cancel the run itself.
            await asyncio.shield(run)

    async def run_due(self, now: Optional[float] = None) -> List[str]:
        """
        Run every task whose deadline is at or before ``now``.

        Returns:
            Names of the tasks that ran, in registration order.
        """
        now = self._clock.now() if now is None else now
        ran = []
        for task in list(self._tasks.values()):
            if task.is_due(now):
                await self._run_task(task, now)
                ran.append(task.name)
        return ran

    async def run_now(self, name: str) -> bool:
        task = self._tasks.get(name)
        if task is None:
            return False
        return await self._run_task(task, self._clock.now())

    async def _run_task(self, task: PeriodicTask, now: float) -> bool:
        task.last_run = now
        task.next_due = now + task.interval
        task.run_count += 1
        try:
            with LogContext(task=task.name):
                result = task.callback()
                if inspect.isawaitable(result):
                    await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            task.failure_count += 1
            task.last_error = str(e)
            logger.error(f"[Scheduler] Task {task.name} failed: {e}")
            return False
        return True

    @property
    def is_running(self) -> bool:
        return self._running

    def get_stats(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "tasks": {name: task.to_dict() for name, task in self._tasks.items()},
        }
