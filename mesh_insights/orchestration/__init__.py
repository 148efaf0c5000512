"""
Delivery and periodic maintenance.

Provides:
- BatchFlusher: drains the event queue into a sink with front requeue
- CollectorScheduler / PeriodicTask: flush, aggregate and cleanup timers
"""

from mesh_insights.orchestration.flusher import BatchFlusher, FlushStats
from mesh_insights.orchestration.scheduler import CollectorScheduler, PeriodicTask

__all__ = [
    "BatchFlusher",
    "CollectorScheduler",
    "FlushStats",
    "PeriodicTask",
]
