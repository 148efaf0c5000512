"""
Live metric state for the collector.

Two families of derived state are kept:

- Windowed rate counters: events per trailing time window. Writes append a
  timestamp; reads evict everything that fell out of the window first.
- Running aggregates: count/sum/min/max/average per metric with a bounded
  FIFO of recent samples, feature-usage aggregates whose rates are computed
  over the retained samples only, and an exponential moving average for
  response-time style metrics.

All updates are O(1) amortized and never await.
"""

from __future__ import annotations

import bisect
import logging
import time
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_CAP = 1000
DEFAULT_MESH_PERFORMANCE_CAP = 100
DEFAULT_WINDOW_SECONDS = 60.0
EMA_ALPHA = 0.1

HOURLY_BUCKETS_KEPT = 48
DAILY_BUCKETS_KEPT = 90

MESSAGES_PER_MINUTE = "messages_per_minute"
ERRORS_PER_MINUTE = "errors_per_minute"
MESH_INTERACTIONS_PER_MINUTE = "mesh_interactions_per_minute"

RESPONSE_TIME_METRIC = "api_response_time"


class SlidingWindowCounter:
    """
    Count of events in the trailing ``window_seconds``.

    A read at ``now`` counts timestamps in ``(now - window, now]``.
    """

    def __init__(self, window_seconds: float = DEFAULT_WINDOW_SECONDS):
        self.window_seconds = window_seconds
        self._timestamps: Deque[float] = deque()

    def record(self, timestamp: float) -> None:
        if not self._timestamps or timestamp >= self._timestamps[-1]:
            self._timestamps.append(timestamp)
        else:
            # Late arrival; keep the deque ordered.
            bisect.insort(self._timestamps, timestamp)

    def count(self, now: float) -> int:
        cutoff = now - self.window_seconds
        while self._timestamps and self._timestamps[0] <= cutoff:
            self._timestamps.popleft()
        if self._timestamps and self._timestamps[-1] > now:
            return sum(1 for ts in self._timestamps if ts <= now)
        return len(self._timestamps)

    def __len__(self) -> int:
        return len(self._timestamps)


@dataclass(frozen=True)
class Sample:
    value: float
    timestamp: float


@dataclass
class AggregatedMetric:
    """
    Running aggregate over one named metric.

    ``average`` is the all-time ``sum / count``; ``samples`` only keeps the
    most recent ``cap`` values.
    """
    name: str
    cap: int = DEFAULT_SAMPLE_CAP
    count: int = 0
    sum: float = 0.0
    min: float = float("inf")
    max: float = float("-inf")
    samples: Deque[Sample] = field(default_factory=deque)

    def __post_init__(self) -> None:
        self.samples = deque(self.samples, maxlen=self.cap)

    def add(self, value: float, timestamp: float) -> None:
        self.count += 1
        self.sum += value
        self.min = min(self.min, value)
        self.max = max(self.max, value)
        self.samples.append(Sample(value, timestamp))

    @property
    def average(self) -> float:
        return self.sum / self.count if self.count > 0 else 0.0

    def purge_older_than(self, cutoff: float) -> int:
        before = len(self.samples)
        while self.samples and self.samples[0].timestamp <= cutoff:
            self.samples.popleft()
        return before - len(self.samples)

    def values(self) -> List[float]:
        return [s.value for s in self.samples]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "count": self.count,
            "sum": self.sum,
            "min": self.min if self.count > 0 else 0,
            "max": self.max if self.count > 0 else 0,
            "average": self.average,
            "sample_count": len(self.samples),
        }


@dataclass(frozen=True)
class FeatureSample:
    success: bool
    duration: Optional[float]
    mesh_enhanced: bool
    timestamp: float


@dataclass
class FeatureMetric:
    """Feature usage with rates over the retained samples only."""
    name: str
    cap: int = DEFAULT_SAMPLE_CAP
    total_usage: int = 0
    samples: Deque[FeatureSample] = field(default_factory=deque)

    def __post_init__(self) -> None:
        self.samples = deque(self.samples, maxlen=self.cap)

    def add(self, sample: FeatureSample) -> None:
        self.total_usage += 1
        self.samples.append(sample)

    @property
    def success_rate(self) -> float:
        if not self.samples:
            return 0.0
        return sum(1 for s in self.samples if s.success) / len(self.samples)

    @property
    def average_duration(self) -> float:
        durations = [s.duration for s in self.samples if s.duration]
        return sum(durations) / len(durations) if durations else 0.0

    @property
    def mesh_enhanced(self) -> int:
        return sum(1 for s in self.samples if s.mesh_enhanced)

    def purge_older_than(self, cutoff: float) -> int:
        before = len(self.samples)
        while self.samples and self.samples[0].timestamp <= cutoff:
            self.samples.popleft()
        return before - len(self.samples)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "total_usage": self.total_usage,
            "success_rate": self.success_rate,
            "average_duration": self.average_duration,
            "mesh_enhanced": self.mesh_enhanced,
            "sample_count": len(self.samples),
        }


class ExponentialMovingAverage:
    """``ema = alpha * value + (1 - alpha) * ema``; the first value seeds it."""

    def __init__(self, alpha: float = EMA_ALPHA):
        self.alpha = alpha
        self.value: Optional[float] = None

    def update(self, value: float) -> float:
        if self.value is None:
            self.value = value
        else:
            self.value = self.alpha * value + (1 - self.alpha) * self.value
        return self.value

    def get(self, default: float = 0.0) -> float:
        return default if self.value is None else self.value


@dataclass(frozen=True)
class MeshPerformanceSample:
    fps: Optional[float]
    render_time: Optional[float]
    memory_usage: Optional[float]
    complexity: Optional[float]
    animation_count: Optional[int]
    timestamp: float


@dataclass
class RollupBucket:
    """Event totals per kind for one hour or one day."""
    key: str
    counts: Counter = field(default_factory=Counter)

    def to_dict(self) -> Dict[str, Any]:
        return {"key": self.key, "total": sum(self.counts.values()), "counts": dict(self.counts)}


@dataclass(frozen=True)
class AggregatorSnapshot:
    """Immutable copy of everything the insight analyzer reads."""
    taken_at: float
    mesh_interactions: Tuple[Tuple[str, Optional[str], int], ...]
    mesh_performance: Mapping[str, Tuple[MeshPerformanceSample, ...]]
    customization_counts: Mapping[str, int]
    rates: Mapping[str, int]

    @property
    def total_mesh_interactions(self) -> int:
        return sum(count for _, _, count in self.mesh_interactions)


class MetricAggregator:
    """
    Live counters, aggregates and gauges.

    Keys follow the ``perf_<metric>`` / ``feature_<name>`` convention.
    """

    CUSTOMIZATION_TYPES = (
        "theme_change",
        "pattern_change",
        "intensity_adjustment",
        "color_customization",
    )

    def __init__(
        self,
        sample_cap: int = DEFAULT_SAMPLE_CAP,
        mesh_performance_cap: int = DEFAULT_MESH_PERFORMANCE_CAP,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
    ):
        self._sample_cap = sample_cap
        self._mesh_performance_cap = mesh_performance_cap
        self._window_seconds = window_seconds

        self._rates: Dict[str, SlidingWindowCounter] = {
            name: SlidingWindowCounter(window_seconds)
            for name in (MESSAGES_PER_MINUTE, ERRORS_PER_MINUTE, MESH_INTERACTIONS_PER_MINUTE)
        }
        self._performance: Dict[str, AggregatedMetric] = {}
        self._features: Dict[str, FeatureMetric] = {}
        self._response_time = ExponentialMovingAverage()

        # (interaction_type, pattern) -> count, first-seen order
        self._mesh_interactions: Dict[Tuple[str, Optional[str]], int] = {}
        self._mesh_performance: Dict[str, Deque[MeshPerformanceSample]] = {}
        self._customizations: Counter = Counter()

        self._gauges: Dict[str, int] = {"active_sessions": 0, "calls_active": 0}
        self._event_totals: Counter = Counter()
        self._since_rollup: Counter = Counter()
        self._hourly: Deque[RollupBucket] = deque(maxlen=HOURLY_BUCKETS_KEPT)
        self._daily: Deque[RollupBucket] = deque(maxlen=DAILY_BUCKETS_KEPT)

    # -- rate counters -------------------------------------------------------

    def record_rate(self, name: str, timestamp: float) -> None:
        counter = self._rates.get(name)
        if counter is None:
            counter = self._rates[name] = SlidingWindowCounter(self._window_seconds)
        counter.record(timestamp)

    def rate(self, name: str, now: float) -> int:
        counter = self._rates.get(name)
        return counter.count(now) if counter else 0

    # -- running aggregates --------------------------------------------------

    def record_performance(self, metric: str, value: float, timestamp: float) -> AggregatedMetric:
        key = f"perf_{metric}"
        aggregate = self._performance.get(key)
        if aggregate is None:
            aggregate = self._performance[key] = AggregatedMetric(name=metric, cap=self._sample_cap)
        aggregate.add(value, timestamp)

        if metric == RESPONSE_TIME_METRIC:
            self._response_time.update(value)
        return aggregate

    def performance(self, metric: str) -> Optional[AggregatedMetric]:
        return self._performance.get(f"perf_{metric}")

    @property
    def average_response_time(self) -> float:
        return self._response_time.get()

    def record_feature(
        self,
        feature: str,
        timestamp: float,
        success: bool = True,
        duration: Optional[float] = None,
        mesh_enhanced: bool = False,
    ) -> FeatureMetric:
        key = f"feature_{feature}"
        metric = self._features.get(key)
        if metric is None:
            metric = self._features[key] = FeatureMetric(name=feature, cap=self._sample_cap)
        metric.add(FeatureSample(success, duration, mesh_enhanced, timestamp))
        return metric

    def feature(self, feature: str) -> Optional[FeatureMetric]:
        return self._features.get(f"feature_{feature}")

    # -- mesh state ----------------------------------------------------------

    def record_mesh_interaction(self, interaction_type: str, pattern: Optional[str], timestamp: float) -> None:
        key = (interaction_type, pattern)
        self._mesh_interactions[key] = self._mesh_interactions.get(key, 0) + 1
        if interaction_type in self.CUSTOMIZATION_TYPES:
            self._customizations[interaction_type] += 1
        self.record_rate(MESH_INTERACTIONS_PER_MINUTE, timestamp)

    def record_mesh_performance(self, mesh_type: str, sample: MeshPerformanceSample) -> None:
        samples = self._mesh_performance.get(mesh_type)
        if samples is None:
            samples = self._mesh_performance[mesh_type] = deque(maxlen=self._mesh_performance_cap)
        samples.append(sample)

    def recent_mesh_performance(self, since: float) -> List[MeshPerformanceSample]:
        return [
            sample
            for samples in self._mesh_performance.values()
            for sample in samples
            if sample.timestamp > since
        ]

    # -- gauges and totals ---------------------------------------------------

    def set_gauge(self, name: str, value: int) -> None:
        self._gauges[name] = max(0, int(value))

    def adjust_gauge(self, name: str, delta: int) -> int:
        self._gauges[name] = max(0, self._gauges.get(name, 0) + delta)
        return self._gauges[name]

    def gauge(self, name: str) -> int:
        return self._gauges.get(name, 0)

    def count_event(self, kind: str) -> None:
        self._event_totals[kind] += 1
        self._since_rollup[kind] += 1

    @property
    def event_totals(self) -> Dict[str, int]:
        return dict(self._event_totals)

    # -- periodic work -------------------------------------------------------

    def rollup(self, now: float) -> Dict[str, Any]:
        """
        Fold event counts accumulated since the previous rollup into the
        current hourly and daily buckets.
        """
        hour_key = time.strftime("%Y-%m-%dT%H", time.gmtime(now))
        day_key = hour_key[:10]

        for buckets, key in ((self._hourly, hour_key), (self._daily, day_key)):
            if not buckets or buckets[-1].key != key:
                buckets.append(RollupBucket(key=key))
            buckets[-1].counts.update(self._since_rollup)

        folded = sum(self._since_rollup.values())
        self._since_rollup.clear()
        return {"hour": hour_key, "day": day_key, "events_folded": folded}

    def rollups(self) -> Dict[str, List[Dict[str, Any]]]:
        return {
            "hourly": [b.to_dict() for b in self._hourly],
            "daily": [b.to_dict() for b in self._daily],
        }

    def purge_older_than(self, cutoff: float) -> int:
        """Drop every retained sample with ``timestamp <= cutoff``."""
        removed = 0
        for aggregate in self._performance.values():
            removed += aggregate.purge_older_than(cutoff)
        for metric in self._features.values():
            removed += metric.purge_older_than(cutoff)
        for samples in self._mesh_performance.values():
            while samples and samples[0].timestamp <= cutoff:
                samples.popleft()
                removed += 1
        return removed

    # -- reads ---------------------------------------------------------------

    def snapshot(self, now: float) -> AggregatorSnapshot:
        return AggregatorSnapshot(
            taken_at=now,
            mesh_interactions=tuple(
                (interaction_type, pattern, count)
                for (interaction_type, pattern), count in self._mesh_interactions.items()
            ),
            mesh_performance={k: tuple(v) for k, v in self._mesh_performance.items()},
            customization_counts={t: self._customizations.get(t, 0) for t in self.CUSTOMIZATION_TYPES},
            rates={name: counter.count(now) for name, counter in self._rates.items()},
        )

    @property
    def metric_count(self) -> int:
        return len(self._performance) + len(self._features) + len(self._rates)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "performance_metrics": sorted(self._performance),
            "feature_metrics": sorted(self._features),
            "rate_counters": sorted(self._rates),
            "mesh_interaction_keys": len(self._mesh_interactions),
            "mesh_performance_types": len(self._mesh_performance),
            "gauges": dict(self._gauges),
        }
