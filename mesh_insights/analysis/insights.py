"""
Mesh usage insights.

Pure derivations over an ``AggregatorSnapshot`` and the active session
views. Nothing here mutates collector state, so an analysis can be run at
any time from the query surface.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional, Sequence

from mesh_insights.telemetry.metrics import AggregatorSnapshot
from mesh_insights.telemetry.sessions import (
    ACCESSIBILITY_HIGH_CONTRAST,
    ACCESSIBILITY_REDUCED_MOTION,
    SessionView,
)

logger = logging.getLogger(__name__)

LOW_FPS_THRESHOLD = 30.0
TARGET_FPS = 45.0
ACCESSIBILITY_RATIO_THRESHOLD = 0.1
LOW_INTERACTION_THRESHOLD = 100
DEFAULT_TOP_PATTERNS = 10

_CUSTOMIZATION_LABELS = {
    "theme_change": "theme_changes",
    "pattern_change": "pattern_changes",
    "intensity_adjustment": "intensity_adjustments",
    "color_customization": "color_customizations",
}


@dataclass(frozen=True)
class Insight:
    type: str
    severity: str
    message: str
    recommendation: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Recommendation:
    category: str
    priority: str
    title: str
    description: str
    impact: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _mean(values: Sequence[Optional[float]]) -> Optional[float]:
    present = [v for v in values if v is not None]
    if not present:
        return None
    return sum(present) / len(present)


class MeshInsightAnalyzer:
    """
    Derives pattern popularity, rendering performance, accessibility usage
    and customization trends, then turns them into insights and
    recommendations with fixed threshold rules.
    """

    def __init__(self, snapshot: AggregatorSnapshot, sessions: Sequence[SessionView] = ()):
        self.snapshot = snapshot
        self.sessions = list(sessions)

    def popular_patterns(self, top_n: int = DEFAULT_TOP_PATTERNS) -> List[Dict[str, Any]]:
        """Interaction totals per pattern, most used first; ties keep first-seen order."""
        totals: Dict[str, int] = {}
        for _, pattern, count in self.snapshot.mesh_interactions:
            if pattern:
                totals[pattern] = totals.get(pattern, 0) + count

        ranked = sorted(totals.items(), key=lambda item: item[1], reverse=True)
        return [{"pattern": pattern, "count": count} for pattern, count in ranked[:top_n]]

    def performance_by_pattern(self) -> Dict[str, Dict[str, Any]]:
        performance: Dict[str, Dict[str, Any]] = {}
        for mesh_type, samples in self.snapshot.mesh_performance.items():
            if not samples:
                continue
            average_fps = _mean([s.fps for s in samples])
            average_render_time = _mean([s.render_time for s in samples])
            performance[mesh_type] = {
                "average_fps": average_fps,
                "average_render_time": average_render_time,
                "sample_count": len(samples),
                "low_performance": average_fps is not None and average_fps < LOW_FPS_THRESHOLD,
            }
        return performance

    def accessibility_usage(self) -> Dict[str, Any]:
        total = len(self.sessions)
        high_contrast = sum(
            1 for s in self.sessions if ACCESSIBILITY_HIGH_CONTRAST in s.accessibility_modes
        )
        reduced_motion = sum(
            1 for s in self.sessions if ACCESSIBILITY_REDUCED_MOTION in s.accessibility_modes
        )
        with_accessibility = sum(1 for s in self.sessions if s.accessibility_modes)
        return {
            "high_contrast": high_contrast,
            "reduced_motion": reduced_motion,
            "sessions_with_accessibility": with_accessibility,
            "total_sessions": total,
            "ratio": with_accessibility / total if total > 0 else 0.0,
        }

    def customization_trends(self) -> Dict[str, int]:
        counts = self.snapshot.customization_counts
        return {label: counts.get(kind, 0) for kind, label in _CUSTOMIZATION_LABELS.items()}

    def patterns(self) -> Dict[str, Any]:
        return {
            "popular_patterns": self.popular_patterns(),
            "performance_by_pattern": self.performance_by_pattern(),
            "accessibility_usage": self.accessibility_usage(),
            "customization_trends": self.customization_trends(),
        }

    def insights(self, patterns: Optional[Dict[str, Any]] = None) -> List[Insight]:
        patterns = patterns or self.patterns()
        insights: List[Insight] = []

        low_performance = [
            mesh_type
            for mesh_type, data in patterns["performance_by_pattern"].items()
            if data["low_performance"]
        ]
        if low_performance:
            insights.append(Insight(
                type="performance",
                severity="warning",
                message=f"Mesh patterns with low performance detected: {', '.join(low_performance)}",
                recommendation="Consider optimizing these patterns or providing performance alternatives",
            ))

        popular = patterns["popular_patterns"]
        if popular:
            top = popular[0]
            insights.append(Insight(
                type="usage",
                severity="info",
                message=f"Most popular mesh pattern: {top['pattern']} ({top['count']} interactions)",
                recommendation="Consider featuring this pattern more prominently",
            ))

        ratio = patterns["accessibility_usage"]["ratio"]
        if ratio > ACCESSIBILITY_RATIO_THRESHOLD:
            insights.append(Insight(
                type="accessibility",
                severity="info",
                message=f"{round(ratio * 100)}% of sessions use accessibility features",
                recommendation="Continue prioritizing accessibility in mesh design",
            ))

        return insights

    def recommendations(self, patterns: Optional[Dict[str, Any]] = None) -> List[Recommendation]:
        patterns = patterns or self.patterns()
        recommendations: List[Recommendation] = []

        average_fps = _mean([
            data["average_fps"] for data in patterns["performance_by_pattern"].values()
        ])
        if average_fps is not None and average_fps < TARGET_FPS:
            recommendations.append(Recommendation(
                category="performance",
                priority="high",
                title="Optimize Mesh Rendering Performance",
                description=(
                    "Average FPS is below optimal. Consider reducing mesh complexity "
                    "or implementing adaptive quality."
                ),
                impact="high",
            ))

        if self.snapshot.total_mesh_interactions < LOW_INTERACTION_THRESHOLD:
            recommendations.append(Recommendation(
                category="engagement",
                priority="medium",
                title="Increase Mesh Interactivity",
                description="Low mesh interaction rates. Consider adding more interactive mesh elements.",
                impact="medium",
            ))

        return recommendations

    def analyze(self) -> Dict[str, Any]:
        """Full analysis: ``{patterns, insights, recommendations}``."""
        patterns = self.patterns()
        result = {
            "patterns": patterns,
            "insights": [i.to_dict() for i in self.insights(patterns)],
            "recommendations": [r.to_dict() for r in self.recommendations(patterns)],
        }
        logger.debug(
            f"[Insights] Analysis produced {len(result['insights'])} insights, "
            f"{len(result['recommendations'])} recommendations"
        )
        return result
