"""Derived mesh usage insights."""

from mesh_insights.analysis.insights import Insight, MeshInsightAnalyzer, Recommendation

__all__ = ["Insight", "MeshInsightAnalyzer", "Recommendation"]
